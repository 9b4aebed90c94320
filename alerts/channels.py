"""Alert notification channels and the router that delivers a firing to them."""
import json
import logging
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from models.alerts import DeliveryResult
from notifications.webhook import format_discord, format_telegram, post_json

logger = logging.getLogger("logmonitor.alerts.channels")


@runtime_checkable
class AlertChannel(Protocol):
    name: str

    def send(self, rule, context) -> None: ...


class ConsoleChannel:
    """Print alerts to terminal with rich formatting."""

    def __init__(self, name="console"):
        self.name = name

    def send(self, rule, context):
        from rich.console import Console
        console = Console()

        severity_styles = {
            "CRITICAL": "bold white on red",
            "WARNING": "bold yellow",
            "INFO": "bold blue",
        }
        sev = str(rule.severity).upper()
        style = severity_styles.get(sev, "")
        agent = context.get("agent_name") or context.get("agent_id", "")
        console.print(f"[{style}] [{sev}] {rule.name} ({agent}): {context.get('message', '')}[/]")


class FileChannel:
    """Append alerts to a JSON lines log file."""

    def __init__(self, log_path="data/alerts.jsonl", name="file"):
        self.name = name
        self.log_path = log_path
        self._lock = threading.Lock()

    def send(self, rule, context):
        entry = {
            "timestamp": context.get("timestamp"),
            "rule_id": rule.id,
            "rule_name": rule.name,
            "severity": str(rule.severity),
            "agent_id": context.get("agent_id"),
            "metric": rule.metric,
            "value": context.get("value"),
            "threshold": rule.threshold,
            "message": context.get("message", ""),
        }
        Path(self.log_path).parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with open(self.log_path, "a") as f:
                f.write(json.dumps(entry) + "\n")


class DiscordChannel:
    def __init__(self, name, url, timeout=10):
        self.name = name
        self.url = url
        self.timeout = timeout

    def send(self, rule, context):
        payload = format_discord(rule.name, context, rule.parameters)
        post_json(self.url, payload, timeout=self.timeout)


class TelegramChannel:
    """Telegram bot sendMessage endpoint; the URL carries the bot token."""

    def __init__(self, name, url, chat_id=None, timeout=10):
        self.name = name
        self.url = url
        self.chat_id = chat_id
        self.timeout = timeout

    def send(self, rule, context):
        payload = format_telegram(rule.name, context, rule.parameters, chat_id=self.chat_id)
        post_json(self.url, payload, timeout=self.timeout)


class ChannelRouter:
    """Notification transport: deliver(rule, agent_id, context) -> DeliveryResult.

    A rule with no channels listed goes to every channel. Delivery is ok only when
    every targeted channel accepted the message. Never raises.
    """

    def __init__(self, channels=None):
        self.channels = []
        for channel in channels or []:
            self.add(channel)

    def add(self, channel):
        if not isinstance(channel, AlertChannel):
            raise TypeError(f"{type(channel).__name__} is not an alert channel (needs name and send)")
        self.channels.append(channel)

    def targets_for(self, rule):
        if not rule.channels:
            return list(self.channels)
        wanted = set(rule.channels)
        return [c for c in self.channels if c.name in wanted]

    def deliver(self, rule, agent_id, context) -> DeliveryResult:
        targets = self.targets_for(rule)
        if not targets:
            return DeliveryResult.failure(f"No notification channel matches {rule.channels or 'any'}")

        delivered, failures = [], []
        for channel in targets:
            try:
                channel.send(rule, context)
                delivered.append(channel.name)
            except Exception as e:
                logger.warning(f"Channel {channel.name} failed for rule {rule.id}/{agent_id}: {e}")
                failures.append(f"{channel.name}: {e}")

        if failures:
            return DeliveryResult.failure("; ".join(failures))
        return DeliveryResult.success(f"Delivered to {', '.join(delivered)}")


def build_router(config) -> ChannelRouter:
    """Create channels from the webhooks and alerts config sections."""
    timeout = config.get("notifications", {}).get("timeout", 10)
    alerts_cfg = config.get("alerts", {})
    router = ChannelRouter()

    for hook in config.get("webhooks", []) or []:
        if not hook.get("enabled", True):
            continue
        kind = hook.get("type")
        name = hook.get("name") or hook.get("id")
        if kind == "discord":
            router.add(DiscordChannel(name, hook["url"], timeout=timeout))
        elif kind == "telegram":
            router.add(TelegramChannel(name, hook["url"], chat_id=hook.get("chat_id"), timeout=timeout))
        else:
            logger.warning(f"Unknown webhook type for {name}: {kind}")

    if alerts_cfg.get("file_log"):
        router.add(FileChannel(alerts_cfg["file_log"]))
    if alerts_cfg.get("console", False):
        router.add(ConsoleChannel())

    logger.info(f"Notification channels: {[c.name for c in router.channels]}")
    return router
