"""Outbound webhook delivery for Discord and Telegram.

Uses raw HTTP POST via requests. Formatting is shared: each rule parameter
("error_rate", "top_routes", ...) becomes one Discord embed field or one Telegram
Markdown section.
"""
import logging
import requests

logger = logging.getLogger("logmonitor.webhook")

FOOTER = "Traefik Log Monitor"
DISCORD_COLOR = 0x5865F2

_TOP_SECTIONS = {
    "top_routes": ("routes", "\U0001f6e3️", "Routes"),
    "top_client_ips": ("client_ips", "\U0001f465", "Client IPs"),
    "top_hosts": ("hosts", "\U0001f3e0", "Hosts"),
    "top_routers": ("routers", "\U0001f500", "Routers"),
    "top_services": ("services", "⚙️", "Services"),
    "top_user_agents": ("user_agents", "\U0001f310", "User Agents"),
}

_STATUS_CLASSES = ("2xx", "3xx", "4xx", "5xx")


class WebhookError(Exception):
    """Webhook POST failed or returned a non-2xx status."""
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


def post_json(url, payload, timeout=10):
    try:
        resp = requests.post(url, json=payload, timeout=timeout)
    except requests.RequestException as e:
        raise WebhookError(f"Network error: {e}") from e
    if not resp.ok:
        raise WebhookError(f"HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)
    return resp


def _normalize_parameters(parameters):
    """Rule parameters are either names or {"parameter": name, "limit": n, "enabled": bool}."""
    normalized = []
    for p in parameters or []:
        if isinstance(p, str):
            normalized.append((p, 5))
        elif isinstance(p, dict) and p.get("enabled", True) and p.get("parameter"):
            normalized.append((p["parameter"], int(p.get("limit", 5))))
    return normalized


def build_sections(context, parameters):
    """Return (title, body, inline) triples for the requested parameters that have data."""
    metrics = context.get("metrics") or {}
    top = context.get("top") or {}
    sections = []

    for name, limit in _normalize_parameters(parameters):
        if name == "error_rate" and "error_rate" in metrics:
            sections.append(("❌ Error Rate", f"{metrics['error_rate']:.2f}%", True))
        elif name == "request_count" and "request_count" in metrics:
            sections.append(("\U0001f4c8 Total Requests", str(metrics["request_count"]), True))
        elif name == "response_time" and "avg_response_time_ms" in metrics:
            body = (
                f"Avg: {metrics['avg_response_time_ms']:.0f}ms | "
                f"P95: {metrics.get('p95_response_time_ms', 0):.0f}ms | "
                f"P99: {metrics.get('p99_response_time_ms', 0):.0f}ms"
            )
            sections.append(("⏱️ Response Time", body, True))
        elif name == "top_status_codes":
            counts = [(c, metrics.get(f"status_{c}") or 0) for c in _STATUS_CLASSES]
            ranked = sorted((c for c in counts if c[1]), key=lambda c: -c[1])[:limit]
            if ranked:
                lines = [f"{i}. `{code}` - {count} requests" for i, (code, count) in enumerate(ranked, 1)]
                sections.append(("\U0001f4ca Status Codes", "\n".join(lines), False))
        elif name in _TOP_SECTIONS:
            key, emoji, label = _TOP_SECTIONS[name]
            rows = (top.get(key) or [])[:limit]
            if rows:
                lines = [f"{i}. `{r['name']}` - {r['count']} requests" for i, r in enumerate(rows, 1)]
                sections.append((f"{emoji} Top {limit} {label}", "\n".join(lines), False))
        else:
            logger.debug(f"No data for notification parameter {name}")
    return sections


def _headline(context):
    if context.get("message"):
        return context["message"]
    return f"Alert triggered at {context.get('timestamp', '')}"


def format_discord(title, context, parameters):
    embed = {
        "title": f"\U0001f6a8 {title}",
        "description": _headline(context),
        "color": DISCORD_COLOR,
        "fields": [
            {"name": name, "value": body, "inline": inline}
            for name, body, inline in build_sections(context, parameters)
        ],
        "footer": {"text": FOOTER},
    }
    if context.get("timestamp"):
        embed["timestamp"] = context["timestamp"]
    if context.get("agent_name"):
        embed["author"] = {"name": f"Agent: {context['agent_name']}"}
    return {"username": "Traefik Alert", "embeds": [embed]}


def format_telegram(title, context, parameters, chat_id=None):
    parts = [f"\U0001f6a8 *{title}*", f"_{_headline(context)}_"]
    if context.get("agent_name"):
        parts.append(f"*Agent:* {context['agent_name']}")
    for name, body, _inline in build_sections(context, parameters):
        parts.append(f"*{name}*\n{body}")
    parts.append(f"_{FOOTER}_")

    payload = {
        "text": "\n\n".join(parts),
        "parse_mode": "Markdown",
        "disable_web_page_preview": True,
    }
    if chat_id:
        payload["chat_id"] = str(chat_id)
    return payload
