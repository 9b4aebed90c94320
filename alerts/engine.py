"""Alert evaluation engine."""
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from alerts.stats import compute_alert_stats
from models.alerts import DeliveryResult, NotificationRecord
from models.enums import Aggregation, Interval, TriggerType

logger = logging.getLogger("logmonitor.alerts.engine")

OPERATOR_MAP = {
    "<": lambda v, t: v < t,
    ">": lambda v, t: v > t,
    "<=": lambda v, t: v <= t,
    ">=": lambda v, t: v >= t,
    "==": lambda v, t: v == t,
}

STATS_WINDOW = 1000
TEST_PREFIX = "[TEST] "


@dataclass
class EvaluationResult:
    fired: list = field(default_factory=list)
    errors: list = field(default_factory=list)
    evaluated: int = 0


class AlertEngine:
    def __init__(self, rules_manager, db, transport=None):
        self.rules_manager = rules_manager
        self.db = db
        self.transport = transport

    def _current_value(self, rule, agent_id, metrics, now):
        """Instantaneous metric value, or the average over stored snapshots for avg rules."""
        value = metrics.get(rule.metric)
        if rule.aggregation != Aggregation.AVG:
            return value

        snapshots = self.db.get_snapshots(
            agent_id=agent_id, interval=rule.interval,
            start=now - rule.interval.duration, end=now,
        )
        values = [s.metrics[rule.metric] for s in snapshots if rule.metric in s.metrics]
        if not values:
            return value
        return sum(values) / len(values)

    def _evaluate_condition(self, value, operator, threshold):
        if value is None:
            return False
        func = OPERATOR_MAP.get(operator)
        if func is None:
            return False
        return func(float(value), threshold)

    def _check_cooldown(self, rule, agent_id, now):
        """True when the rule may fire again for this agent."""
        last_time = self.db.get_last_notification_time(rule.id, agent_id)
        if last_time is None:
            return True
        if last_time.tzinfo is None:
            last_time = last_time.replace(tzinfo=timezone.utc)
        elapsed = (now - last_time).total_seconds()
        return elapsed >= rule.effective_cooldown

    def _message(self, rule, agent_name, value):
        if rule.trigger == TriggerType.INTERVAL:
            return f"{rule.name}: {rule.interval.value} report for {agent_name}"
        if value is None:
            return f"{rule.name}: {rule.metric} not available"
        return f"{rule.name}: {rule.metric} = {float(value):.2f} {rule.operator} {rule.threshold:g}"

    def _build_context(self, rule, agent_id, agent_name, metrics, value, snapshot, now):
        return {
            "rule_id": rule.id,
            "rule_name": rule.name,
            "agent_id": agent_id,
            "agent_name": agent_name,
            "metric": rule.metric,
            "operator": rule.operator,
            "threshold": rule.threshold,
            "value": value,
            "interval": rule.interval.value,
            "severity": rule.severity,
            "metrics": dict(metrics),
            "top": dict(snapshot.top) if snapshot is not None else {},
            "timestamp": now.isoformat(),
            "message": self._message(rule, agent_name, value),
        }

    def _deliver(self, rule, agent_id, context):
        """Run the transport; any exception becomes a failed DeliveryResult."""
        if self.transport is None:
            return DeliveryResult.failure("No notification transport configured")
        try:
            result = self.transport.deliver(rule, agent_id, context)
        except Exception as e:
            logger.warning(f"Transport raised for {rule.id}/{agent_id}: {e}")
            return DeliveryResult.failure(f"Transport error: {e}")
        if not isinstance(result, DeliveryResult):
            return DeliveryResult.failure(f"Transport returned {result!r}")
        return result

    def _fire(self, rule, agent_id, context, now, detail_prefix=""):
        result = self._deliver(rule, agent_id, context)
        record = NotificationRecord.from_delivery(
            rule.id, agent_id, result,
            channel=",".join(rule.channels) or "all",
            payload=json.dumps(context, default=str),
            created_at=now,
        )
        if detail_prefix:
            record = replace(record, detail=detail_prefix + record.detail)
        self.db.append_notification(record)
        log = logger.info if result.ok else logger.warning
        log(f"Alert {rule.id} for {agent_id}: {record.status.value} ({result.detail})")
        return record

    def evaluate(self, agent_id, agent_name, metrics, interval, snapshot=None, now=None) -> EvaluationResult:
        """Evaluate every enabled rule for this agent and interval.

        Each rule is isolated: an exception in one is recorded in `errors` and the
        rest still run. Only firings write a NotificationRecord.
        """
        now = now or datetime.now(timezone.utc)
        interval = Interval.parse(interval)
        metrics = metrics or {}
        result = EvaluationResult()

        for rule in self.rules_manager.get_rules_for(agent_id, interval):
            result.evaluated += 1
            try:
                if rule.trigger == TriggerType.INTERVAL:
                    value = metrics.get(rule.metric) if rule.metric else None
                else:
                    value = self._current_value(rule, agent_id, metrics, now)
                    if value is None:
                        continue
                    if not self._evaluate_condition(value, rule.operator, rule.threshold):
                        continue

                if not self._check_cooldown(rule, agent_id, now):
                    logger.debug(f"Rule {rule.id} for {agent_id} in cooldown")
                    continue

                context = self._build_context(rule, agent_id, agent_name, metrics, value, snapshot, now)
                result.fired.append(self._fire(rule, agent_id, context, now))
            except Exception as e:
                logger.exception(f"Rule {rule.id} failed for {agent_id}")
                result.errors.append(f"rule {rule.id}: {e}")

        return result

    def test_fire(self, rule_id, agent_id, agent_name="", metrics=None, now=None):
        """Deliver a rule once, bypassing condition and cooldown. Recorded with a [TEST] prefix."""
        rule = self.rules_manager.get_rule(rule_id)
        if rule is None:
            raise KeyError(rule_id)
        now = now or datetime.now(timezone.utc)
        metrics = metrics or {}
        if not metrics:
            latest = self.db.get_latest_snapshot(agent_id, rule.interval)
            if latest is not None:
                metrics = dict(latest.metrics)
        value = metrics.get(rule.metric)
        context = self._build_context(rule, agent_id, agent_name or agent_id, metrics, value, None, now)
        context["message"] = f"{TEST_PREFIX}{rule.name}: test notification"
        return self._fire(rule, agent_id, context, now, detail_prefix=TEST_PREFIX)

    def preview_rules(self, metrics, agent_id=None):
        """Evaluate ALL rules against metrics without cooldowns or side effects."""
        results = []
        for rule in self.rules_manager.get_all_rules():
            if agent_id is not None and not rule.applies_to(agent_id):
                continue
            value = metrics.get(rule.metric)
            if rule.trigger == TriggerType.INTERVAL:
                would_fire = True
            else:
                would_fire = self._evaluate_condition(value, rule.operator, rule.threshold)

            results.append({
                "rule_id": rule.id,
                "name": rule.name,
                "metric": rule.metric,
                "operator": rule.operator,
                "threshold": rule.threshold,
                "interval": rule.interval.value,
                "current_value": value,
                "would_fire": would_fire,
                "severity": rule.severity,
                "enabled": rule.enabled,
            })
        return results

    def get_recent(self, limit=50):
        return self.db.get_recent_notifications(limit)

    def get_recent_for_rule(self, rule_id, limit=50):
        return self.db.get_notifications_for_rule(rule_id, limit)

    def get_alert_stats(self, now=None):
        return compute_alert_stats(self.db.get_recent_notifications(STATS_WINDOW), now)

    def format_alert_summary(self, records):
        """Format notification records for display."""
        if not records:
            return "All clear - no alerts fired."
        lines = []
        for r in records:
            icon = "ok" if r.status.value == "success" else "!!"
            lines.append(f"[{icon}] {r.created_at:%Y-%m-%d %H:%M} {r.rule_id} ({r.agent_id}) {r.detail}")
        return "\n".join(lines)
