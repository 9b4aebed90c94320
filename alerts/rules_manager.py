"""Alert rules loading and management."""
import logging
import yaml
from pathlib import Path

from models.alerts import AlertRule
from models.enums import Aggregation, Interval, Severity, TriggerType
from monitor.metrics import METRIC_NAMES

logger = logging.getLogger("logmonitor.alerts.rules")

VALID_OPERATORS = {"<", ">", "<=", ">=", "=="}


class RulesManager:
    def __init__(self, rules_path="config/alert_rules.yaml", rules=None):
        self.rules_path = Path(rules_path)
        self.rules = []
        if rules is not None:
            self.rules = self._parse_rules(rules)
        else:
            self.load()

    def load(self):
        if not self.rules_path.exists():
            logger.warning(f"Alert rules file not found: {self.rules_path}")
            return
        with open(self.rules_path) as f:
            data = yaml.safe_load(f) or {}
        self.rules = self._parse_rules(data.get("rules", []))
        logger.info(f"Loaded {len(self.rules)} rules")

    def _parse_rules(self, raw_rules):
        rules = []
        seen = set()
        for r in raw_rules:
            if isinstance(r, AlertRule):
                rules.append(r)
                continue
            rule_id = r.get("id")
            if not rule_id or rule_id in seen:
                logger.warning(f"Skipping rule with missing or duplicate id: {rule_id}")
                continue
            try:
                rule = self._parse_rule(r)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Invalid rule {rule_id}: {e}")
                continue
            seen.add(rule_id)
            rules.append(rule)
        return rules

    def _parse_rule(self, r):
        trigger = TriggerType(r.get("trigger", "threshold"))
        operator = r.get("operator", ">")
        if operator not in VALID_OPERATORS:
            raise ValueError(f"invalid operator {operator!r}")
        metric = r.get("metric", "")
        if trigger == TriggerType.THRESHOLD and metric not in METRIC_NAMES:
            raise ValueError(f"unknown metric {metric!r}")

        cooldown = r.get("cooldown_seconds")
        return AlertRule(
            id=str(r["id"]),
            name=r.get("name", r["id"]),
            metric=metric,
            operator=operator,
            threshold=float(r.get("threshold", 0)),
            interval=Interval.parse(r.get("interval", "5m")),
            cooldown_seconds=int(cooldown) if cooldown is not None else None,
            enabled=r.get("enabled", True),
            agent_id=r.get("agent_id"),
            channels=list(r.get("channels") or []),
            trigger=trigger,
            aggregation=Aggregation(r.get("aggregation", "latest")),
            severity=Severity(str(r.get("severity", "WARNING")).upper()).value,
            description=r.get("description", ""),
            parameters=list(r.get("parameters") or []),
        )

    def get_enabled_rules(self):
        return [r for r in self.rules if r.enabled]

    def get_rules_for(self, agent_id, interval=None):
        """Enabled rules that apply to an agent, optionally for one interval."""
        rules = [r for r in self.get_enabled_rules() if r.applies_to(agent_id)]
        if interval is not None:
            interval = Interval.parse(interval)
            rules = [r for r in rules if r.interval == interval]
        return rules

    def get_intervals_for(self, agent_id):
        intervals = {r.interval for r in self.get_rules_for(agent_id)}
        return sorted(intervals, key=lambda i: i.duration)

    def get_rule(self, rule_id):
        for r in self.rules:
            if r.id == rule_id:
                return r
        return None

    def get_all_rules(self):
        return self.rules
