"""Dataclasses for alert rules, delivery results and notification records."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models.enums import Aggregation, Interval, NotificationStatus, TriggerType


@dataclass
class AlertRule:
    id: str = ""
    name: str = ""
    metric: str = ""
    operator: str = ">"
    threshold: float = 0.0
    interval: Interval = Interval.FIVE_MIN
    cooldown_seconds: Optional[int] = None
    enabled: bool = True
    agent_id: Optional[str] = None
    channels: list = field(default_factory=list)
    trigger: TriggerType = TriggerType.THRESHOLD
    aggregation: Aggregation = Aggregation.LATEST
    severity: str = "WARNING"
    description: str = ""
    parameters: list = field(default_factory=list)

    @property
    def effective_cooldown(self) -> float:
        """Seconds between firings; defaults to one firing per interval window."""
        if self.cooldown_seconds is None:
            return self.interval.duration.total_seconds()
        return float(self.cooldown_seconds)

    def applies_to(self, agent_id) -> bool:
        return self.agent_id is None or self.agent_id == agent_id


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    detail: str = ""

    @classmethod
    def success(cls, detail=""):
        return cls(ok=True, detail=detail)

    @classmethod
    def failure(cls, detail):
        return cls(ok=False, detail=detail)


@dataclass(frozen=True)
class NotificationRecord:
    """One alert notification attempt. Never edited once written."""
    rule_id: str
    agent_id: str
    status: NotificationStatus
    channel: str = ""
    detail: str = ""
    payload: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: f"notification-{uuid.uuid4().hex[:16]}")

    @classmethod
    def from_delivery(cls, rule_id, agent_id, result: DeliveryResult, channel="", payload="", created_at=None):
        return cls(
            rule_id=rule_id,
            agent_id=agent_id,
            status=NotificationStatus.SUCCESS if result.ok else NotificationStatus.FAILED,
            channel=channel,
            detail=result.detail,
            payload=payload,
            created_at=created_at or datetime.now(timezone.utc),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "agent_id": self.agent_id,
            "status": self.status.value,
            "channel": self.channel,
            "detail": self.detail,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, d):
        created = d["created_at"]
        if isinstance(created, str):
            created = datetime.fromisoformat(created)
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return cls(
            id=d["id"],
            rule_id=d["rule_id"],
            agent_id=d.get("agent_id") or "",
            status=NotificationStatus(d["status"]),
            channel=d.get("channel") or "",
            detail=d.get("detail") or "",
            payload=d.get("payload") or "",
            created_at=created,
        )
