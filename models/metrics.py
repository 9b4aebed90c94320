"""Dataclasses for parsed access-log entries and time-windowed metric snapshots."""
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Optional

from models.enums import Interval


@dataclass
class LogEntry:
    timestamp: datetime
    client_host: str = ""
    method: str = ""
    path: str = ""
    status: int = 0
    duration_ms: float = 0.0
    router_name: str = ""
    service_name: str = ""
    request_host: str = ""
    request_addr: str = ""
    user_agent: str = ""


def _parse_ts(value):
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class MetricSnapshot:
    """Aggregate of one agent's logs over the half-open window [window_start, window_end)."""
    agent_id: str
    agent_name: str
    window_start: datetime
    window_end: datetime
    interval: Interval
    log_count: int = 0
    # Mappings take part in equality but not in the hash
    metrics: dict = field(default_factory=dict, hash=False)
    top: dict = field(default_factory=dict, hash=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if self.log_count < 0:
            raise ValueError("log_count must be >= 0")
        if self.window_end - self.window_start != self.interval.duration:
            raise ValueError(
                f"Window {self.window_start.isoformat()} - {self.window_end.isoformat()} "
                f"does not match interval {self.interval.value}"
            )
        # Read-only views so the snapshot cannot be changed through its mappings
        object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))
        object.__setattr__(self, "top", MappingProxyType(dict(self.top)))

    def contains(self, ts: datetime) -> bool:
        return self.window_start <= ts < self.window_end

    def to_dict(self):
        """Flatten into a dict for DB storage and JSON responses."""
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "timestamp": self.timestamp.isoformat(),
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "interval": self.interval.value,
            "log_count": self.log_count,
            "metrics": json.dumps(dict(self.metrics)),
            "top": json.dumps(dict(self.top)),
        }

    @classmethod
    def from_dict(cls, d):
        """Reconstruct from a flat dict (e.g., DB row)."""
        metrics = d.get("metrics") or {}
        top = d.get("top") or {}
        return cls(
            id=d["id"],
            agent_id=d["agent_id"],
            agent_name=d.get("agent_name", ""),
            timestamp=_parse_ts(d["timestamp"]),
            window_start=_parse_ts(d["window_start"]),
            window_end=_parse_ts(d["window_end"]),
            interval=Interval.parse(d["interval"]),
            log_count=d.get("log_count", 0),
            metrics=json.loads(metrics) if isinstance(metrics, str) else metrics,
            top=json.loads(top) if isinstance(top, str) else top,
        )


@dataclass
class LogBatch:
    """What the log source returns for one agent and window."""
    metrics: dict = field(default_factory=dict)
    logs: Optional[list] = None
