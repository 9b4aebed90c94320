"""Enums for evaluation intervals, notification status and severity."""
from datetime import timedelta
from enum import Enum


class Interval(str, Enum):
    FIVE_MIN = "5m"
    FIFTEEN_MIN = "15m"
    THIRTY_MIN = "30m"
    ONE_HOUR = "1h"
    SIX_HOURS = "6h"
    TWELVE_HOURS = "12h"
    ONE_DAY = "24h"

    @property
    def duration(self) -> timedelta:
        return _INTERVAL_DURATIONS[self]

    @classmethod
    def parse(cls, value):
        """Accept an Interval or its string label ("5m", "1h", ...)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            valid = ", ".join(i.value for i in cls)
            raise ValueError(f"Invalid interval {value!r}. Must be one of: {valid}") from None


_INTERVAL_DURATIONS = {
    Interval.FIVE_MIN: timedelta(minutes=5),
    Interval.FIFTEEN_MIN: timedelta(minutes=15),
    Interval.THIRTY_MIN: timedelta(minutes=30),
    Interval.ONE_HOUR: timedelta(hours=1),
    Interval.SIX_HOURS: timedelta(hours=6),
    Interval.TWELVE_HOURS: timedelta(hours=12),
    Interval.ONE_DAY: timedelta(hours=24),
}


class NotificationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class TriggerType(str, Enum):
    THRESHOLD = "threshold"
    INTERVAL = "interval"


class Aggregation(str, Enum):
    LATEST = "latest"
    AVG = "avg"
