"""Historical retention/archival configuration."""
from dataclasses import dataclass, field
from datetime import datetime, timezone


class ValidationError(ValueError):
    """Rejected configuration or request payload."""


@dataclass
class HistoricalConfig:
    enabled: bool = False
    retention_days: int = 90
    archive_interval: int = 60  # minutes
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "enabled": self.enabled,
            "retention_days": self.retention_days,
            "archive_interval": self.archive_interval,
            "updated_at": self.updated_at.isoformat(),
        }


def _positive_int(name, value):
    # bool is an int subclass; True must not pass as 1
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a positive number")
    if value < 1 or value != int(value):
        raise ValidationError(f"{name} must be a positive number")
    return int(value)


def validate_config_update(updates: dict) -> dict:
    """Check a partial update and return the normalized fields to write."""
    if not isinstance(updates, dict):
        raise ValidationError("Config update must be an object")

    unknown = set(updates) - {"enabled", "retention_days", "archive_interval"}
    if unknown:
        raise ValidationError(f"Unknown config fields: {', '.join(sorted(unknown))}")

    clean = {}
    if "retention_days" in updates:
        clean["retention_days"] = _positive_int("retention_days", updates["retention_days"])
    if "archive_interval" in updates:
        clean["archive_interval"] = _positive_int("archive_interval", updates["archive_interval"])
    if "enabled" in updates:
        if not isinstance(updates["enabled"], bool):
            raise ValidationError("enabled must be a boolean")
        clean["enabled"] = updates["enabled"]
    return clean
