"""Aggregate read model over notification history."""
from datetime import datetime, timedelta, timezone

from models.enums import NotificationStatus

RECENT_PREVIEW = 5


def compute_alert_stats(records, now=None):
    """Counts over the given records plus a preview of the newest five."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=24)
    ordered = sorted(records, key=lambda r: r.created_at, reverse=True)

    return {
        "total": len(ordered),
        "last_24h": sum(1 for r in ordered if r.created_at >= cutoff),
        "success": sum(1 for r in ordered if r.status == NotificationStatus.SUCCESS),
        "failed": sum(1 for r in ordered if r.status == NotificationStatus.FAILED),
        "recent": [r.to_dict() for r in ordered[:RECENT_PREVIEW]],
    }
