"""Build immutable MetricSnapshots from a log batch and an explicit time window."""
import logging
from datetime import datetime, timezone

from models.enums import Interval
from models.metrics import MetricSnapshot
from monitor.log_parser import parse_logs
from monitor.metrics import calculate_metrics, calculate_top

logger = logging.getLogger("logmonitor.snapshots")


def window_for(interval, end):
    """The half-open window of one interval ending at `end`."""
    interval = Interval.parse(interval)
    return end - interval.duration, end


def build_snapshot(logs, agent_id, agent_name, window_start, window_end, interval,
                   top_limit=10, now=None) -> MetricSnapshot:
    """Filter logs to [window_start, window_end) and aggregate them.

    Entries outside the window are dropped silently. An empty batch yields a
    snapshot with log_count 0 and zeroed metrics. Raises ValueError when the window
    does not span exactly one interval.
    """
    interval = Interval.parse(interval)
    if window_end - window_start != interval.duration:
        raise ValueError(
            f"Window of {window_end - window_start} does not match interval {interval.value}"
        )

    entries = parse_logs(logs or [])
    in_window = [e for e in entries if window_start <= e.timestamp < window_end]
    dropped = len(entries) - len(in_window)
    if dropped:
        logger.debug(f"{agent_id}/{interval.value}: {dropped} entries outside window")

    return MetricSnapshot(
        agent_id=agent_id,
        agent_name=agent_name,
        window_start=window_start,
        window_end=window_end,
        interval=interval,
        log_count=len(in_window),
        metrics=calculate_metrics(in_window, interval.duration.total_seconds()),
        top=calculate_top(in_window, top_limit),
        timestamp=now or datetime.now(timezone.utc),
    )
