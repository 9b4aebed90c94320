"""Retention and archival of metric snapshots and per-agent history."""
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta, timezone

logger = logging.getLogger("logmonitor.archival")

MAX_CACHED_AGENTS = 100


class ArchivalPolicy:
    """Archives the latest metrics per agent and sweeps data past retention.

    The historical config is read from the store at the start of every operation,
    so changes apply on the next run and never mid-sweep. Sweeps keep no progress
    state: an interrupted sweep is finished by the next one.
    """

    def __init__(self, db):
        self.db = db
        self._lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._last_activity = {}
        self._metrics_cache = OrderedDict()
        self._last_run_at = None
        self._last_result = None
        self._thread = None

    def touch(self, agent_id, metrics=None, now=None):
        """Record activity for an agent and remember its latest metrics for archival."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            self._last_activity[agent_id] = now
            if metrics is not None:
                self._metrics_cache.pop(agent_id, None)
                self._metrics_cache[agent_id] = dict(metrics)
                while len(self._metrics_cache) > MAX_CACHED_AGENTS:
                    self._metrics_cache.popitem(last=False)

    def last_activity(self, agent_id):
        with self._lock:
            return self._last_activity.get(agent_id)

    def archive(self, now=None) -> int:
        """Write one historical row per agent with cached metrics. No-op when disabled."""
        config = self.db.get_historical_config()
        if not config.enabled:
            logger.debug("Historical storage disabled, skipping archive")
            return 0

        now = now or datetime.now(timezone.utc)
        with self._lock:
            cached = list(self._metrics_cache.items())

        archived = 0
        for agent_id, metrics in cached:
            try:
                self.db.add_historical_data(agent_id, metrics, now)
                archived += 1
            except Exception as e:
                logger.error(f"Failed to archive metrics for {agent_id}: {e}")
        logger.info(f"Archived metrics for {archived} agent(s)")
        return archived

    def sweep(self, now=None) -> dict:
        """Delete snapshots and historical rows older than retention_days."""
        config = self.db.get_historical_config()
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=config.retention_days)

        snapshots = self.db.delete_snapshots_before(cutoff)
        historical = self.db.delete_historical_before(cutoff)
        if snapshots or historical:
            logger.info(f"Swept {snapshots} snapshots and {historical} historical rows older than {cutoff:%Y-%m-%d}")
        return {
            "cutoff": cutoff.isoformat(),
            "snapshots_deleted": snapshots,
            "historical_deleted": historical,
        }

    def is_due(self, now=None) -> bool:
        config = self.db.get_historical_config()
        now = now or datetime.now(timezone.utc)
        with self._lock:
            last = self._last_run_at
        return last is None or now - last >= timedelta(minutes=config.archive_interval)

    def run(self, now=None):
        """Archive then sweep, synchronously. Returns None if a run is already in progress."""
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Archival already in progress, skipping")
            return None
        try:
            now = now or datetime.now(timezone.utc)
            result = {"archived": self.archive(now)}
            result.update(self.sweep(now))
            with self._lock:
                self._last_run_at = now
                self._last_result = result
            return result
        finally:
            self._run_lock.release()

    def run_in_background(self, now=None) -> bool:
        """Start a run on a daemon thread unless one is already going."""
        if self._run_lock.locked():
            return False

        def _target():
            try:
                self.run(now)
            except Exception:
                logger.exception("Background archival failed")

        self._thread = threading.Thread(target=_target, name="archival", daemon=True)
        self._thread.start()
        return True

    def get_status(self):
        config = self.db.get_historical_config()
        with self._lock:
            return {
                "enabled": config.enabled,
                "retention_days": config.retention_days,
                "archive_interval": config.archive_interval,
                "cached_agents": len(self._metrics_cache),
                "archiving": self._run_lock.locked(),
                "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
                "last_result": self._last_result,
            }

    def clear(self):
        with self._lock:
            self._metrics_cache.clear()
            self._last_activity.clear()
