"""Fan one metrics update out to snapshotting, alert evaluation and archival bookkeeping."""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from models.enums import Interval
from monitor.snapshot_builder import build_snapshot, window_for

logger = logging.getLogger("logmonitor.coordinator")

DEFAULT_SNAPSHOT_INTERVAL = Interval.FIVE_MIN


@dataclass
class ProcessResult:
    snapshots: list = field(default_factory=list)
    fired: list = field(default_factory=list)
    errors: list = field(default_factory=list)
    evaluated: int = 0

    @property
    def ok(self):
        return not self.errors

    def to_dict(self):
        return {
            "snapshots": [s.id for s in self.snapshots],
            "fired": [r.to_dict() for r in self.fired],
            "errors": list(self.errors),
            "evaluated": self.evaluated,
        }


class ServiceCoordinator:
    def __init__(self, db, rules_manager, alert_engine, archival, top_limit=10):
        self.db = db
        self.rules_manager = rules_manager
        self.alert_engine = alert_engine
        self.archival = archival
        self.top_limit = top_limit
        self._lock = threading.Lock()
        self._initialized = False
        self._last_evaluated = {}
        self._counters = self._zero_counters()

    @staticmethod
    def _zero_counters():
        return {"snapshots_created": 0, "rules_evaluated": 0, "alerts_fired": 0, "errors": 0}

    @property
    def initialized(self):
        return self._initialized

    def initialize(self):
        """Warm evaluation state from the store. Returns False if already initialized."""
        with self._lock:
            if self._initialized:
                return False
            self._last_evaluated = self.db.get_evaluation_state()
            self._counters = self._zero_counters()
            self._initialized = True
        logger.info(f"Coordinator initialized ({len(self._last_evaluated)} evaluation marks)")
        return True

    def shutdown(self):
        with self._lock:
            if not self._initialized:
                return False
            self._initialized = False
            self._last_evaluated = {}
        self.archival.clear()
        logger.info("Coordinator shut down")
        return True

    def intervals_for(self, agent_id):
        return self.rules_manager.get_intervals_for(agent_id)

    def last_evaluated(self, agent_id, interval):
        with self._lock:
            return self._last_evaluated.get((agent_id, Interval.parse(interval)))

    def due_intervals(self, agent_id, now=None):
        """Intervals whose last evaluation plus duration has passed."""
        now = now or datetime.now(timezone.utc)
        due = []
        for interval in self.intervals_for(agent_id):
            last = self.last_evaluated(agent_id, interval)
            if last is None or last + interval.duration <= now:
                due.append(interval)
        return due

    def mark_evaluated(self, agent_id, interval, when):
        interval = Interval.parse(interval)
        with self._lock:
            self._last_evaluated[(agent_id, interval)] = when
        self.db.set_evaluated(agent_id, interval, when)

    def _count(self, **deltas):
        with self._lock:
            for key, delta in deltas.items():
                self._counters[key] += delta

    def create_snapshot(self, agent_id, agent_name, logs, interval, now=None):
        """Build and persist one snapshot for the interval window ending at now."""
        now = now or datetime.now(timezone.utc)
        interval = Interval.parse(interval)
        start, end = window_for(interval, now)
        snapshot = build_snapshot(logs, agent_id, agent_name, start, end, interval,
                                  top_limit=self.top_limit, now=now)
        stored = self.db.save_snapshot(snapshot)
        self._count(snapshots_created=1)
        return stored

    def process_metrics(self, agent_id, agent_name, metrics, logs=None, intervals=None, now=None) -> ProcessResult:
        """Snapshot (when logs are given), evaluate alerts, then touch archival.

        All three phases are always attempted. Phase failures are collected in the
        result, never raised.
        """
        now = now or datetime.now(timezone.utc)
        metrics = dict(metrics or {})
        result = ProcessResult()

        if intervals is None:
            intervals = self.intervals_for(agent_id)
        intervals = [Interval.parse(i) for i in intervals]

        snapshots = {}
        if logs:
            for interval in intervals or [DEFAULT_SNAPSHOT_INTERVAL]:
                try:
                    snapshot = self.create_snapshot(agent_id, agent_name, logs, interval, now)
                    snapshots[interval] = snapshot
                    result.snapshots.append(snapshot)
                except Exception as e:
                    logger.exception(f"Snapshot failed for {agent_id}/{interval.value}")
                    result.errors.append(f"snapshot {interval.value}: {e}")
        else:
            logger.debug(f"No logs for {agent_id}, skipping snapshot")

        for interval in intervals:
            snapshot = snapshots.get(interval)
            values = metrics or (dict(snapshot.metrics) if snapshot else {})
            try:
                evaluation = self.alert_engine.evaluate(
                    agent_id, agent_name, values, interval, snapshot=snapshot, now=now
                )
                result.fired.extend(evaluation.fired)
                result.errors.extend(evaluation.errors)
                result.evaluated += evaluation.evaluated
                self.mark_evaluated(agent_id, interval, now)
            except Exception as e:
                logger.exception(f"Alert evaluation failed for {agent_id}/{interval.value}")
                result.errors.append(f"alerts {interval.value}: {e}")

        try:
            self.archival.touch(agent_id, metrics or None, now)
        except Exception as e:
            logger.exception(f"Archival touch failed for {agent_id}")
            result.errors.append(f"archival: {e}")

        self._count(
            rules_evaluated=result.evaluated,
            alerts_fired=len(result.fired),
            errors=len(result.errors),
        )
        if result.errors:
            logger.warning(f"Processed {agent_id} with {len(result.errors)} error(s): {result.errors}")
        return result

    def get_status(self):
        with self._lock:
            status = {
                "initialized": self._initialized,
                "counters": dict(self._counters),
                "tracked_pairs": len(self._last_evaluated),
            }
        status["archival"] = self.archival.get_status()
        return status
