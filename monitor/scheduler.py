"""Background scheduler that drives recurring (agent, interval) evaluation cycles."""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import schedule

from monitor.snapshot_builder import window_for

logger = logging.getLogger("logmonitor.scheduler")


class SchedulerBusyError(RuntimeError):
    """A cycle is already executing."""


@dataclass
class CycleResult:
    started_at: datetime
    finished_at: Optional[datetime] = None
    units: int = 0
    processed: int = 0
    failed: int = 0
    errors: list = field(default_factory=list)

    @property
    def ok(self):
        return self.failed == 0

    def to_dict(self):
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "units": self.units,
            "processed": self.processed,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class SchedulerState:
    """In-memory run state owned by one BackgroundScheduler."""

    def __init__(self):
        self._lock = threading.Lock()
        self.is_running = False
        self.cycle_in_progress = False
        self.last_run_at = None
        self.last_error = None
        self.last_result = None
        self.run_count = 0
        self.error_count = 0

    def begin_cycle(self):
        with self._lock:
            self.cycle_in_progress = True

    def record_cycle(self, result: CycleResult):
        with self._lock:
            self.cycle_in_progress = False
            self.run_count += 1
            self.last_run_at = result.finished_at or result.started_at
            self.last_result = result.to_dict()
            if result.errors:
                self.error_count += 1
                shown = "; ".join(result.errors[:3])
                more = f" (+{len(result.errors) - 3} more)" if len(result.errors) > 3 else ""
                self.last_error = f"{result.failed}/{result.units} units failed: {shown}{more}"
            else:
                self.last_error = None

    def record_failure(self, when, message):
        with self._lock:
            self.cycle_in_progress = False
            self.run_count += 1
            self.error_count += 1
            self.last_run_at = when
            self.last_error = message

    def snapshot(self):
        with self._lock:
            return {
                "is_running": self.is_running,
                "cycle_in_progress": self.cycle_in_progress,
                "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
                "last_error": self.last_error,
                "run_count": self.run_count,
                "error_count": self.error_count,
                "last_result": self.last_result,
            }


class BackgroundScheduler:
    def __init__(self, coordinator, db, log_source, archival=None, tick_seconds=60,
                 max_workers=4, cycle_timeout=120, enabled=True):
        self.coordinator = coordinator
        self.db = db
        self.log_source = log_source
        self.archival = archival
        self.tick_seconds = tick_seconds
        self.max_workers = max_workers
        self.cycle_timeout = cycle_timeout
        self.enabled = enabled
        self.state = SchedulerState()
        self._scheduler = schedule.Scheduler()
        self._job = None
        self._thread = None
        self._stop_event = threading.Event()
        self._start_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        # (agent_id, interval) pairs whose unit is still executing, possibly past a cycle timeout
        self._in_flight = set()
        self._in_flight_lock = threading.Lock()

    @property
    def is_running(self):
        return self.state.is_running

    @property
    def busy(self):
        return self._cycle_lock.locked()

    @property
    def in_flight(self):
        with self._in_flight_lock:
            return set(self._in_flight)

    def start(self, run_immediately=True):
        """Arm the recurring timer. Returns False (and does nothing) if already running."""
        with self._start_lock:
            if self.state.is_running:
                logger.warning("Scheduler already running, ignoring start()")
                return False

            # Fresh event per run so a loop left over from a previous start stays stopped
            self._stop_event = threading.Event()
            self._scheduler.clear()
            self._job = self._scheduler.every(self.tick_seconds).seconds.do(self._tick)
            self.state.is_running = True

            self._thread = threading.Thread(
                target=self._run_loop, args=(self._stop_event, run_immediately),
                name="scheduler", daemon=True,
            )
            self._thread.start()
        logger.info(f"Scheduler started (every {self.tick_seconds}s)")
        return True

    def stop(self):
        """Cancel the timer. An in-flight cycle finishes on its own; this never waits for it."""
        with self._start_lock:
            if not self.state.is_running:
                return False
            self.state.is_running = False
            self._stop_event.set()
            self._scheduler.clear()
            self._job = None
            self._thread = None
        logger.info("Scheduler stopped")
        return True

    def _run_loop(self, stop_event, run_immediately):
        if run_immediately and not stop_event.is_set():
            self._tick()
        while not stop_event.is_set():
            self._scheduler.run_pending()
            stop_event.wait(1)

    def _tick(self):
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Previous cycle still running, skipping tick")
            return
        try:
            self._run_cycle()
        except Exception as e:
            logger.error(f"Scheduled cycle failed: {e}")
        finally:
            self._cycle_lock.release()
        self._maybe_archive()

    def _maybe_archive(self, now=None):
        if self.archival is None:
            return
        try:
            if self.archival.is_due(now):
                self.archival.run_in_background(now)
        except Exception as e:
            logger.error(f"Archival check failed: {e}")

    def run_once(self, now=None) -> CycleResult:
        """Run one cycle synchronously. Raises SchedulerBusyError if a cycle is executing."""
        if not self._cycle_lock.acquire(blocking=False):
            raise SchedulerBusyError("A scheduler cycle is already in progress")
        try:
            return self._run_cycle(now)
        finally:
            self._cycle_lock.release()

    def _collect_units(self, now):
        units = []
        busy = self.in_flight
        for agent in self.db.get_agents(enabled_only=True):
            for interval in self.coordinator.due_intervals(agent.id, now):
                if (agent.id, interval) in busy:
                    logger.warning(f"Skipping {agent.id}/{interval.value}: previous unit still running")
                    continue
                units.append((agent, interval))
        return units

    def _process_unit(self, agent, interval, now):
        start, end = window_for(interval, now)
        batch = self.log_source.fetch(agent, start, end)
        outcome = self.coordinator.process_metrics(
            agent.id, agent.name, batch.metrics, logs=batch.logs, intervals=[interval], now=now,
        )
        return outcome.errors

    def _submit_unit(self, executor, agent, interval, now):
        """Submit one unit; its pair stays in flight until the future finishes or is cancelled."""
        key = (agent.id, interval)
        with self._in_flight_lock:
            self._in_flight.add(key)
        future = executor.submit(self._process_unit, agent, interval, now)
        future.add_done_callback(lambda _f: self._release_unit(key))
        return future

    def _release_unit(self, key):
        with self._in_flight_lock:
            self._in_flight.discard(key)

    def _run_cycle(self, now=None) -> CycleResult:
        now = now or datetime.now(timezone.utc)
        self.state.begin_cycle()
        try:
            self.coordinator.initialize()
            units = self._collect_units(now)
        except Exception as e:
            logger.exception("Could not plan scheduler cycle")
            self.state.record_failure(now, f"Cycle setup failed: {e}")
            raise

        result = CycleResult(started_at=now, units=len(units))
        if units:
            executor = ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(units))),
                                          thread_name_prefix="cycle")
            futures = {}
            for agent, interval in units:
                futures[self._submit_unit(executor, agent, interval, now)] = (agent, interval)
            done, not_done = wait(futures, timeout=self.cycle_timeout)

            for future in done:
                agent, interval = futures[future]
                self._release_unit((agent.id, interval))
                label = f"{agent.id}/{interval.value}"
                try:
                    errors = future.result()
                except Exception as e:
                    logger.error(f"Unit {label} failed: {e}")
                    errors = [str(e)]
                if errors:
                    result.failed += 1
                    result.errors.append(f"{label}: {'; '.join(errors)}")
                else:
                    result.processed += 1

            for future in not_done:
                agent, interval = futures[future]
                result.failed += 1
                result.errors.append(f"{agent.id}/{interval.value}: timed out after {self.cycle_timeout}s")
            executor.shutdown(wait=False, cancel_futures=True)

        result.finished_at = datetime.now(timezone.utc)
        self.state.record_cycle(result)
        logger.info(f"Cycle finished: {result.processed}/{result.units} units ok, {result.failed} failed")
        return result

    def next_run_at(self):
        if not self.state.is_running:
            return None
        next_run = self._scheduler.next_run
        if next_run is None:
            return None
        # schedule reports naive local time
        return next_run.astimezone(timezone.utc)

    def get_status(self):
        status = self.state.snapshot()
        next_run = self.next_run_at()
        status["next_run_at"] = next_run.isoformat() if next_run else None
        status["enabled"] = self.enabled
        status["tick_seconds"] = self.tick_seconds
        status["units_in_flight"] = len(self.in_flight)
        return status
