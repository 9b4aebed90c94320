"""Tests for retention sweeps and historical archival."""
import threading
from datetime import timedelta
from unittest.mock import MagicMock

from models.enums import Interval
from models.historical import HistoricalConfig
from monitor.archival import MAX_CACHED_AGENTS, ArchivalPolicy
from monitor.snapshot_builder import build_snapshot, window_for


def _save_snapshot(db, agent_id, at):
    start, end = window_for(Interval.FIVE_MIN, at)
    db.save_snapshot(build_snapshot([], agent_id, agent_id, start, end, Interval.FIVE_MIN, now=at))


def test_sweep_deletes_only_expired(temp_db, now):
    temp_db.update_historical_config({"retention_days": 30})
    _save_snapshot(temp_db, "a1", now - timedelta(days=31))
    _save_snapshot(temp_db, "a1", now - timedelta(days=29))
    temp_db.add_historical_data("a1", {"request_count": 1}, now - timedelta(days=45))

    result = ArchivalPolicy(temp_db).sweep(now)
    assert result["snapshots_deleted"] == 1
    assert result["historical_deleted"] == 1
    assert temp_db.count_snapshots() == 1


def test_sweep_is_idempotent(temp_db, now):
    _save_snapshot(temp_db, "a1", now - timedelta(days=200))
    policy = ArchivalPolicy(temp_db)
    assert policy.sweep(now)["snapshots_deleted"] == 1
    second = policy.sweep(now)
    assert second["snapshots_deleted"] == 0
    assert second["historical_deleted"] == 0


def test_archive_noop_when_disabled(temp_db, now):
    policy = ArchivalPolicy(temp_db)
    policy.touch("a1", {"request_count": 5}, now)
    assert policy.archive(now) == 0
    assert temp_db.query_historical_data() == []


def test_archive_writes_latest_metrics(temp_db, now):
    temp_db.update_historical_config({"enabled": True})
    policy = ArchivalPolicy(temp_db)
    policy.touch("a1", {"request_count": 5}, now)
    policy.touch("a1", {"request_count": 7}, now)
    policy.touch("a2", {"request_count": 1}, now)
    policy.touch("a3", None, now)

    assert policy.archive(now) == 2
    rows = temp_db.query_historical_data("a1")
    assert rows[0]["metrics"] == {"request_count": 7}
    assert policy.last_activity("a3") == now


def test_config_change_applies_next_run(temp_db, now):
    policy = ArchivalPolicy(temp_db)
    _save_snapshot(temp_db, "a1", now - timedelta(days=10))
    assert policy.sweep(now)["snapshots_deleted"] == 0

    temp_db.update_historical_config({"retention_days": 7})
    assert policy.sweep(now)["snapshots_deleted"] == 1


def test_is_due_tracks_archive_interval(temp_db, now):
    temp_db.update_historical_config({"archive_interval": 30})
    policy = ArchivalPolicy(temp_db)
    assert policy.is_due(now)
    policy.run(now)
    assert not policy.is_due(now + timedelta(minutes=29))
    assert policy.is_due(now + timedelta(minutes=30))


def test_run_reports_and_records_status(temp_db, now):
    temp_db.update_historical_config({"enabled": True})
    policy = ArchivalPolicy(temp_db)
    policy.touch("a1", {"request_count": 3}, now)
    result = policy.run(now)
    assert result["archived"] == 1
    assert result["snapshots_deleted"] == 0

    status = policy.get_status()
    assert status["enabled"] is True
    assert status["last_run_at"] == now.isoformat()
    assert status["archiving"] is False


def test_run_skips_when_in_progress(now):
    db = MagicMock()
    db.get_historical_config.return_value = HistoricalConfig(enabled=True)
    started, release = threading.Event(), threading.Event()

    def slow_delete(cutoff):
        started.set()
        release.wait(5)
        return 0

    db.delete_snapshots_before.side_effect = slow_delete
    db.delete_historical_before.return_value = 0
    policy = ArchivalPolicy(db)

    assert policy.run_in_background(now) is True
    assert started.wait(5)
    assert policy.run(now) is None
    assert policy.run_in_background(now) is False
    release.set()
    policy._thread.join(5)
    assert policy.get_status()["last_result"]["archived"] == 0


def test_metrics_cache_is_bounded(temp_db, now):
    policy = ArchivalPolicy(temp_db)
    for i in range(MAX_CACHED_AGENTS + 5):
        policy.touch(f"a{i}", {"request_count": i}, now)
    assert policy.get_status()["cached_agents"] == MAX_CACHED_AGENTS


def test_clear(temp_db, now):
    policy = ArchivalPolicy(temp_db)
    policy.touch("a1", {"x": 1}, now)
    policy.clear()
    assert policy.last_activity("a1") is None
