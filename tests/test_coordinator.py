"""Tests for the service coordinator."""
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from alerts.engine import AlertEngine, EvaluationResult
from models.alerts import AlertRule
from models.enums import Interval
from monitor.archival import ArchivalPolicy
from monitor.coordinator import ServiceCoordinator


@pytest.fixture
def coordinator(temp_db, transport, error_rate_rule, static_rules):
    rules = static_rules([error_rate_rule])
    engine = AlertEngine(rules, temp_db, transport)
    return ServiceCoordinator(temp_db, rules, engine, ArchivalPolicy(temp_db))


def test_initialize_is_idempotent(coordinator):
    assert coordinator.initialize() is True
    assert coordinator.initialize() is False
    assert coordinator.initialized


def test_initialize_restores_evaluation_marks(temp_db, coordinator, now):
    temp_db.set_evaluated("a1", "5m", now)
    coordinator.initialize()
    assert coordinator.last_evaluated("a1", Interval.FIVE_MIN) == now
    assert coordinator.due_intervals("a1", now + timedelta(minutes=1)) == []


def test_shutdown(coordinator):
    assert coordinator.shutdown() is False
    coordinator.initialize()
    assert coordinator.shutdown() is True
    assert not coordinator.initialized


@pytest.mark.parametrize("logs", [None, []])
def test_no_logs_evaluates_without_snapshot(temp_db, coordinator, now, logs):
    result = coordinator.process_metrics("a1", "A", {"error_rate": 0.8}, logs=logs, now=now)
    assert result.ok
    assert result.snapshots == []
    assert len(result.fired) == 1
    assert temp_db.count_snapshots() == 0
    assert coordinator.archival.last_activity("a1") == now


def test_logs_produce_snapshot_per_interval(temp_db, coordinator, window_logs, now):
    result = coordinator.process_metrics("a1", "A", {}, logs=window_logs, now=now)
    assert len(result.snapshots) == 1
    snap = result.snapshots[0]
    assert snap.interval == Interval.FIVE_MIN
    assert snap.log_count == 20
    # Metrics fall back to the snapshot when none are passed in
    assert len(result.fired) == 1
    assert temp_db.get_latest_snapshot("a1", "5m").id == snap.id


def test_logs_without_rules_use_default_interval(temp_db, transport, static_rules, window_logs, now):
    rules = static_rules([])
    coordinator = ServiceCoordinator(temp_db, rules, AlertEngine(rules, temp_db, transport),
                                     ArchivalPolicy(temp_db))
    result = coordinator.process_metrics("a1", "A", {}, logs=window_logs, now=now)
    assert [s.interval for s in result.snapshots] == [Interval.FIVE_MIN]
    assert result.evaluated == 0


def test_engine_failure_is_surfaced(temp_db, static_rules, error_rate_rule, window_logs, now):
    engine = MagicMock()
    engine.evaluate.side_effect = RuntimeError("engine down")
    coordinator = ServiceCoordinator(temp_db, static_rules([error_rate_rule]), engine,
                                     ArchivalPolicy(temp_db))

    result = coordinator.process_metrics("a1", "A", {"error_rate": 1}, logs=window_logs, now=now)
    assert not result.ok
    assert any("engine down" in e for e in result.errors)
    # Snapshot and archival phases still ran
    assert len(result.snapshots) == 1
    assert coordinator.archival.last_activity("a1") == now


def test_rule_errors_flow_into_result(temp_db, static_rules, error_rate_rule, now):
    engine = MagicMock()
    engine.evaluate.return_value = EvaluationResult(errors=["rule x: bad"], evaluated=1)
    coordinator = ServiceCoordinator(temp_db, static_rules([error_rate_rule]), engine,
                                     ArchivalPolicy(temp_db))
    result = coordinator.process_metrics("a1", "A", {}, now=now)
    assert result.errors == ["rule x: bad"]
    assert coordinator.get_status()["counters"]["errors"] == 1


def test_due_intervals(temp_db, transport, static_rules, now):
    rules = static_rules([
        AlertRule(id="r5", name="5m", metric="error_rate", threshold=99, interval=Interval.FIVE_MIN),
        AlertRule(id="r1h", name="1h", metric="error_rate", threshold=99, interval=Interval.ONE_HOUR),
    ])
    coordinator = ServiceCoordinator(temp_db, rules, AlertEngine(rules, temp_db, transport),
                                     ArchivalPolicy(temp_db))
    assert coordinator.due_intervals("a1", now) == [Interval.FIVE_MIN, Interval.ONE_HOUR]

    coordinator.process_metrics("a1", "A", {}, now=now)
    assert coordinator.due_intervals("a1", now + timedelta(minutes=5)) == [Interval.FIVE_MIN]
    assert temp_db.get_evaluation_state()[("a1", Interval.ONE_HOUR)] == now


def test_status_counters(coordinator, window_logs, now):
    coordinator.initialize()
    coordinator.process_metrics("a1", "A", {}, logs=window_logs, now=now)
    status = coordinator.get_status()
    assert status["initialized"] is True
    assert status["counters"]["snapshots_created"] == 1
    assert status["counters"]["alerts_fired"] == 1
    assert status["counters"]["rules_evaluated"] == 1
    assert status["tracked_pairs"] == 1
    assert "retention_days" in status["archival"]
