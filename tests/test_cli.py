"""Tests for CLI commands."""
import json
import pytest
from datetime import datetime, timedelta, timezone

from click.testing import CliRunner
from main import cli
from models.alerts import DeliveryResult, NotificationRecord
from models.database import Database


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def env(tmp_path):
    return {"LOGMON_DB_PATH": str(tmp_path / "cli.db"), "LOGMON_LOG_LEVEL": "WARNING"}


def test_cli_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "Traefik Log Monitor" in result.output
    for command in ("run", "trigger", "status", "sweep", "history", "config", "alerts"):
        assert command in result.output


def test_cli_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "1.0.0" in result.output


def test_alerts_help(runner):
    result = runner.invoke(cli, ["alerts", "--help"])
    assert result.exit_code == 0
    for command in ("recent", "stats", "test", "preview", "rules"):
        assert command in result.output


def test_run_help(runner):
    result = runner.invoke(cli, ["run", "--help"])
    assert result.exit_code == 0
    assert "--no-scheduler" in result.output


def test_config_show_defaults(runner, env):
    result = runner.invoke(cli, ["config", "show"], env=env)
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["retention_days"] == 90
    assert data["enabled"] is False


def test_config_set_then_show(runner, env):
    result = runner.invoke(cli, ["config", "set", "--retention-days", "30", "--enabled"], env=env)
    assert result.exit_code == 0
    data = json.loads(runner.invoke(cli, ["config", "show"], env=env).output)
    assert data["retention_days"] == 30
    assert data["enabled"] is True


def test_config_set_rejects_zero(runner, env):
    result = runner.invoke(cli, ["config", "set", "--retention-days", "0"], env=env)
    assert result.exit_code == 2
    data = json.loads(runner.invoke(cli, ["config", "show"], env=env).output)
    assert data["retention_days"] == 90


def test_config_set_nothing(runner, env):
    result = runner.invoke(cli, ["config", "set"], env=env)
    assert result.exit_code == 2


def test_trigger_without_agents(runner, env):
    result = runner.invoke(cli, ["trigger", "--json"], env=env)
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["units"] == 0
    assert data["failed"] == 0


def test_status_json(runner, env):
    result = runner.invoke(cli, ["status", "--json"], env=env)
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["agents"] == []
    assert data["snapshots"]["total_count"] == 0
    assert data["scheduler"]["enabled"] is True


def test_sweep(runner, env):
    result = runner.invoke(cli, ["sweep"], env=env)
    assert result.exit_code == 0
    assert "Removed 0 snapshots" in result.output


def test_alerts_recent_empty(runner, env):
    result = runner.invoke(cli, ["alerts", "recent"], env=env)
    assert result.exit_code == 0
    assert "No alerts" in result.output


def test_alerts_test_unknown_rule(runner, env):
    result = runner.invoke(cli, ["alerts", "test", "does-not-exist", "--agent", "edge-1"], env=env)
    assert result.exit_code == 2


def test_alerts_preview_without_snapshot(runner, env):
    result = runner.invoke(cli, ["alerts", "preview", "--agent", "edge-1"], env=env)
    assert result.exit_code == 1
    assert "No 5m snapshot" in result.output


def _notify(db, rule_id, agent_id, minutes_ago, ok=True):
    result = DeliveryResult.success("sent") if ok else DeliveryResult.failure("HTTP 500")
    when = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    db.append_notification(NotificationRecord.from_delivery(rule_id, agent_id, result, created_at=when))


def test_alerts_recent_filtered_by_rule(runner, env):
    with Database(env["LOGMON_DB_PATH"]) as db:
        _notify(db, "high-errors", "edge-1", 3)
        _notify(db, "slow", "edge-1", 2)
        _notify(db, "high-errors", "edge-2", 1, ok=False)
    result = runner.invoke(cli, ["alerts", "recent", "--rule", "high-errors", "--plain"], env=env)
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("[!!]")
    assert "(edge-2)" in lines[0]
    assert lines[1].startswith("[ok]")
    assert "slow" not in result.output


def test_alerts_recent_plain_empty(runner, env):
    result = runner.invoke(cli, ["alerts", "recent", "--plain", "--rule", "nothing"], env=env)
    assert result.exit_code == 0
    assert "All clear" in result.output


def test_history_empty(runner, env):
    result = runner.invoke(cli, ["history"], env=env)
    assert result.exit_code == 0
    assert "No archived metrics" in result.output


def test_history_json(runner, env):
    now = datetime.now(timezone.utc)
    with Database(env["LOGMON_DB_PATH"]) as db:
        db.add_historical_data("edge-1", {"request_count": 4}, now - timedelta(hours=5))
        db.add_historical_data("edge-1", {"request_count": 8}, now - timedelta(minutes=10))
        db.add_historical_data("edge-2", {"request_count": 1}, now)
    result = runner.invoke(cli, ["history", "--agent", "edge-1", "--hours", "2", "--json"], env=env)
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert [row["metrics"]["request_count"] for row in data["data"]] == [8]
    assert data["stats"]["total_count"] == 2
