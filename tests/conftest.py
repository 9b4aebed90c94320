"""Shared test fixtures."""
import os
import sys
import pytest
import tempfile
from unittest.mock import MagicMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.alerts import AlertRule, DeliveryResult
from models.database import Database
from models.enums import Interval
from models.metrics import LogEntry
from datetime import datetime, timedelta, timezone


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = Database(db_path)
    db.connect()
    yield db
    db.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_entry():
    """Factory for LogEntry objects with sensible defaults."""
    def _make(ts, status=200, duration_ms=10.0, path="/", client="10.0.0.1",
              router="web@docker", service="web-svc@docker", host="example.com",
              user_agent="Mozilla/5.0 Chrome/120.0"):
        return LogEntry(
            timestamp=ts,
            client_host=client,
            method="GET",
            path=path,
            status=status,
            duration_ms=duration_ms,
            router_name=router,
            service_name=service,
            request_host=host,
            user_agent=user_agent,
        )
    return _make


@pytest.fixture
def window_logs(make_entry):
    """Twenty entries spread across the 5m window ending at NOW: 16 x 200, 2 x 404, 2 x 500."""
    start = NOW - Interval.FIVE_MIN.duration
    entries = []
    for i in range(20):
        status = 404 if i in (3, 7) else 500 if i in (11, 15) else 200
        entries.append(make_entry(start + timedelta(seconds=i * 10), status=status,
                                  duration_ms=float(i + 1), path=f"/p{i % 3}"))
    return entries


@pytest.fixture
def transport():
    """Notification transport that always succeeds."""
    t = MagicMock()
    t.deliver.return_value = DeliveryResult.success("delivered")
    return t


@pytest.fixture
def error_rate_rule():
    return AlertRule(id="err", name="Error rate", metric="error_rate", operator=">",
                     threshold=0.5, interval=Interval.FIVE_MIN)


class StaticRules:
    """Minimal rules manager for testing."""
    def __init__(self, rules=None):
        self._rules = list(rules or [])

    def get_enabled_rules(self):
        return [r for r in self._rules if r.enabled]

    def get_rules_for(self, agent_id, interval=None):
        rules = [r for r in self.get_enabled_rules() if r.applies_to(agent_id)]
        if interval is not None:
            rules = [r for r in rules if r.interval == Interval.parse(interval)]
        return rules

    def get_intervals_for(self, agent_id):
        return sorted({r.interval for r in self.get_rules_for(agent_id)}, key=lambda i: i.duration)

    def get_rule(self, rule_id):
        return next((r for r in self._rules if r.id == rule_id), None)

    def get_all_rules(self):
        return self._rules


@pytest.fixture
def static_rules():
    return StaticRules
