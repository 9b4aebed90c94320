"""Tests for Traefik access-log parsing."""
import json
import pytest
from datetime import datetime, timezone

from models.metrics import LogEntry
from monitor.log_parser import parse_line, parse_logs, parse_record, parse_timestamp

CLF_LINE = (
    '192.168.1.10 - - [10/Oct/2025:13:55:36 +0200] "GET /api/users HTTP/1.1" 200 1234 '
    '"-" "Mozilla/5.0 Firefox/118.0" 42 "api-router@docker" "http://10.0.0.2:8080" 15ms'
)

JSON_LINE = json.dumps({
    "ClientHost": "10.0.0.1",
    "RequestMethod": "POST",
    "RequestPath": "/login",
    "DownstreamStatus": 503,
    "Duration": 2_500_000,
    "StartUTC": "2025-10-10T13:55:36.123456789Z",
    "RouterName": "auth@docker",
    "ServiceName": "auth-svc@docker",
    "RequestHost": "example.com",
    "RequestAddr": "example.com:443",
    "request_User-Agent": "curl/8.4.0",
})


def test_parse_json_line():
    entry = parse_line(JSON_LINE)
    assert entry.client_host == "10.0.0.1"
    assert entry.method == "POST"
    assert entry.status == 503
    assert entry.duration_ms == pytest.approx(2.5)
    assert entry.router_name == "auth@docker"
    assert entry.service_name == "auth-svc@docker"
    assert entry.user_agent == "curl/8.4.0"
    assert entry.timestamp == datetime(2025, 10, 10, 13, 55, 36, 123456, tzinfo=timezone.utc)


def test_parse_clf_line():
    entry = parse_line(CLF_LINE)
    assert entry.client_host == "192.168.1.10"
    assert entry.path == "/api/users"
    assert entry.status == 200
    assert entry.duration_ms == 15.0
    assert entry.router_name == "api-router@docker"
    assert entry.user_agent == "Mozilla/5.0 Firefox/118.0"
    # +0200 offset normalized to UTC
    assert entry.timestamp == datetime(2025, 10, 10, 11, 55, 36, tzinfo=timezone.utc)


def test_json_client_addr_fallback():
    line = json.dumps({"ClientAddr": "1.2.3.4:5555", "RequestMethod": "GET",
                       "StartUTC": "2024-01-01T00:00:00Z", "DownstreamStatus": 200})
    assert parse_line(line).client_host == "1.2.3.4"


@pytest.mark.parametrize("line", ["", "   ", "garbage", '{"level": "debug"}', "{broken json"])
def test_unparseable_lines_return_none(line):
    assert parse_line(line) is None


def test_parse_record_accepts_dicts_and_entries():
    entry = parse_record(json.loads(JSON_LINE))
    assert isinstance(entry, LogEntry)
    assert parse_record(entry) is entry


def test_parse_logs_skips_bad_lines():
    entries = parse_logs([JSON_LINE, "nope", CLF_LINE, ""])
    assert len(entries) == 2


def test_parse_timestamp_variants():
    assert parse_timestamp("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert parse_timestamp("2024-01-01T00:00:00.5Z").microsecond == 500000
    assert parse_timestamp("2024-01-01T02:00:00+02:00") == datetime(2024, 1, 1, tzinfo=timezone.utc)
    naive = parse_timestamp(datetime(2024, 1, 1))
    assert naive.tzinfo is not None
