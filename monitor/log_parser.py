"""Traefik access-log parsing (JSON and common log format)."""
import json
import re
import logging
from datetime import datetime, timezone

from models.metrics import LogEntry

logger = logging.getLogger("logmonitor.parser")

CLF_PATTERN = re.compile(
    r'^(\S+) - (\S+) \[([^\]]+)\] "(\S+) (\S+) (\S+)" (\d+) (\d+) '
    r'"([^"]*)" "([^"]*)" (\d+) "([^"]*)" "([^"]*)" (\d+)ms'
)
CLF_TIME_FORMAT = "%d/%b/%Y:%H:%M:%S %z"

# Traefik field spellings vary between versions and log formatters
_FIELD_KEYS = {
    "client_host": ("ClientHost", "clientHost"),
    "client_addr": ("ClientAddr", "clientAddr"),
    "method": ("RequestMethod", "requestMethod"),
    "path": ("RequestPath", "requestPath"),
    "status": ("DownstreamStatus", "downstreamStatus", "OriginStatus"),
    "duration": ("Duration", "duration"),
    "router_name": ("RouterName", "routerName"),
    "service_name": ("ServiceName", "serviceName"),
    "request_host": ("RequestHost", "requestHost"),
    "request_addr": ("RequestAddr", "requestAddr"),
    "user_agent": ("request_User-Agent", "request_User_Agent", "RequestUserAgent", "User-Agent"),
    "timestamp": ("StartUTC", "startUTC", "time", "Time", "StartLocal"),
}

_FRACTION = re.compile(r"\.(\d+)")


def _first(raw, key, default=None):
    for name in _FIELD_KEYS[key]:
        value = raw.get(name)
        if value is not None and value != "":
            return value
    return default


def parse_timestamp(value):
    """Parse a Traefik RFC 3339 timestamp into an aware UTC datetime.

    Traefik writes nanosecond fractions; datetime only holds microseconds.
    """
    if isinstance(value, datetime):
        ts = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _to_int(value, default=0):
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def parse_json_line(line):
    raw = json.loads(line)
    if not isinstance(raw, dict):
        return None

    ts_raw = _first(raw, "timestamp")
    if ts_raw is None:
        return None
    if _first(raw, "status") is None and _first(raw, "method") is None:
        return None

    client_host = _first(raw, "client_host")
    if client_host is None:
        addr = _first(raw, "client_addr", "")
        client_host = addr.rsplit(":", 1)[0] if ":" in addr else addr

    return LogEntry(
        timestamp=parse_timestamp(ts_raw),
        client_host=client_host,
        method=_first(raw, "method", ""),
        path=_first(raw, "path", ""),
        status=_to_int(_first(raw, "status", 0)),
        # Duration is logged in nanoseconds
        duration_ms=_to_int(_first(raw, "duration", 0)) / 1_000_000,
        router_name=_first(raw, "router_name", ""),
        service_name=_first(raw, "service_name", ""),
        request_host=_first(raw, "request_host", ""),
        request_addr=_first(raw, "request_addr", ""),
        user_agent=_first(raw, "user_agent", ""),
    )


def parse_clf_line(line):
    m = CLF_PATTERN.match(line)
    if not m:
        return None
    try:
        ts = datetime.strptime(m.group(3), CLF_TIME_FORMAT).astimezone(timezone.utc)
    except ValueError:
        return None
    return LogEntry(
        timestamp=ts,
        client_host=m.group(1),
        method=m.group(4),
        path=m.group(5),
        status=int(m.group(7)),
        duration_ms=float(m.group(14)),
        router_name=m.group(12),
        user_agent=m.group(10),
    )


def parse_line(line):
    """Parse one log line, auto-detecting JSON vs CLF. Returns None for unparseable lines."""
    if not line or not line.strip():
        return None
    line = line.strip()
    if line.startswith("{"):
        try:
            return parse_json_line(line)
        except (ValueError, TypeError) as e:
            logger.debug(f"JSON log parse failed, trying CLF: {e}")
    return parse_clf_line(line)


def parse_record(record):
    """Parse a log that arrives either as a raw line or as an already-decoded JSON object."""
    if isinstance(record, LogEntry):
        return record
    if isinstance(record, dict):
        try:
            return parse_json_line(json.dumps(record))
        except (ValueError, TypeError):
            return None
    return parse_line(str(record))


def parse_logs(records):
    entries = []
    skipped = 0
    for record in records:
        entry = parse_record(record)
        if entry is None:
            skipped += 1
            continue
        entries.append(entry)
    if skipped:
        logger.debug(f"Skipped {skipped} unparseable log lines")
    return entries
