"""Aggregate metrics over a batch of parsed access-log entries."""
import math
from collections import Counter, defaultdict

METRIC_NAMES = (
    "request_count",
    "requests_per_second",
    "error_rate",
    "avg_response_time_ms",
    "p95_response_time_ms",
    "p99_response_time_ms",
    "min_response_time_ms",
    "max_response_time_ms",
    "status_2xx",
    "status_3xx",
    "status_4xx",
    "status_5xx",
)

_BROWSERS = (
    ("Edg/", "Edge"),
    ("OPR/", "Opera"),
    ("Chrome/", "Chrome"),
    ("Firefox/", "Firefox"),
    ("Safari/", "Safari"),
    ("curl/", "curl"),
    ("python-requests", "python-requests"),
    ("Go-http-client", "Go-http-client"),
    ("bot", "Bot"),
)


def empty_metrics():
    return {name: 0 for name in METRIC_NAMES}


def percentile(values, pct):
    """Nearest-rank percentile; 0 for an empty list."""
    if not values:
        return 0
    ordered = sorted(values)
    index = math.ceil(pct / 100 * len(ordered)) - 1
    return ordered[max(0, index)]


def user_agent_family(ua):
    if not ua:
        return "Unknown"
    for marker, name in _BROWSERS:
        if marker.lower() in ua.lower():
            return name
    return ua.split("/", 1)[0][:40] or "Unknown"


def time_span_seconds(entries):
    if len(entries) < 2:
        return 0.0
    stamps = sorted(e.timestamp for e in entries)
    return (stamps[-1] - stamps[0]).total_seconds()


def calculate_metrics(entries, window_seconds=None):
    """Return the flat metric dict for a list of LogEntry.

    requests_per_second is computed over window_seconds when given, otherwise over
    the span between the first and last entry.
    """
    if not entries:
        return empty_metrics()

    total = len(entries)
    durations = [e.duration_ms for e in entries]
    statuses = Counter(e.status // 100 for e in entries)
    status_4xx = statuses.get(4, 0)
    status_5xx = sum(n for cls, n in statuses.items() if cls >= 5)

    span = window_seconds if window_seconds else time_span_seconds(entries)

    return {
        "request_count": total,
        "requests_per_second": round(total / span, 4) if span > 0 else 0,
        "error_rate": round((status_4xx + status_5xx) / total * 100, 4),
        "avg_response_time_ms": round(sum(durations) / total, 3),
        "p95_response_time_ms": percentile(durations, 95),
        "p99_response_time_ms": percentile(durations, 99),
        "min_response_time_ms": min(durations),
        "max_response_time_ms": max(durations),
        "status_2xx": statuses.get(2, 0),
        "status_3xx": statuses.get(3, 0),
        "status_4xx": status_4xx,
        "status_5xx": status_5xx,
    }


def _ranked(groups, limit, extra=None):
    rows = []
    for key, items in groups.items():
        row = {
            "name": key,
            "count": len(items),
            "avg_duration_ms": round(sum(e.duration_ms for e in items) / len(items), 3),
        }
        if extra:
            row.update(extra(items))
        rows.append(row)
    rows.sort(key=lambda r: (-r["count"], r["name"]))
    return rows[:limit]


def _group(entries, attr):
    groups = defaultdict(list)
    for e in entries:
        key = getattr(e, attr)
        if key:
            groups[key].append(e)
    return groups


def calculate_top(entries, limit=10):
    """Ranked breakdowns used for notification context."""
    if not entries:
        return {}

    def error_rate(items):
        errors = sum(1 for e in items if e.status >= 400)
        return {"error_rate": round(errors / len(items) * 100, 2)}

    ua_counts = Counter(user_agent_family(e.user_agent) for e in entries if e.user_agent)

    return {
        "routes": _ranked(_group(entries, "path"), limit,
                          lambda items: {"method": items[0].method or "GET"}),
        "client_ips": _ranked(_group(entries, "client_host"), limit),
        "hosts": _ranked(_group(entries, "request_host"), limit),
        "routers": _ranked(_group(entries, "router_name"), limit,
                           lambda items: {"service": items[0].service_name}),
        "services": _ranked(_group(entries, "service_name"), limit, error_rate),
        "user_agents": [
            {"name": name, "count": count, "percentage": round(count / len(entries) * 100, 2)}
            for name, count in ua_counts.most_common(limit)
        ],
    }
