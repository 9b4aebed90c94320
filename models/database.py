"""SQLite database for agents, metric snapshots, notification history and archival data."""
import json
import sqlite3
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path

from models.agents import Agent
from models.alerts import NotificationRecord
from models.enums import Interval
from models.historical import HistoricalConfig, validate_config_update
from models.metrics import MetricSnapshot

logger = logging.getLogger("logmonitor.db")


def _iso(dt):
    """Normalize to a fixed-width UTC ISO string so text ordering matches time ordering."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value):
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class Database:
    """All access goes through one connection guarded by a re-entrant lock."""

    def __init__(self, db_path="data/logmonitor.db"):
        self.db_path = db_path
        self.conn = None
        self._lock = threading.RLock()

    def connect(self, historical_defaults=None):
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self._create_tables()
        self._seed_historical_config(historical_defaults or {})
        return self

    def close(self):
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.close()

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS agents (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                url TEXT NOT NULL,
                token TEXT NOT NULL DEFAULT '',
                enabled INTEGER NOT NULL DEFAULT 1,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS metric_snapshots (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                agent_name TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                window_start TEXT NOT NULL,
                window_end TEXT NOT NULL,
                interval TEXT NOT NULL,
                log_count INTEGER NOT NULL,
                metrics TEXT NOT NULL,
                top TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_agent_interval
                ON metric_snapshots(agent_id, interval, timestamp);
            CREATE INDEX IF NOT EXISTS idx_snapshots_created
                ON metric_snapshots(created_at);

            CREATE TABLE IF NOT EXISTS notification_history (
                id TEXT PRIMARY KEY,
                rule_id TEXT NOT NULL,
                agent_id TEXT,
                channel TEXT,
                status TEXT NOT NULL CHECK(status IN ('success', 'failed')),
                detail TEXT,
                payload TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_notifications_created
                ON notification_history(created_at);
            CREATE INDEX IF NOT EXISTS idx_notifications_rule_agent
                ON notification_history(rule_id, agent_id, created_at);

            CREATE TABLE IF NOT EXISTS historical_config (
                id INTEGER PRIMARY KEY CHECK(id = 1),
                enabled INTEGER NOT NULL DEFAULT 0,
                retention_days INTEGER NOT NULL DEFAULT 90,
                archive_interval INTEGER NOT NULL DEFAULT 60,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS historical_data (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                metrics TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_historical_agent_timestamp
                ON historical_data(agent_id, timestamp);

            CREATE TABLE IF NOT EXISTS evaluation_state (
                agent_id TEXT NOT NULL,
                interval TEXT NOT NULL,
                last_evaluated_at TEXT NOT NULL,
                PRIMARY KEY (agent_id, interval)
            );
        """)
        self.conn.commit()

    def _seed_historical_config(self, defaults):
        """Insert the single config row from YAML defaults; an existing row wins."""
        seed = HistoricalConfig()
        clean = validate_config_update({k: v for k, v in defaults.items()
                                        if k in ("enabled", "retention_days", "archive_interval")})
        with self._lock:
            self.conn.execute("""
                INSERT OR IGNORE INTO historical_config (id, enabled, retention_days, archive_interval, updated_at)
                VALUES (1, ?, ?, ?, ?)
            """, (
                int(clean.get("enabled", seed.enabled)),
                clean.get("retention_days", seed.retention_days),
                clean.get("archive_interval", seed.archive_interval),
                _iso(datetime.now(timezone.utc)),
            ))
            self.conn.commit()

    # --- Agents ---

    def sync_agents(self, agents):
        """Upsert configured agents. Agents missing from config are disabled, not deleted."""
        now = _iso(datetime.now(timezone.utc))
        with self._lock:
            ids = []
            for agent in agents:
                ids.append(agent.id)
                self.conn.execute("""
                    INSERT INTO agents (id, name, url, token, enabled, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        url = excluded.url,
                        token = excluded.token,
                        enabled = excluded.enabled,
                        updated_at = excluded.updated_at
                """, (agent.id, agent.name, agent.url, agent.token, int(agent.enabled), now))
            placeholders = ",".join("?" for _ in ids)
            if ids:
                self.conn.execute(
                    f"UPDATE agents SET enabled = 0, updated_at = ? WHERE id NOT IN ({placeholders})",
                    [now, *ids],
                )
            else:
                self.conn.execute("UPDATE agents SET enabled = 0, updated_at = ?", (now,))
            self.conn.commit()
        logger.debug(f"Synced {len(ids)} agents")

    def get_agents(self, enabled_only=True):
        query = "SELECT * FROM agents"
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY name ASC"
        with self._lock:
            rows = self.conn.execute(query).fetchall()
        return [Agent.from_dict(dict(r)) for r in rows]

    def get_agent(self, agent_id):
        with self._lock:
            row = self.conn.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)).fetchone()
        return Agent.from_dict(dict(row)) if row else None

    # --- Metric Snapshots ---

    def save_snapshot(self, snapshot: MetricSnapshot) -> MetricSnapshot:
        d = snapshot.to_dict()
        with self._lock:
            self.conn.execute("""
                INSERT INTO metric_snapshots
                (id, agent_id, agent_name, timestamp, window_start, window_end,
                 interval, log_count, metrics, top, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                d["id"], d["agent_id"], d["agent_name"], _iso(snapshot.timestamp),
                _iso(snapshot.window_start), _iso(snapshot.window_end), d["interval"],
                d["log_count"], d["metrics"], d["top"], _iso(snapshot.timestamp),
            ))
            self.conn.commit()
        logger.debug(f"Saved snapshot {d['id']} ({d['agent_id']}/{d['interval']}, {d['log_count']} logs)")
        return self.get_snapshot(d["id"])

    def get_snapshot(self, snapshot_id):
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM metric_snapshots WHERE id = ?", (snapshot_id,)
            ).fetchone()
        return MetricSnapshot.from_dict(dict(row)) if row else None

    def get_latest_snapshot(self, agent_id, interval):
        with self._lock:
            row = self.conn.execute("""
                SELECT * FROM metric_snapshots
                WHERE agent_id = ? AND interval = ?
                ORDER BY timestamp DESC LIMIT 1
            """, (agent_id, Interval.parse(interval).value)).fetchone()
        return MetricSnapshot.from_dict(dict(row)) if row else None

    def get_snapshots(self, agent_id=None, interval=None, start=None, end=None, limit=1000):
        query = "SELECT * FROM metric_snapshots WHERE 1=1"
        params = []
        if agent_id:
            query += " AND agent_id = ?"
            params.append(agent_id)
        if interval:
            query += " AND interval = ?"
            params.append(Interval.parse(interval).value)
        if start:
            query += " AND timestamp >= ?"
            params.append(_iso(start))
        if end:
            query += " AND timestamp <= ?"
            params.append(_iso(end))
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [MetricSnapshot.from_dict(dict(r)) for r in rows]

    def count_snapshots(self, agent_id=None):
        with self._lock:
            if agent_id:
                row = self.conn.execute(
                    "SELECT COUNT(*) AS cnt FROM metric_snapshots WHERE agent_id = ?", (agent_id,)
                ).fetchone()
            else:
                row = self.conn.execute("SELECT COUNT(*) AS cnt FROM metric_snapshots").fetchone()
        return row["cnt"]

    def delete_snapshots_before(self, cutoff: datetime) -> int:
        with self._lock:
            cur = self.conn.execute(
                "DELETE FROM metric_snapshots WHERE created_at < ?", (_iso(cutoff),)
            )
            self.conn.commit()
        return cur.rowcount

    def get_snapshot_stats(self):
        with self._lock:
            row = self.conn.execute("""
                SELECT COUNT(*) AS total_count,
                       MIN(created_at) AS oldest_entry,
                       MAX(created_at) AS newest_entry,
                       COUNT(DISTINCT agent_id) AS agent_count
                FROM metric_snapshots
            """).fetchone()
        return dict(row)

    # --- Notification History (append-only) ---

    def append_notification(self, record: NotificationRecord) -> NotificationRecord:
        d = record.to_dict()
        with self._lock:
            self.conn.execute("""
                INSERT INTO notification_history
                (id, rule_id, agent_id, channel, status, detail, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                d["id"], d["rule_id"], d["agent_id"] or None, d["channel"] or None,
                d["status"], d["detail"] or None, d["payload"] or None, _iso(record.created_at),
            ))
            self.conn.commit()
        return record

    def get_recent_notifications(self, limit=100, offset=0):
        """Most recent first."""
        with self._lock:
            rows = self.conn.execute("""
                SELECT * FROM notification_history
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
            """, (limit, offset)).fetchall()
        return [NotificationRecord.from_dict(dict(r)) for r in rows]

    def get_notifications_for_rule(self, rule_id, limit=50):
        with self._lock:
            rows = self.conn.execute("""
                SELECT * FROM notification_history
                WHERE rule_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
            """, (rule_id, limit)).fetchall()
        return [NotificationRecord.from_dict(dict(r)) for r in rows]

    def get_last_notification_time(self, rule_id, agent_id):
        """Most recent firing for cooldown purposes; test firings do not count."""
        with self._lock:
            row = self.conn.execute("""
                SELECT created_at FROM notification_history
                WHERE rule_id = ? AND agent_id = ?
                  AND (detail IS NULL OR detail NOT LIKE '[TEST]%')
                ORDER BY created_at DESC LIMIT 1
            """, (rule_id, agent_id)).fetchone()
        if row:
            return _from_iso(row["created_at"])
        return None

    # --- Historical Config ---

    def get_historical_config(self) -> HistoricalConfig:
        with self._lock:
            row = self.conn.execute("SELECT * FROM historical_config WHERE id = 1").fetchone()
        if row is None:
            return HistoricalConfig()
        return HistoricalConfig(
            enabled=bool(row["enabled"]),
            retention_days=row["retention_days"],
            archive_interval=row["archive_interval"],
            updated_at=_from_iso(row["updated_at"]),
        )

    def update_historical_config(self, updates: dict) -> HistoricalConfig:
        """Validate and apply a partial update. Raises ValidationError on bad values."""
        clean = validate_config_update(updates)
        if clean:
            sets = [f"{key} = ?" for key in clean]
            values = [int(v) if isinstance(v, bool) else v for v in clean.values()]
            sets.append("updated_at = ?")
            values.append(_iso(datetime.now(timezone.utc)))
            with self._lock:
                self.conn.execute(
                    f"UPDATE historical_config SET {', '.join(sets)} WHERE id = 1", values
                )
                self.conn.commit()
            logger.info(f"Historical config updated: {clean}")
        return self.get_historical_config()

    # --- Historical Data ---

    def add_historical_data(self, agent_id, metrics: dict, timestamp=None):
        entry_id = f"hist-{uuid.uuid4().hex[:16]}"
        ts = _iso(timestamp or datetime.now(timezone.utc))
        with self._lock:
            self.conn.execute("""
                INSERT INTO historical_data (id, agent_id, timestamp, metrics)
                VALUES (?, ?, ?, ?)
            """, (entry_id, agent_id, ts, json.dumps(metrics)))
            self.conn.commit()
        return entry_id

    def query_historical_data(self, agent_id=None, start=None, end=None, limit=500):
        query = "SELECT * FROM historical_data WHERE 1=1"
        params = []
        if agent_id:
            query += " AND agent_id = ?"
            params.append(agent_id)
        if start:
            query += " AND timestamp >= ?"
            params.append(_iso(start))
        if end:
            query += " AND timestamp <= ?"
            params.append(_iso(end))
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [
            {"id": r["id"], "agent_id": r["agent_id"], "timestamp": r["timestamp"],
             "metrics": json.loads(r["metrics"])}
            for r in rows
        ]

    def get_historical_stats(self, agent_id=None):
        query = """
            SELECT COUNT(*) AS total_count,
                   MIN(timestamp) AS oldest_entry,
                   MAX(timestamp) AS newest_entry,
                   COUNT(DISTINCT agent_id) AS agent_count
            FROM historical_data
        """
        params = []
        if agent_id:
            query += " WHERE agent_id = ?"
            params.append(agent_id)
        with self._lock:
            row = self.conn.execute(query, params).fetchone()
        return dict(row)

    def delete_historical_before(self, cutoff: datetime) -> int:
        with self._lock:
            cur = self.conn.execute(
                "DELETE FROM historical_data WHERE timestamp < ?", (_iso(cutoff),)
            )
            self.conn.commit()
        return cur.rowcount

    # --- Evaluation State ---

    def get_evaluation_state(self):
        """Map of (agent_id, Interval) -> last evaluation time."""
        with self._lock:
            rows = self.conn.execute("SELECT * FROM evaluation_state").fetchall()
        state = {}
        for r in rows:
            try:
                state[(r["agent_id"], Interval.parse(r["interval"]))] = _from_iso(r["last_evaluated_at"])
            except ValueError:
                logger.warning(f"Ignoring evaluation state with unknown interval: {r['interval']}")
        return state

    def set_evaluated(self, agent_id, interval, when: datetime):
        with self._lock:
            self.conn.execute("""
                INSERT INTO evaluation_state (agent_id, interval, last_evaluated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(agent_id, interval) DO UPDATE SET
                    last_evaluated_at = excluded.last_evaluated_at
            """, (agent_id, Interval.parse(interval).value, _iso(when)))
            self.conn.commit()
