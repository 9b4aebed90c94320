"""
Flask control surface for the log monitor.

JSON endpoints:
  GET   /api/status                      - scheduler + coordinator status
  POST  /api/scheduler/trigger           - run one scheduler cycle now
  GET   /api/historical/config           - retention/archival settings
  PATCH /api/historical/config           - partial update (validated)
  GET   /api/historical/data             - archived metrics (agent_id, start, end, limit)
  GET   /api/alerts                      - recent notification records
  GET   /api/alerts/stats                - aggregate counts + recent preview
  POST  /api/alerts/<rule_id>/test       - fire one rule once
  POST  /api/services/process-metrics    - one coordinator pass for pushed metrics
  POST  /api/services/create-snapshot    - build and store a snapshot from logs
  POST  /api/services/archive            - archive + retention sweep now

Mutating endpoints require the X-Cron-Secret header when control.cron_secret is set.

Started via: python main.py run [--port 5000] [--host 0.0.0.0]
"""
import hmac
import logging
from datetime import datetime, timezone

from flask import Flask, jsonify, request

from models.enums import Interval
from models.historical import ValidationError
from monitor.scheduler import SchedulerBusyError

logger = logging.getLogger("logmonitor.web.app")

MAX_ALERT_LIMIT = 1000
MAX_HISTORY_LIMIT = 1000


def _parse_time(name, value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO 8601 timestamp")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_limit(default, maximum):
    try:
        limit = int(request.args.get("limit", default))
    except ValueError:
        raise ValidationError("limit must be an integer")
    if limit < 1:
        raise ValidationError("limit must be >= 1")
    return min(limit, maximum)


def create_app(config: dict, engines: dict) -> Flask:
    """
    Factory function. Receives initialized components from main.py / wsgi.py.

    Args:
        config: Application config dict
        engines: dict of components (scheduler, coordinator, alert_engine, archival, db)
    """
    app = Flask(__name__)

    scheduler = engines["scheduler"]
    coordinator = engines["coordinator"]
    alert_engine = engines["alert_engine"]
    archival = engines["archival"]
    db = engines["db"]

    def _authorized():
        secret = (config.get("control") or {}).get("cron_secret") or ""
        if not secret:
            return True
        provided = request.headers.get("X-Cron-Secret", "")
        if not provided:
            auth = request.headers.get("Authorization", "")
            if auth.startswith("Bearer "):
                provided = auth[len("Bearer "):]
        return hmac.compare_digest(provided.encode(), secret.encode())

    def _unauthorized():
        return jsonify({"error": "Unauthorized"}), 401

    def _json_body():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    @app.errorhandler(ValidationError)
    def handle_validation(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def handle_method(e):
        return jsonify({"error": "Method not allowed"}), 405

    # ─── Status ──────────────────────────────────────────

    @app.route("/api/status")
    def api_status():
        return jsonify({
            "scheduler": scheduler.get_status(),
            "services": coordinator.get_status(),
        })

    @app.route("/api/scheduler/trigger", methods=["POST"])
    def api_trigger():
        if not _authorized():
            return _unauthorized()
        if not scheduler.enabled:
            return jsonify({"error": "Scheduler is disabled"}), 503

        try:
            coordinator.initialize()
            result = scheduler.run_once()
        except SchedulerBusyError as e:
            return jsonify({"error": str(e)}), 409
        except Exception as e:
            logger.exception("Manual scheduler cycle failed")
            return jsonify({"error": f"Cycle failed: {e}"}), 500

        return jsonify({"ok": result.ok, "result": result.to_dict()})

    # ─── Historical config ───────────────────────────────

    @app.route("/api/historical/config", methods=["GET"])
    def api_historical_config():
        return jsonify(db.get_historical_config().to_dict())

    @app.route("/api/historical/config", methods=["PATCH"])
    def api_update_historical_config():
        if not _authorized():
            return _unauthorized()
        updated = db.update_historical_config(_json_body())
        return jsonify(updated.to_dict())

    @app.route("/api/historical/data")
    def api_historical_data():
        agent_id = request.args.get("agent_id") or None
        start = _parse_time("start", request.args.get("start"))
        end = _parse_time("end", request.args.get("end"))
        if start and end and start > end:
            raise ValidationError("start must not be after end")
        limit = _parse_limit(500, MAX_HISTORY_LIMIT)
        rows = db.query_historical_data(agent_id=agent_id, start=start, end=end, limit=limit)
        return jsonify({
            "data": rows,
            "count": len(rows),
            "stats": db.get_historical_stats(agent_id),
        })

    # ─── Alerts ──────────────────────────────────────────

    @app.route("/api/alerts")
    def api_alerts():
        records = alert_engine.get_recent(_parse_limit(50, MAX_ALERT_LIMIT))
        return jsonify({"alerts": [r.to_dict() for r in records], "count": len(records)})

    @app.route("/api/alerts/stats")
    def api_alert_stats():
        return jsonify(alert_engine.get_alert_stats())

    @app.route("/api/alerts/<rule_id>/test", methods=["POST"])
    def api_alert_test(rule_id):
        if not _authorized():
            return _unauthorized()
        body = _json_body()
        agent_id = body.get("agent_id")
        if not agent_id:
            raise ValidationError("agent_id is required")
        try:
            record = alert_engine.test_fire(rule_id, agent_id, body.get("agent_name", ""))
        except KeyError:
            return jsonify({"error": f"Unknown rule: {rule_id}"}), 404
        return jsonify(record.to_dict())

    # ─── Services ────────────────────────────────────────

    def _agent_fields(body):
        agent_id = body.get("agent_id")
        if not agent_id or not isinstance(agent_id, str):
            raise ValidationError("agent_id is required")
        return agent_id, body.get("agent_name") or agent_id

    def _logs_field(body):
        logs = body.get("logs")
        if logs is not None and not isinstance(logs, list):
            raise ValidationError("logs must be a list")
        return logs

    def _interval(value):
        try:
            return Interval.parse(value)
        except ValueError as e:
            raise ValidationError(str(e))

    @app.route("/api/services/process-metrics", methods=["POST"])
    def api_process_metrics():
        if not _authorized():
            return _unauthorized()
        body = _json_body()
        agent_id, agent_name = _agent_fields(body)
        metrics = body.get("metrics") or {}
        if not isinstance(metrics, dict):
            raise ValidationError("metrics must be an object")
        intervals = body.get("intervals")
        if intervals is not None:
            if not isinstance(intervals, list):
                raise ValidationError("intervals must be a list")
            intervals = [_interval(i) for i in intervals]

        coordinator.initialize()
        result = coordinator.process_metrics(
            agent_id, agent_name, metrics, logs=_logs_field(body), intervals=intervals
        )
        return jsonify({"ok": result.ok, **result.to_dict()})

    @app.route("/api/services/create-snapshot", methods=["POST"])
    def api_create_snapshot():
        if not _authorized():
            return _unauthorized()
        body = _json_body()
        agent_id, agent_name = _agent_fields(body)
        interval = _interval(body.get("interval", "5m"))
        snapshot = coordinator.create_snapshot(agent_id, agent_name, _logs_field(body) or [], interval)
        d = snapshot.to_dict()
        d["metrics"] = dict(snapshot.metrics)
        d["top"] = dict(snapshot.top)
        return jsonify(d), 201

    @app.route("/api/services/archive", methods=["POST"])
    def api_archive():
        if not _authorized():
            return _unauthorized()
        result = archival.run()
        if result is None:
            return jsonify({"error": "Archival already in progress"}), 409
        return jsonify(result)

    return app
