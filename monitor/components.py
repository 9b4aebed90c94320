"""Wire the pipeline together from a loaded config dict."""
import logging
from pathlib import Path

from alerts.channels import build_router
from alerts.engine import AlertEngine
from alerts.rules_manager import RulesManager
from models.agents import Agent
from models.database import Database
from monitor.archival import ArchivalPolicy
from monitor.coordinator import ServiceCoordinator
from monitor.log_source import AgentLogSource
from monitor.scheduler import BackgroundScheduler

logger = logging.getLogger("logmonitor.components")

_PACKAGED_RULES = Path(__file__).resolve().parent.parent / "config" / "alert_rules.yaml"


def _rules_path(config):
    path = Path(config.get("alerts", {}).get("rules_path") or "config/alert_rules.yaml")
    if not path.exists() and _PACKAGED_RULES.exists():
        logger.debug(f"{path} not found, using packaged rules")
        return _PACKAGED_RULES
    return path


def build_components(config, db=None, log_source=None, transport=None):
    """Return a dict of connected components. Nothing is started."""
    if db is None:
        db = Database(config["database"]["path"])
        db.connect(historical_defaults=config.get("historical", {}))

    db.sync_agents([Agent.from_dict(a) for a in config.get("agents") or []])

    rules = RulesManager(_rules_path(config))
    router = transport if transport is not None else build_router(config)
    alert_engine = AlertEngine(rules, db, router)
    archival = ArchivalPolicy(db)
    coordinator = ServiceCoordinator(
        db, rules, alert_engine, archival,
        top_limit=config.get("alerts", {}).get("top_limit", 10),
    )

    source_cfg = config.get("log_source", {})
    if log_source is None:
        log_source = AgentLogSource(
            timeout=source_cfg.get("timeout", 10),
            max_lines=source_cfg.get("max_lines", 5000),
        )

    sched_cfg = config.get("scheduler", {})
    scheduler = BackgroundScheduler(
        coordinator, db, log_source, archival=archival,
        tick_seconds=sched_cfg.get("tick_seconds", 60),
        max_workers=sched_cfg.get("max_workers", 4),
        cycle_timeout=sched_cfg.get("cycle_timeout", 120),
        enabled=sched_cfg.get("enabled", True),
    )

    return {
        "config": config,
        "db": db,
        "rules": rules,
        "transport": router,
        "alert_engine": alert_engine,
        "archival": archival,
        "coordinator": coordinator,
        "log_source": log_source,
        "scheduler": scheduler,
    }


def shutdown_components(components):
    components["scheduler"].stop()
    components["coordinator"].shutdown()
    components["log_source"].close()
    components["db"].close()
