"""Configuration management."""
import os
import yaml
from pathlib import Path

_config = None
_DEFAULT_CONFIG = Path(__file__).parent / "default_config.yaml"

ENV_MAP = {
    "LOGMON_DB_PATH": (("database", "path"), str),
    "LOGMON_TICK_SECONDS": (("scheduler", "tick_seconds"), int),
    "LOGMON_SCHEDULER_ENABLED": (("scheduler", "enabled"), "bool"),
    "LOGMON_LOG_LEVEL": (("logging", "level"), str),
    "LOGMON_CRON_SECRET": (("control", "cron_secret"), str),
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def load_config(path=None):
    """Load config from YAML, merging defaults with optional overrides."""
    global _config

    with open(_DEFAULT_CONFIG) as f:
        config = yaml.safe_load(f)

    if path and Path(path).exists():
        with open(path) as f:
            overrides = yaml.safe_load(f) or {}
        config = _deep_merge(config, overrides)

    # Environment variable overrides
    for env_key, (config_path, kind) in ENV_MAP.items():
        val = os.environ.get(env_key)
        if val:
            d = config
            for k in config_path[:-1]:
                d = d.setdefault(k, {})
            d[config_path[-1]] = _coerce(env_key, val, kind)

    _validate_config(config)
    _config = config
    return config


def get_config():
    """Return cached config, loading defaults if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def _coerce(env_key, val, kind):
    if kind == "bool":
        if val.lower() in _TRUE:
            return True
        if val.lower() in _FALSE:
            return False
        raise ValueError(f"{env_key} must be a boolean, got {val!r}")
    try:
        return kind(val)
    except ValueError:
        raise ValueError(f"{env_key} must be {kind.__name__}, got {val!r}") from None


def _deep_merge(base, override):
    """Recursively merge override into base dict."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _validate_config(config):
    """Basic config validation."""
    required_sections = ["database", "scheduler", "alerts", "historical", "web", "logging"]
    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required config section: {section}")

    if config["scheduler"]["tick_seconds"] < 10:
        raise ValueError("tick_seconds must be >= 10 seconds")
    if config["scheduler"].get("max_workers", 1) < 1:
        raise ValueError("max_workers must be >= 1")

    for key in ("retention_days", "archive_interval"):
        value = config["historical"].get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValueError(f"historical.{key} must be a positive integer")

    seen = set()
    for agent in config.get("agents") or []:
        if not agent.get("id") or not agent.get("url"):
            raise ValueError("Each agent needs an id and a url")
        if agent["id"] in seen:
            raise ValueError(f"Duplicate agent id: {agent['id']}")
        seen.add(agent["id"])

    for hook in config.get("webhooks") or []:
        if hook.get("type") not in ("discord", "telegram"):
            raise ValueError(f"Webhook {hook.get('id')}: type must be discord or telegram")
        if not hook.get("url"):
            raise ValueError(f"Webhook {hook.get('id')}: url is required")
