"""WSGI entry point for production deployment (gunicorn wsgi:app)."""
import sys
import atexit
import logging
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent))

from config import load_config
from utils.logger import setup_logging
from monitor.components import build_components, shutdown_components
from web.app import create_app

logger = logging.getLogger("logmonitor.wsgi")

config = load_config()
setup_logging(config["logging"].get("level", "INFO"), config["logging"].get("file"))

# Ensure data directory exists
Path(config["database"]["path"]).parent.mkdir(parents=True, exist_ok=True)

components = build_components(config)
components["coordinator"].initialize()

if components["scheduler"].enabled:
    components["scheduler"].start()
else:
    logger.info("Scheduler disabled; cycles run only via POST /api/scheduler/trigger")

atexit.register(shutdown_components, components)

app = create_app(config, components)
