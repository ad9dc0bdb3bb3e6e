# core/logger.py
import json
import logging
import logging.handlers
import threading
from datetime import datetime
from pathlib import Path

LOG_DIR = Path(__file__).resolve().parents[1] / "logs"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)

_event_lock = threading.Lock()
_configured = False


def setup_logging(level="INFO", log_dir=None):
    """Attach console + rotating file handlers to the root logger (once)."""
    global _configured, LOG_DIR
    if log_dir is not None:
        LOG_DIR = Path(log_dir)
    if _configured:
        logging.getLogger().setLevel(level)
        return

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            LOG_DIR / "catalog_search.log",
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        logger.warning("File logging disabled (%s): %s", LOG_DIR, e)

    _configured = True


def _event_path():
    date = datetime.now().strftime("%Y-%m-%d")
    return LOG_DIR / f"events-{date}.jsonl"


def log_event(event_type, payload):
    """Append an event to today's JSON-lines event log."""
    entry = {
        "timestamp": datetime.now().isoformat(),
        "type": event_type,
        "payload": payload,
    }
    try:
        with _event_lock:
            path = _event_path()
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
    except OSError as e:
        logger.warning("Event log write failed for %s: %s", event_type, e)
    return entry
