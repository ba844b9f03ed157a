import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ..config.config import settings

LOG_FORMAT = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"

# Loggers of libraries that are chatty at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def setup_logging(level: str = None, log_dir: str = None):
    """
    Configures the root logger once, at application startup.

    Records go to stdout and to `<LOG_DIR>/app.log`, which rotates at 5 MB and
    keeps five old files. In Docker the log directory is mounted as a volume.
    """
    level = (level or settings.LOG_LEVEL).upper()
    log_path = Path(log_dir or settings.LOG_DIR)
    log_path.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    # uvicorn installs its own handlers before the lifespan runs.
    if root.hasHandlers():
        root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in (
        logging.StreamHandler(sys.stdout),
        RotatingFileHandler(log_path / "app.log", maxBytes=5 * 1024 * 1024, backupCount=5),
    ):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at {level}, files in {log_path}.")
