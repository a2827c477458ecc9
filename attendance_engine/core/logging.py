"""
Logging configuration for the attendance sync & payroll engine
"""
import logging
import sys
from typing import Optional

from attendance_engine.core.config import Settings, settings as default_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    # pyzk logs every socket packet at DEBUG
    "zk": logging.WARNING,
}


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure the root logger once for the service process.

    Log level comes from ``LOG_LEVEL``; output goes to stdout so the
    container runtime collects it. Terminal sync and payroll modules log
    through ``logging.getLogger(__name__)`` and inherit this setup.
    """
    settings = settings or default_settings
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).info(
        "Logging configured: level=%s, env=%s, scheduler=%s",
        settings.LOG_LEVEL, settings.APP_ENV, settings.SYNC_SCHEDULER_ENABLED,
    )
