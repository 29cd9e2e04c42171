"""Logging configuration with Betterstack support."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from logtail import LogtailHandler

logger = logging.getLogger("oxalis_outbound")

FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_INGEST_HOST = "in.logs.betterstack.com"
# Chatty third-party loggers; the Azure SDK logs every HTTP request at INFO
QUIET_LOGGERS = ("azure", "urllib3")


def _attach(handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _betterstack_handler(settings) -> Optional[logging.Handler]:
    if not settings.betterstack_source_token:
        return None
    options = {"source_token": settings.betterstack_source_token}
    if settings.betterstack_ingest_host:
        options["host"] = settings.betterstack_ingest_host
    try:
        return LogtailHandler(**options)
    except Exception as e:
        logger.warning(f"Failed to initialize BetterStack logging: {e}")
        return None


def setup_logging(settings) -> logging.Logger:
    """Route the daemon's log records to stdout, logs/app.log and, if configured, BetterStack."""
    level = getattr(logging, settings.log_level, logging.INFO)
    formatter = logging.Formatter(FORMAT)
    logger.setLevel(level)
    logger.handlers = []
    logger.propagate = False

    _attach(logging.StreamHandler(sys.stdout), level, formatter)

    settings.logs_dir.mkdir(parents=True, exist_ok=True)
    rotating = RotatingFileHandler(settings.logs_dir / "app.log", maxBytes=10 * 1024 * 1024, backupCount=5)
    _attach(rotating, level, formatter)

    remote = _betterstack_handler(settings)
    if remote is not None:
        # Ship everything the logger lets through, whatever the local level
        _attach(remote, logging.DEBUG, formatter)
        logger.info(f"BetterStack logging enabled (host: {settings.betterstack_ingest_host or DEFAULT_INGEST_HOST})")

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger
