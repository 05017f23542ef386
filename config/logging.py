# coding: utf-8
"""
Logging configuration with loguru for PiMaze Backend
"""
import logging
import sys
from pathlib import Path

from loguru import logger
import sentry_sdk

from config.config import LOG_LEVEL, LOG_DIR, ENVIRONMENT, SENTRY_DSN


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

# stdlib loggers that flood the output at INFO
QUIET_LOGGERS = {
    'aiohttp': logging.WARNING,
    'apscheduler': logging.WARNING,
    'sqlalchemy.engine': logging.ERROR,
}


def setup_logging(log_dir: str = LOG_DIR) -> None:
    """
    Console sink always, a daily file when log_dir is set, Sentry for errors
    """
    logger.remove()

    logger.add(sys.stdout, format=LOG_FORMAT, level=LOG_LEVEL, colorize=True)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        logger.add(
            path / "pimaze_{time:YYYY-MM-DD}.log",
            format=LOG_FORMAT,
            level=LOG_LEVEL,
            rotation="00:00",
            retention="14 days",
            compression="zip",
            encoding="utf-8",
        )

    if SENTRY_DSN:
        logger.add(sentry_sink, level="ERROR", format="{message}")

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logger.info(f"PiMaze backend initialized | Environment: {ENVIRONMENT} | Log level: {LOG_LEVEL}")


def sentry_sink(message):
    """Forward ERROR and CRITICAL records to Sentry"""
    record = message.record

    if record["exception"]:
        sentry_sdk.capture_exception(record["exception"].value)
        return

    sentry_sdk.capture_message(
        record["message"],
        level="fatal" if record["level"].name == "CRITICAL" else "error",
    )
