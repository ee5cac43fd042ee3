"""
Logging configuration

Sync events are logged with the tenant and event bound as extras (see
LogNotifier); records without them fall back to "-".
"""
from loguru import logger
import os
import sys
from storesync.config import get_settings

settings = get_settings()

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[tenant_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[tenant_id]} | {extra[event]} | {name}:{function}:{line} - {message}"


def setup_logger():
    """Configure sinks: colorized stdout, daily sync log, error log"""
    logger.remove()
    logger.configure(extra={"tenant_id": "-", "event": "-"})

    logger.add(
        sys.stdout,
        colorize=True,
        format=CONSOLE_FORMAT,
        level=settings.log_level
    )

    if not settings.log_to_file:
        return logger

    # Sync activity, one file per day
    logger.add(
        os.path.join(settings.log_dir, "storesync_{time:YYYY-MM-DD}.log"),
        format=FILE_FORMAT,
        rotation="00:00",
        retention="30 days",
        compression="zip",
        level="INFO",
        enqueue=True
    )

    # Failed runs and queue items
    logger.add(
        os.path.join(settings.log_dir, "errors_{time:YYYY-MM-DD}.log"),
        format=FILE_FORMAT,
        rotation="00:00",
        retention="90 days",
        level="ERROR",
        enqueue=True
    )

    return logger


# Initialize logger
log = setup_logger()
