import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import LoggingSettings, get_settings

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "websockets")


def setup_logging(settings: Optional[LoggingSettings] = None) -> logging.Logger:
    """Configure handlers on the ``soltx`` logger; the host application owns the root logger."""
    settings = settings or get_settings().logging

    package_logger = logging.getLogger("soltx")
    package_logger.setLevel(getattr(logging, settings.level.value))
    package_logger.handlers.clear()

    formatter = logging.Formatter(settings.format, datefmt=settings.date_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if settings.file_enabled:
        settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.file_path,
            maxBytes=settings.file_max_bytes,
            backupCount=settings.file_backup_count,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        package_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return package_logger
