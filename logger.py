import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Level-coloured format for terminals"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m'
    }

    def format(self, record):
        original = record.levelname
        color = self.COLORS.get(original, self.COLORS['RESET'])
        record.levelname = f"{color}{original}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logger(
        name: str,
        log_file: str = None,
        level=logging.INFO,
        log_dir: str = "logs",
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5
) -> logging.Logger:
    """
    Configure a logger with console output and an optional rotating file.

    Args:
        name: logger name
        log_file: file name inside log_dir; console only when None
        level: level name or number
        log_dir: directory for the log file, created on demand
        max_bytes: size before the file is rotated
        backup_count: number of rotated files kept
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            directory / log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    return logger


def configure_logging(settings) -> None:
    """Set up the application loggers from settings."""
    for name in ("growtracker", "growtracker.database", "growtracker.storage", "growtracker.api"):
        setup_logger(name, log_file=settings.log_file, level=settings.log_level, log_dir=settings.log_dir)


db_logger = logging.getLogger("growtracker.database")
storage_logger = logging.getLogger("growtracker.storage")
api_logger = logging.getLogger("growtracker.api")
