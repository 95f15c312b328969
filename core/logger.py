"""
Logging configuration for the FixIt Hostel backend.
Provides structured logging with file rotation and console output.
"""
import logging
import os
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional


def setup_logger(
    name: str = "fixit_hostel",
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Set up a logger with both file and console handlers.

    Args:
        name: Logger name
        log_file: Path to log file (if None, only console logging)
        level: Logging level (default: INFO)
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler (always add)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "multipart", "aiosmtplib")


def resolve_level() -> int:
    """LOG_LEVEL name if set, otherwise DEBUG when DEBUG=true, otherwise INFO."""
    name = os.getenv("LOG_LEVEL", "").strip().upper()
    if name and isinstance(logging.getLevelName(name), int):
        return logging.getLevelName(name)
    return logging.DEBUG if os.getenv("DEBUG", "false").lower() == "true" else logging.INFO


def quiet_third_party(level: int = logging.WARNING) -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


# Default logger instance; LOG_TO_FILE=false keeps it console-only (tests, containers)
_log_file = None
if os.getenv("LOG_TO_FILE", "true").lower() == "true":
    _log_file = Path(os.getenv("LOGS_DIR", str(Path(__file__).parent.parent / "logs"))) / "app.log"
logger = setup_logger(name="fixit_hostel", log_file=_log_file, level=resolve_level())
quiet_third_party()
