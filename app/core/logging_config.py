"""
Logging configuration for the coaching subscriptions API.

Status transitions are logged with a ``status_transition`` extra attribute,
so the file handler records them alongside the message. Secrets and
signatures are kept out of log output.
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

REDACTED = "***REDACTED***"

SENSITIVE_KEYS = (
    "password", "token", "secret", "signature", "api_key", "database_url",
)


class StatusTransitionFormatter(logging.Formatter):
    """Appends the structured status transition, when present, to the line."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        transition = getattr(record, "status_transition", None)
        if transition:
            line = f"{line} | status_transition={transition}"
        return line


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs"):
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the rotating log file; empty for console only
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    root.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path / "coaching.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(StatusTransitionFormatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        root.addHandler(file_handler)

    # Set levels for third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.INFO)


def sanitize_log_data(data: Any) -> Any:
    """
    Return a copy of data with sensitive keys redacted, nested dicts and
    lists included. Suitable for request bodies and webhook payloads.
    """
    if isinstance(data, dict):
        return {
            key: REDACTED if any(s in str(key).lower() for s in SENSITIVE_KEYS) else sanitize_log_data(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_log_data(item) for item in data]
    return data
