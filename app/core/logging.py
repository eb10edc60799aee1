import json
import logging
import os
import re
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler

from app.core.config import settings

# Standard LogRecord attributes; anything else on a record came in through extra=
_RECORD_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

_SENSITIVE_KEYS = ("password", "token", "secret", "authorization", "api_key")
_EMAIL_PATTERN = re.compile(r"([a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+)")
_BEARER_PATTERN = re.compile(r"Bearer\s+[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_.+/=]+")


class UTCFormatter(logging.Formatter):
    """Formatter that always renders timestamps in UTC"""

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=UTC)
        return dt.strftime(datefmt or "%Y-%m-%d %H:%M:%S")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, carrying the structured extra= fields"""

    def _serialize(self, value):
        if value is None or isinstance(value, str | int | float | bool):
            return value
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, list | tuple | set):
            return [self._serialize(item) for item in value]
        if isinstance(value, dict):
            return {str(k): self._serialize(v) for k, v in sanitize_log_data(value).items()}
        text = str(value)
        if len(text) > 1000:
            return text[:1000] + "... [TRUNCATED]"
        return text

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for key, value in sanitize_log_data(extras).items():
            entry[key] = self._serialize(value)

        return json.dumps(entry, ensure_ascii=False)


def setup_logging():
    """Setup application logging with daily file rotation and console output"""
    os.makedirs(settings.LOG_PATH, exist_ok=True)

    current_date = datetime.now(UTC).strftime("%Y-%m-%d")
    log_file = settings.LOG_PATH / f"subscriptions-{current_date}.log"
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(log_level)

    readable = UTCFormatter(
        "%(asctime)s UTC - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # JSON in production for log aggregation
    file_formatter = JSONFormatter() if settings.ENVIRONMENT == "production" else readable

    file_handler = TimedRotatingFileHandler(
        log_file,
        when="midnight",
        interval=1,
        backupCount=settings.LOG_BACKUP_COUNT,
        encoding="utf-8",
        utc=True,
    )
    file_handler.setFormatter(file_formatter)
    file_handler.setLevel(log_level)
    logger.addHandler(file_handler)

    if settings.ENVIRONMENT == "development":
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(readable)
        console_handler.setLevel(log_level)
        logger.addHandler(console_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logging.info("Logging configured successfully")


def sanitize_log_data(data):
    """
    Mask secrets, bearer tokens and email addresses in a dict of log fields

    Args:
        data: Data to sanitize

    Returns:
        dict: Sanitized copy
    """
    if not isinstance(data, dict):
        return data

    sanitized = data.copy()
    for key, value in sanitized.items():
        if isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
        elif isinstance(value, str):
            if any(s in str(key).lower() for s in _SENSITIVE_KEYS):
                sanitized[key] = "********"
            elif _BEARER_PATTERN.search(value):
                sanitized[key] = _BEARER_PATTERN.sub("Bearer ********", value)
            elif _EMAIL_PATTERN.search(value):
                sanitized[key] = _EMAIL_PATTERN.sub("***@***.***", value)

    return sanitized
