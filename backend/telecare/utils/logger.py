import logging
import re
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from telecare.config import get_settings

ROOT_LOGGER = "telecare_api"
MAX_BYTES = 10 * 1024 * 1024  # 10MB
BACKUP_COUNT = 5

# Google OAuth material that can end up in provider error bodies or URLs
_SECRET_PATTERNS = [
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    re.compile(r"""(["']?(?:access_token|refresh_token|id_token|client_secret)["']?\s*[:=]\s*["']?)[^"'\s,&}]+"""),
    re.compile(r"([?&]code=)[^&\s]+"),
]


class RedactSecretsFilter(logging.Filter):
    """يخفي رموز Google (access/refresh) من الرسائل قبل كتابتها."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1***", text)
    return text


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(RedactSecretsFilter())
    return handler


def configure_logging(log_dir: str | Path | None = None) -> logging.Logger:
    """Console plus rotating app.log / errors.log under LOG_DIR. Safe to call again."""
    settings = get_settings()
    logs_dir = Path(log_dir or settings.LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if settings.APP_DEBUG else logging.INFO

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    short = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    detailed = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
    root.addHandler(_handler(logging.StreamHandler(sys.stdout), level, short))
    root.addHandler(
        _handler(RotatingFileHandler(logs_dir / "app.log", maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT), logging.INFO, detailed)
    )
    root.addHandler(
        _handler(RotatingFileHandler(logs_dir / "errors.log", maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT), logging.ERROR, detailed)
    )
    return root


logger = configure_logging()


def get_logger(name: str = None) -> logging.Logger:
    """Get a logger instance. If name is provided, returns a child logger."""
    if name:
        return logger.getChild(name)
    return logger
