"""
Logging configuration and structured log helpers.

All helpers append keyword context as `key=value` pairs after the message.
Context is sanitized first: provider credentials must never reach a log line,
so keys that look like secrets are masked and values that look like provider
tokens are masked regardless of their key.
"""
import logging
import logging.handlers
import re
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class LogCategory(str, Enum):
    """Logger names used across the service."""
    APP = "app"
    REQUEST = "app.request"
    ERRORS = "app.errors"
    DB = "app.db"
    SECURITY = "app.security"
    INTEGRATIONS = "app.integrations"
    SYNC = "app.integrations.sync"
    WEBHOOKS = "app.integrations.webhooks"


DEFAULT_LOG_LEVEL = logging.INFO
MASK = "***MASKED***"

# Compared against keys with '_' and '-' removed, lowercased
SENSITIVE_KEY_PARTS = (
    "password",
    "token",
    "authorization",
    "secret",
    "apikey",
    "clientsecret",
    "consumerkey",
    "codeverifier",
    "databaseurl",
    "redisurl",
    "brokerurl",
    "signature",
)

# Well-known credential prefixes issued by the providers we talk to
_TOKEN_VALUE_RE = re.compile(
    r"^(ghp_|gho_|ghs_|github_pat_|xox[abpr]-|sk_live_|sk_test_|rk_live_|lin_api_|lin_oauth_|secret_|cle_|ya29\.)"
)
_URL_CREDENTIALS_RE = re.compile(r"^(?P<scheme>[a-z][a-z0-9+.-]*)://(?P<user>[^:@/]*):[^@/]*@(?P<rest>.+)$", re.I)


def _is_sensitive_key(key: Any) -> bool:
    normalized = str(key).lower().replace("_", "").replace("-", "")
    return any(part in normalized for part in SENSITIVE_KEY_PARTS)


def _sanitize_data(data):
    """
    Return a copy of `data` with credentials masked.

    Dicts are masked by key, lists recursively, and strings by shape:
    connection URLs lose their password, provider tokens and long opaque
    strings are replaced entirely.
    """
    if isinstance(data, dict):
        return {
            key: MASK if _is_sensitive_key(key) else _sanitize_data(value)
            for key, value in data.items()
        }

    if isinstance(data, (list, tuple)):
        return [_sanitize_data(item) for item in data]

    if isinstance(data, str):
        if data.lower().startswith("bearer "):
            return "Bearer " + MASK
        if _TOKEN_VALUE_RE.match(data):
            return MASK
        match = _URL_CREDENTIALS_RE.match(data)
        if match:
            return f"{match.group('scheme')}://{match.group('user')}:***@{match.group('rest')}"
        if len(data) > 64 and all(c.isalnum() or c in "-_." for c in data):
            return MASK
        return data

    return data


def _resolve_log_level(level_value, default=DEFAULT_LOG_LEVEL):
    """Resolve a level name or number; returns (level, fell_back_to_default)."""
    if isinstance(level_value, int):
        return level_value, False
    candidate = str(level_value or "").strip().upper()
    if candidate.isdigit():
        return int(candidate), False
    resolved = logging.getLevelName(candidate) if candidate else None
    if isinstance(resolved, int):
        return resolved, False
    return default, True


def _get_settings():
    """Lazy import to avoid circular dependency with config module."""
    from app.core.config import settings  # local import to break circular dependency
    return settings


def setup_logging():
    """Configure root handlers from LOG_LEVEL, LOG_FILE and LOG_DIR."""
    settings = _get_settings()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    resolved_level, used_default_level = _resolve_log_level(settings.log_level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_path: Optional[Path] = None
    if settings.log_file:
        log_path = Path(settings.log_file)
        if not log_path.is_absolute():
            log_path = Path(settings.log_dir) / log_path
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(resolved_level)
    for category in (LogCategory.APP, LogCategory.INTEGRATIONS, LogCategory.SYNC, LogCategory.WEBHOOKS):
        logging.getLogger(category).setLevel(resolved_level)
    logging.getLogger(LogCategory.SECURITY).setLevel(logging.INFO)
    logging.getLogger(LogCategory.DB).setLevel(logging.INFO if settings.log_sql_requests else logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.log_sql_requests else logging.WARNING)

    # Third-party noise; httpx logs full request URLs, which may carry API keys
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if used_default_level:
        logger.warning("Invalid log level '%s' in configuration, falling back to INFO", settings.log_level)
    logger.info(
        "Logging configured - level=%s file=%s",
        logging.getLevelName(resolved_level),
        log_path or "disabled",
    )


def _log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    request_id: str = None,
    exc_info: bool = False,
    **kwargs,
):
    """Prefix the request ID and append sanitized context to a log line."""
    log_message = f"[{request_id}] {message}" if request_id else message
    if kwargs:
        context = _sanitize_data(kwargs)
        log_message = f"{log_message} ({', '.join(f'{k}={v}' for k, v in context.items())})"
    logger.log(level, log_message, exc_info=exc_info)


def log_info(message: str, request_id: str = None, **kwargs):
    _log_with_context(logging.getLogger(LogCategory.APP), logging.INFO, message, request_id, **kwargs)


def log_debug(message: str, request_id: str = None, **kwargs):
    _log_with_context(logging.getLogger(LogCategory.APP), logging.DEBUG, message, request_id, **kwargs)


def log_warning(message: str, request_id: str = None, **kwargs):
    _log_with_context(logging.getLogger(LogCategory.APP), logging.WARNING, message, request_id, **kwargs)


def log_error(error: Exception | str, request_id: str = None, **kwargs):
    """Log an error; tracebacks are attached only for real exceptions."""
    _log_with_context(
        logging.getLogger(LogCategory.ERRORS),
        logging.ERROR,
        f"Error: {error}",
        request_id,
        exc_info=isinstance(error, Exception),
        **kwargs,
    )


def log_sync_event(provider: str, event: str, request_id: str = None, **kwargs):
    """Log a sync lifecycle event (started, completed, failed, paused, skipped)."""
    _log_with_context(logging.getLogger(LogCategory.SYNC), logging.INFO, f"[{provider}] sync {event}", request_id, **kwargs)


def log_webhook_event(provider: str, event: str, request_id: str = None, level: int = logging.INFO, **kwargs):
    """Log an inbound webhook delivery event."""
    _log_with_context(logging.getLogger(LogCategory.WEBHOOKS), level, f"[{provider}] webhook {event}", request_id, **kwargs)
