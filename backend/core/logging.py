"""
Structured Logging System - Production Ready
Structured logging with JSON formatting, context propagation,
request tracing, and provider/cache event helpers.
"""

import sys
import logging
import logging.handlers
import traceback
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from pathlib import Path

from pythonjsonlogger import jsonlogger
import structlog

from config import settings

SERVICE_NAME = "plan-gateway"

# Substrings of event keys whose values are masked before rendering
SENSITIVE_KEY_PARTS = ("api_key", "authorization", "secret", "password", "token_value", "bearer")

# ============================================================================
# PROCESSORS AND FORMATTERS
# ============================================================================

def redact_sensitive(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor masking credentials anywhere in the event."""
    return _redact(event_dict)


def _redact(values: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in values.items():
        if any(part in key.lower() for part in SENSITIVE_KEY_PARTS):
            values[key] = "[REDACTED]"
        elif isinstance(value, dict):
            values[key] = _redact(dict(value))
    return values


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping service, environment, level and logger name."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = SERVICE_NAME
        log_record["environment"] = settings.environment.value
        _redact(log_record)


def _formatter() -> logging.Formatter:
    if settings.logging.format == "json":
        return CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    return logging.Formatter("%(asctime)s %(levelname)-8s %(name)s %(message)s")


def _handlers() -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if settings.logging.file_path:
        log_path = Path(settings.logging.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=settings.logging.max_size_mb * 1024 * 1024,
            backupCount=settings.logging.backup_count
        ))

    formatter = _formatter()
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logging():
    """Route structlog through stdlib handlers at the configured level."""
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.logging.level.value)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in _handlers():
        root_logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            redact_sensitive,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# ============================================================================
# LOG CONTEXT MANAGER
# ============================================================================

class LogContext:
    """
    Context manager for adding context to logs within a scope.

    Example:
        with LogContext(request_id="abc-123", identity="user-456"):
            logger.info("plan_requested")
    """

    def __init__(self, **context):
        self.context = context

    def __enter__(self):
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        structlog.contextvars.unbind_contextvars(*self.context.keys())


# ============================================================================
# REQUEST LOGGER
# ============================================================================

class RequestLogger:
    """
    Specialized logger for HTTP request logging.

    Tracks request ID, method and path, response status, duration
    and the calling identity (if any).
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger):
        self.logger = logger

    def log_request_start(self, request_id: str, method: str, path: str,
                          identity: Optional[str] = None):
        """Log the start of a request."""
        self.logger.info(
            "request_started",
            request_id=request_id,
            method=method,
            path=path,
            identity=identity,
            event_type="request_start"
        )

    def log_request_end(self, request_id: str, method: str, path: str,
                        status_code: int, duration_ms: float,
                        identity: Optional[str] = None):
        """Log the completion of a request."""
        log_data = {
            "request_id": request_id,
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "event_type": "request_end"
        }

        if identity:
            log_data["identity"] = identity

        if status_code >= 500:
            self.logger.error("request_failed", **log_data)
        elif status_code >= 400:
            self.logger.warning("request_client_error", **log_data)
        else:
            self.logger.info("request_completed", **log_data)


# ============================================================================
# PROVIDER LOGGER
# ============================================================================

class ProviderLogger:
    """
    Specialized logger for completion provider calls.

    Tracks model, attempt number, latency, token usage, cost and
    success/failure of every call.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger):
        self.logger = logger

    def log_completion(self, model: str, attempt: int, latency_ms: float,
                       prompt_tokens: Optional[int] = None,
                       completion_tokens: Optional[int] = None,
                       success: bool = True, error: Optional[str] = None,
                       strict: bool = False):
        """Log one provider round trip."""
        log_data = {
            "model": model,
            "attempt": attempt,
            "latency_ms": round(latency_ms, 2),
            "success": success,
            "strict": strict,
            "event_type": "provider_completion"
        }

        if prompt_tokens:
            log_data["prompt_tokens"] = prompt_tokens

        if completion_tokens:
            log_data["completion_tokens"] = completion_tokens

        if error:
            log_data["error"] = error
            self.logger.warning("provider_completion_failed", **log_data)
        else:
            self.logger.info("provider_completion_succeeded", **log_data)


# ============================================================================
# CACHE LOGGER
# ============================================================================

class CacheLogger:
    """
    Specialized logger for cache tier operations.

    Tracks operation, tier, fingerprint, hit/miss and latency.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger):
        self.logger = logger

    def log_cache_operation(self, operation: str, key: str, tier: Optional[str] = None,
                            hit: Optional[bool] = None, latency_ms: Optional[float] = None,
                            error: Optional[str] = None):
        """Log cache operation events."""
        log_data = {
            "operation": operation,
            "key": key[:16] + "..." if len(key) > 16 else key,
            "event_type": "cache_operation"
        }

        if tier:
            log_data["tier"] = tier

        if hit is not None:
            log_data["hit"] = hit

        if latency_ms:
            log_data["latency_ms"] = round(latency_ms, 2)

        if error:
            log_data["error"] = error
            self.logger.warning("cache_operation_failed", **log_data)
        else:
            self.logger.debug("cache_operation_completed", **log_data)




# ============================================================================
# LOGGER ACCESS
# ============================================================================

def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("plan_generated", fingerprint=fp)
    """
    return structlog.get_logger(name or __name__)


def get_request_logger() -> RequestLogger:
    return RequestLogger(get_logger("api"))


def get_provider_logger() -> ProviderLogger:
    return ProviderLogger(get_logger("provider"))


def get_cache_logger() -> CacheLogger:
    return CacheLogger(get_logger("cache"))


# ============================================================================
# LOGGING UTILITIES
# ============================================================================

def log_exception(logger: structlog.stdlib.BoundLogger, exc: Exception,
                  message: str = "error_occurred", **context):
    """Log an exception with its type, message and formatted traceback."""
    context["error_type"] = exc.__class__.__name__
    context["error_message"] = str(exc)
    context["traceback"] = "".join(
        traceback.format_exception(type(exc), exc, exc.__traceback__)
    )

    logger.error(message, **context)


def log_performance(logger: structlog.stdlib.BoundLogger, operation: str,
                    duration_ms: float, **context):
    """
    Log performance of an operation, escalating level with latency.

    Provider calls are seconds-scale, so thresholds are wider than for
    plain I/O.
    """
    context["operation"] = operation
    context["duration_ms"] = round(duration_ms, 2)
    context["event_type"] = "performance"

    if duration_ms < 1000:
        logger.debug("performance_ok", **context)
    elif duration_ms < 10000:
        logger.info("performance_degraded", **context)
    elif duration_ms < 30000:
        logger.warning("performance_slow", **context)
    else:
        logger.error("performance_critical", **context)


# ============================================================================
# INITIALIZATION FUNCTION
# ============================================================================

def setup_logging():
    """Initialize the logging system once at application startup."""
    configure_logging()

    get_logger("gateway").info(
        "logging_initialized",
        environment=settings.environment.value,
        log_level=settings.logging.level.value,
        log_format=settings.logging.format,
        file=str(settings.logging.file_path) if settings.logging.file_path else "console"
    )


# Loggers used at import time still render through the configured handlers
configure_logging()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    # Main functions
    "setup_logging",
    "configure_logging",
    "get_logger",
    "get_request_logger",
    "get_provider_logger",
    "get_cache_logger",

    # Logger classes
    "RequestLogger",
    "ProviderLogger",
    "CacheLogger",

    # Utilities
    "log_exception",
    "log_performance",
    "redact_sensitive",
    "LogContext",
]
