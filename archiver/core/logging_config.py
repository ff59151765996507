"""
Structured JSON Logging Configuration

Provides centralized logging configuration with:
- JSON formatted output for machine parsing
- Event ID tracking via contextvars (set while a clip upload is in flight)
- Optional file rotation (7 files, 100MB max)
- Configurable log levels via environment
"""
import logging
import logging.handlers
import os
import contextvars
import re
from datetime import datetime, timezone
from typing import Optional
from pythonjsonlogger import jsonlogger

# Context variable for Frigate event ID propagation
event_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'event_id', default=None
)

# Third-party loggers that are chatty at INFO/DEBUG
NOISY_LOGGERS = ('botocore', 'boto3', 's3transfer', 'urllib3', 'aiohttp.access')


class EventIdFilter(logging.Filter):
    """
    Logging filter that adds event_id to all log records.

    Uses contextvars so every log line emitted while handling one
    Frigate event can be correlated, even across awaits.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.event_id = event_id_var.get() or "-"
        return True


class SanitizingFilter(logging.Filter):
    """
    Filter that sanitizes log messages to prevent log injection attacks.

    Frames arrive from the network, so anything echoed from them could
    otherwise forge log entries.
    """

    DANGEROUS_PATTERNS = [
        (r'\r\n', ' '),
        (r'\n', ' '),
        (r'\r', ' '),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern, replacement in self.DANGEROUS_PATTERNS:
                record.msg = re.sub(pattern, replacement, record.msg)

        if record.args and isinstance(record.args, tuple):
            sanitized_args = []
            for arg in record.args:
                if isinstance(arg, str):
                    sanitized = arg
                    for pattern, replacement in self.DANGEROUS_PATTERNS:
                        sanitized = re.sub(pattern, replacement, sanitized)
                    sanitized_args.append(sanitized)
                else:
                    sanitized_args.append(arg)
            record.args = tuple(sanitized_args)

        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter that adds standard fields to all log entries.

    Output format:
    {
        "timestamp": "2025-11-23T10:30:00.000Z",
        "level": "INFO",
        "message": "Successfully uploaded clip",
        "module": "storage_service",
        "event_id": "1700000000.123-abc123",
        "logger": "archiver.services.storage_service",
        ...extra fields...
    }
    """

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.now(timezone.utc).isoformat()

        log_record['level'] = record.levelname
        log_record['module'] = record.module
        log_record['logger'] = record.name
        log_record['event_id'] = getattr(record, 'event_id', '-')

        if record.funcName:
            log_record['function'] = record.funcName
        if record.lineno:
            log_record['line'] = record.lineno

        if 'message' not in log_record:
            log_record['message'] = record.getMessage()


def _build_handler(
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(EventIdFilter())
    handler.addFilter(SanitizingFilter())
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """
    Configure process-wide logging with JSON format and optional rotation.

    Args:
        log_level: Log level name (default INFO)
        log_dir: Directory for rotating log files; console only when None

    Returns:
        Root logger configured for the application
    """
    level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)

    json_formatter = CustomJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    root_logger.addHandler(
        _build_handler(logging.StreamHandler(), level, json_formatter)
    )

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

        # Max 100MB per file, keep 7 backups
        root_logger.addHandler(_build_handler(
            logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=100 * 1024 * 1024,
                backupCount=7,
                encoding='utf-8'
            ),
            level,
            json_formatter
        ))

        # Error-only file for failed uploads and fatal startup problems
        root_logger.addHandler(_build_handler(
            logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, 'error.log'),
                maxBytes=50 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8'
            ),
            logging.ERROR,
            json_formatter
        ))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the application's configuration.

    Args:
        name: Logger name (typically __name__ from the calling module)
    """
    return logging.getLogger(name)


def set_event_id(event_id: Optional[str]) -> contextvars.Token:
    """
    Set the Frigate event ID for the current context.

    Returns:
        Token that can be used to reset the context
    """
    return event_id_var.set(event_id)


def get_event_id() -> Optional[str]:
    """Get the current Frigate event ID from context, or None if not set."""
    return event_id_var.get()


def clear_event_id(token: contextvars.Token) -> None:
    """Reset the event ID context using the token from set_event_id."""
    event_id_var.reset(token)


def sanitize_log_value(value: str) -> str:
    """
    Sanitize a value for safe logging, preventing log injection.

    Args:
        value: String value to sanitize

    Returns:
        Sanitized string safe for logging
    """
    if not isinstance(value, str):
        return str(value)

    sanitized = value.replace('\r\n', ' ').replace('\n', ' ').replace('\r', ' ')

    # Raw frames can be large; keep log lines bounded
    max_length = 2000
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + '...[truncated]'

    return sanitized
