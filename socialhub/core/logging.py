"""
Centralized Logging Configuration

Standard logging setup for the API process and Celery workers, with an
optional JSON formatter for structured log shipping.
"""
import logging
import json
from datetime import datetime, timezone

from socialhub.core.config import get_settings


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    # Extra fields the pipeline attaches to log records
    EXTRA_FIELDS = (
        'tenant_id',
        'channel_id',
        'webhook_event_id',
        'message_id',
        'post_id',
        'task_id',
        'latency_ms',
    )

    def format(self, record):
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        return json.dumps(log_entry, default=str)


def setup_logging(level=None, format_type=None, log_file=None, service_name='socialhub'):
    """
    Setup centralized logging configuration.

    Args:
        level: Log level name, defaults to LOG_LEVEL
        format_type: 'json' or 'standard'; production defaults to json
        log_file: Optional file path for log output
        service_name: Name of the service logger returned

    Returns:
        Service logger
    """
    settings = get_settings()

    if level is None:
        level = settings.log_level.upper()
    numeric_level = getattr(logging, level, logging.INFO)

    use_json = (
        format_type == 'json'
        or (format_type is None and (settings.is_production or settings.use_json_logging))
    )

    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Noisy third-party libraries
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('alembic').setLevel(logging.WARNING)
    logging.getLogger('celery').setLevel(max(numeric_level, logging.INFO))

    return logging.getLogger(service_name)
