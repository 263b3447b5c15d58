"""
Logging setup for the API process, Celery workers and tests.

Production (or USE_JSON_LOGGING=true) emits one JSON object per line so log
shippers can index pipeline context; everything else gets a readable line
format. Pipeline code attaches context through ``get_logger``.
"""
import json
import logging
import os
from datetime import datetime, timezone

TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s'
TEXT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Record attributes promoted to top-level JSON keys when present
CONTEXT_FIELDS = (
    'organization_id',
    'interaction_id',
    'connection_id',
    'platform',
    'task_id',
    'queue',
    'duration_ms',
)

QUIET_LOGGERS = ('httpx', 'openai', 'sqlalchemy.engine', 'celery.worker.strategy')


class JsonFormatter(logging.Formatter):

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'service': self.service_name,
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update({name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)})
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _use_json(json_output):
    if json_output is not None:
        return json_output
    if os.getenv('USE_JSON_LOGGING', '').lower() == 'true':
        return True
    return os.getenv('ENVIRONMENT', 'development').lower() == 'production'


def setup_logging(level=None, json_output=None, log_file=None, service_name='social-inbox'):
    """
    Install handlers on the root logger, replacing any existing ones.

    Args:
        level: Level name; defaults to LOG_LEVEL or INFO
        json_output: Force JSON (True) or text (False); None decides from the environment
        log_file: Also write to this file
        service_name: Stamped on JSON records

    Returns:
        Logger named after the service
    """
    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    if _use_json(json_output):
        formatter = JsonFormatter(service_name)
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT)

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(service_name)


class ContextAdapter(logging.LoggerAdapter):
    """Adds fixed pipeline context to every record; per-call extras win."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs


def get_logger(name, **context):
    """Module logger, wrapped with context such as task_id or interaction_id when given."""
    logger = logging.getLogger(name)
    return ContextAdapter(logger, context) if context else logger


def setup_worker_logging():
    return setup_logging(service_name='social-inbox-worker')


def setup_test_logging():
    return setup_logging(level='WARNING', json_output=False, service_name='social-inbox-test')
