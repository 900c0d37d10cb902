"""
Logging setup for Ledger Sync

Human-readable console output by default; one JSON object per line when
JSON logging is enabled (``JSON_LOGGING=true`` or ``--json-logs``). Both
formats carry the current correlation ID.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from ledger_sync.utils.correlation import setup_correlation_logging

CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s [%(correlation_id)s] %(name)s - %(message)s'
CONSOLE_DATEFMT = '%Y-%m-%d %H:%M:%S'


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter with correlation ID support."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', None),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        # Add extra fields
        if hasattr(record, 'collection'):
            log_data['collection'] = record.collection
        if hasattr(record, 'task_state'):
            log_data['task_state'] = record.task_state
        if hasattr(record, 'duration'):
            log_data['duration_seconds'] = record.duration

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_logging(level: int = logging.INFO, json_logging: Optional[bool] = None) -> logging.Handler:
    """
    Install a single stream handler on the root logger.

    Args:
        level: Root log level
        json_logging: Force JSON output on or off; defaults to JSON_LOGGING

    Returns:
        The installed handler
    """
    if json_logging is None:
        json_logging = os.getenv('JSON_LOGGING', 'false').lower() == 'true'

    handler = logging.StreamHandler()
    if json_logging:
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
    setup_correlation_logging(handler)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    return handler
