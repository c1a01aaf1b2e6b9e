"""JSON logging on the root logger, tagged with request and execution IDs."""

import logging
import os
import sys
from contextvars import ContextVar
from typing import Optional
from pythonjsonlogger import jsonlogger

correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='')
execution_id_var: ContextVar[str] = ContextVar('execution_id', default='')

LOG_FORMAT = '%(asctime)s %(name)s %(levelname)s %(correlation_id)s %(execution_id)s %(message)s'


class LogContextFilter(logging.Filter):
    """Copies the current correlation and execution IDs onto each record"""

    def filter(self, record):
        record.correlation_id = correlation_id_var.get('')
        # An explicit extra={"execution_id": ...} wins over the context
        if not hasattr(record, 'execution_id'):
            record.execution_id = execution_id_var.get('')
        return True


def setup_logging(service_name: str, level: Optional[str] = None) -> None:
    root = logging.getLogger()
    root.setLevel(level or os.getenv("LOG_LEVEL", "INFO"))
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter(
        LOG_FORMAT,
        rename_fields={'asctime': 'timestamp', 'name': 'logger', 'levelname': 'level'},
    ))
    handler.addFilter(LogContextFilter())
    root.addHandler(handler)
    logging.info("Logging configured", extra={"service": service_name})


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def set_execution_id(execution_id: str) -> None:
    execution_id_var.set(execution_id or '')
