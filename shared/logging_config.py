"""Centralized logging configuration with correlation, execution and node ID support."""

import logging
import os
import sys
from contextvars import ContextVar
from pythonjsonlogger import jsonlogger

correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='')
execution_id_var: ContextVar[str] = ContextVar('execution_id', default='')
# Set per node task, so plugin logs are attributed without passing ids around
node_id_var: ContextVar[str] = ContextVar('node_id', default='')

CONTEXT_FIELDS = {
    'correlation_id': correlation_id_var,
    'execution_id': execution_id_var,
    'node_id': node_id_var,
}


class ContextIdFilter(logging.Filter):
    """Fills the context id fields of a record unless the call passed them in extra"""

    def filter(self, record):
        for field, var in CONTEXT_FIELDS.items():
            if not getattr(record, field, None):
                setattr(record, field, var.get(''))
        return True


def setup_logging(service_name: str) -> None:
    """Sets up JSON logging on stdout"""
    logger = logging.getLogger()
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(correlation_id)s %(execution_id)s %(node_id)s %(message)s',
        rename_fields={
            'asctime': 'timestamp',
            'name': 'logger',
            'levelname': 'level',
        }
    )

    json_handler.setFormatter(formatter)
    json_handler.addFilter(ContextIdFilter())
    logger.addHandler(json_handler)
    logging.info("Logging configured", extra={"service": service_name, "level": logging.getLevelName(logger.level)})


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    return correlation_id_var.get('')


def set_execution_id(execution_id: str) -> None:
    execution_id_var.set(execution_id)


def set_node_id(node_id: str) -> None:
    node_id_var.set(node_id)
