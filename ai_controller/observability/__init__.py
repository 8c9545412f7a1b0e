"""
Observability - Logging

Per-run execution event logs.
"""

from .execution_logger import ExecutionLogger, EXECUTION_LOGGER_NAME

__all__ = [
    'ExecutionLogger',
    'EXECUTION_LOGGER_NAME',
]
