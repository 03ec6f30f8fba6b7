"""Structured workflow logging for blogflow."""
from blogflow.logging.models import LogLevel, LogComponent, LogEntry
from blogflow.logging.workflow_logger import WorkflowLogger, init_logger, get_logger
from blogflow.logging.component_logger import ComponentLogger, TimedOperation

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "WorkflowLogger", "init_logger", "get_logger",
    "ComponentLogger", "TimedOperation",
]
