"""Observability module for run tracking and structured logging."""

from .logging import bind_run_context, clear_run_context, get_run_logger, setup_structured_logging
from .models import RunRecord, RunStage, RunStatus
from .store import RunRegistry, get_run_registry

__all__ = [
    "RunRecord",
    "RunRegistry",
    "RunStage",
    "RunStatus",
    "bind_run_context",
    "clear_run_context",
    "get_run_logger",
    "get_run_registry",
    "setup_structured_logging",
]
