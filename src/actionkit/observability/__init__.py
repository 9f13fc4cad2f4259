"""Observability helpers (structured logging)."""

from .logging import ActionLogger, get_logger, set_verbose

__all__ = ["ActionLogger", "get_logger", "set_verbose"]
