"""Structured logging for draft capture and approval.

Wraps Python's ``logging`` module with stdout emission and context fields
that follow the current draft transaction through a call chain.
"""

from .config import configure_logging
from .context import bind_context, get_context, log_context

__all__ = [
    "bind_context",
    "configure_logging",
    "get_context",
    "log_context",
]
