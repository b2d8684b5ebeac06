"""
Observability: run-context propagation and structured logging.

- Run context propagated automatically via ContextVar
- JSON logging for production, human-readable logging for development
"""

from neuralminer.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]
