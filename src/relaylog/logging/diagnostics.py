"""
Fallback console for the pipeline's own warnings.

Sink failures cannot be reported through the router that owns the failing
sink, so they go to a standalone structlog logger writing JSON to stderr.
"""

from __future__ import annotations

import sys
from typing import Any, TextIO

import structlog

from .formatters import orjson_dumps


def get_diagnostics_logger(name: str = "relaylog", stream: TextIO | None = None) -> Any:
    """Return a structlog logger that bypasses every configured route."""
    return structlog.wrap_logger(
        structlog.PrintLogger(file=stream or sys.stderr),
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(serializer=orjson_dumps),
        ],
        context_class=dict,
        cache_logger_on_first_use=False,
    ).bind(logger=name)
