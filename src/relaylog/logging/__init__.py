"""
Structured logging pipeline for relaylog.

Provides a single Logger facade over an ordered fan-out of destinations:
- console: standard output (pretty or json)
- rotatingFile: period/size rotated files with a pruning audit index
- http: batched shipping to a remote collector

Design Pattern: Strategy Pattern for destinations, explicit aliasing for
stream reuse between routes.
Library: structlog + orjson for the processor chain and JSON serialization.
"""

from .core import Logger, create_logger, descriptors_from_settings
from .levels import DEFAULT_LEVELS, LevelTable
from .records import ErrorInfo, LogRecord
from .router import StreamRoute, StreamRouter
from .sinks import (
    ConsoleDestination,
    Destination,
    HttpDestination,
    RotatingFileDestination,
    SinkDescriptor,
    SinkFactory,
)

__all__ = [
    "DEFAULT_LEVELS",
    "ConsoleDestination",
    "Destination",
    "ErrorInfo",
    "HttpDestination",
    "LevelTable",
    "LogRecord",
    "Logger",
    "RotatingFileDestination",
    "SinkDescriptor",
    "SinkFactory",
    "StreamRoute",
    "StreamRouter",
    "create_logger",
    "descriptors_from_settings",
]
