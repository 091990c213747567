"""
relaylog: structured log routing with client stack trace remapping.
"""

from relaylog.config import Settings, load_config
from relaylog.logging import Logger, create_logger
from relaylog.sourcemap import SourceMapLoader, StackTraceRemapper

__all__ = [
    "Logger",
    "Settings",
    "SourceMapLoader",
    "StackTraceRemapper",
    "create_logger",
    "load_config",
]
