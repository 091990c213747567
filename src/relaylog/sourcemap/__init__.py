"""
Client stack trace remapping through source maps.
"""

from .document import OriginalPosition, SourceMapConsumer, SourceMapDocument, decode_vlq
from .loader import SourceMapLoader
from .remapper import DEFAULT_MAP_NAME, SourceMapCache, StackFrame, StackTraceRemapper

__all__ = [
    "DEFAULT_MAP_NAME",
    "OriginalPosition",
    "SourceMapCache",
    "SourceMapConsumer",
    "SourceMapDocument",
    "SourceMapLoader",
    "StackFrame",
    "StackTraceRemapper",
    "decode_vlq",
]
