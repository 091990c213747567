"""
Unified exception hierarchy for relaylog.

Only ConfigError is allowed to abort a larger operation (building a Logger at
startup). Every other error is absorbed where it occurs and degrades the
pipeline gracefully: a sink is dropped, a stack line stays unremapped, a write
is reported on the diagnostics console.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RelayLogError(Exception):
    """Root of all relaylog errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}


# ================================
# Configuration
# ================================


class ConfigError(RelayLogError):
    """Malformed or invalid configuration. Fatal at startup."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="CONFIG_ERROR", details=details)


class UnknownLevelError(ConfigError):
    """A severity name that is not part of the level table."""

    def __init__(self, level: str) -> None:
        super().__init__(f"Unknown log level '{level}'", details={"level": level})
        self.level = level


# ================================
# Sinks
# ================================


class SinkSetupError(RelayLogError):
    """A single sink could not be built; the router skips it."""

    def __init__(self, message: str, *, kind: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="SINK_SETUP_ERROR", details={"kind": kind, **(details or {})})
        self.kind = kind


class DirectoryCreateError(SinkSetupError):
    """The log directory for a rotating file sink could not be created."""

    def __init__(self, directory: str, reason: str) -> None:
        super().__init__(
            f"Cannot create log directory '{directory}': {reason}",
            kind="rotatingFile",
            details={"directory": directory},
        )
        self.directory = directory


class SinkWriteError(RelayLogError):
    """A destination write failed. Logged locally, never propagated to callers."""

    def __init__(self, message: str, *, destination: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="SINK_WRITE_ERROR", details={"destination": destination, **(details or {})})


# ================================
# Source maps
# ================================


class SourceMapLoadError(RelayLogError):
    """Missing, unreadable or malformed source map."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message, code="SOURCE_MAP_LOAD_ERROR", details={"path": path} if path else None)
        self.path = path


class RemapParseError(RelayLogError):
    """A single stack line could not be resolved."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"Cannot remap stack line: {reason}", code="REMAP_PARSE_ERROR", details={"line": line})


# ================================
# Client error reporting
# ================================


class ClientPayloadError(RelayLogError):
    """A client error report is missing a required field."""

    def __init__(self, field: str) -> None:
        super().__init__(f"Missing required field '{field}'", code="CLIENT_PAYLOAD_ERROR", details={"field": field})
        self.field = field
