"""
Record encoders: JSON lines for machines, pretty lines for humans.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

import orjson

from .records import LogRecord


def orjson_dumps(v: Any, *, default: Any = None) -> str:
    """Fast JSON serialization using orjson."""
    return orjson.dumps(v, default=default or str, option=orjson.OPT_UTC_Z | orjson.OPT_NAIVE_UTC).decode()


class Encoder(Protocol):
    def encode(self, record: LogRecord) -> str: ...


class JsonEncoder:
    """One JSON object per line."""

    def encode(self, record: LogRecord) -> str:
        return orjson_dumps(record.to_dict()) + "\n"


# =============================================================================
# Pretty Formatter
# =============================================================================

COLORS = {
    "reset": "\033[0m",
    "timestamp": "\033[90m",
    "key": "\033[34m",
}

LEVEL_COLORS = {
    "trace": "\033[90m",
    "debug": "\033[36m",
    "info": "\033[32m",
    "warn": "\033[33m",
    "error": "\033[31m",
    "fatal": "\033[1;31m",
}

# Custom levels without an explicit color
DEFAULT_LEVEL_COLOR = "\033[35m"


def colorize(text: str, color: str) -> str:
    """Apply ANSI color to text."""
    return f"{color}{text}{COLORS['reset']}"


class PrettyEncoder:
    """Human-readable rendering, configured from the ``prettyPrint`` options.

    Layout: ``[timestamp] LEVEL: message`` followed by the record fields, either
    inline as ``key=value`` pairs (single line) or one ``key: value`` per
    indented line. Error stacks always follow on their own lines.
    """

    RESERVED_KEYS = {"level", "time", "message", "err"}
    INDENT = "    "

    def __init__(
        self,
        *,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
        colorize: bool = False,
        single_line: bool = False,
        level_first: bool = False,
        ignore: str | list[str] = "",
    ):
        self._timestamp_format = timestamp_format
        self._colorize = colorize
        self._single_line = single_line
        self._level_first = level_first
        if isinstance(ignore, str):
            ignore = [k.strip() for k in ignore.split(",")]
        self._ignore = {k for k in ignore if k}

    def _maybe_color(self, text: str, color: str) -> str:
        if not self._colorize:
            return text
        return colorize(text, color)

    def _format_timestamp(self, time: datetime) -> str:
        return time.astimezone().strftime(self._timestamp_format)

    def _format_value(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        return orjson_dumps(value)

    def encode(self, record: LogRecord) -> str:
        level_text = self._maybe_color(
            record.level.upper(),
            LEVEL_COLORS.get(record.level, DEFAULT_LEVEL_COLOR),
        )
        parts = []
        if "time" not in self._ignore:
            parts.append(self._maybe_color(f"[{self._format_timestamp(record.time)}]", COLORS["timestamp"]))
        if "level" not in self._ignore:
            if self._level_first:
                parts.insert(0, level_text)
            else:
                parts.append(level_text)
        head = " ".join(parts)
        line = f"{head}: {record.message}" if head else record.message

        extras = [(k, v) for k, v in record.fields.items() if k not in self.RESERVED_KEYS and k not in self._ignore]
        if self._single_line:
            if extras:
                pairs = " ".join(
                    f"{self._maybe_color(k, COLORS['key'])}={self._format_value(v)}" for k, v in extras
                )
                line = f"{line} {pairs}"
            lines = [line]
        else:
            lines = [line]
            for k, v in extras:
                lines.append(f"{self.INDENT}{self._maybe_color(k, COLORS['key'])}: {self._format_value(v)}")

        if record.error is not None and "err" not in self._ignore and record.error.stack:
            for stack_line in record.error.stack.splitlines():
                lines.append(f"{self.INDENT}{stack_line}")

        return "\n".join(lines) + "\n"
