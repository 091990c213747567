"""
Translation of minified client stack traces back to original sources.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from relaylog.errors import RemapParseError
from relaylog.logging.diagnostics import get_diagnostics_logger

from .document import SourceMapConsumer, SourceMapDocument

DEFAULT_MAP_NAME = "source"

# "at <label> (<file>:<line>:<column>)"; the file may itself contain colons
FRAME_PATTERN = re.compile(r"at\s+([^(]+)\((.*):(\d+):(\d+)\)")

_diagnostics = get_diagnostics_logger("relaylog.sourcemap")


@dataclass(frozen=True)
class StackFrame:
    function_label: str
    file: str
    line: int
    column: int

    @classmethod
    def parse(cls, line: str) -> Optional[tuple["StackFrame", re.Match[str]]]:
        match = FRAME_PATTERN.search(line)
        if not match:
            return None
        label, file, line_no, column = match.groups()
        return cls(label.strip(), file, int(line_no), int(column)), match


class SourceMapCache:
    """Named source map documents owned by one remapper.

    Entries are replaced whole; readers only ever see a fully parsed document.
    """

    def __init__(self) -> None:
        self._documents: dict[str, SourceMapDocument] = {}

    def get(self, name: str) -> Optional[SourceMapDocument]:
        return self._documents.get(name)

    def replace(self, name: str, document: SourceMapDocument) -> None:
        documents = dict(self._documents)
        documents[name] = document
        self._documents = documents

    def clear(self) -> None:
        self._documents = {}

    def __contains__(self, name: object) -> bool:
        return name in self._documents


class StackTraceRemapper:
    """Best-effort remapping that never raises.

    Frames resolved through the source map are rewritten as
    ``<source>:<line>:<column>[ at <name>]`` with the frame's indentation kept;
    every other line is passed through verbatim.
    """

    def __init__(self, cache: Optional[SourceMapCache] = None):
        self.cache = cache or SourceMapCache()

    def remap(self, stack: str, map_name: str = DEFAULT_MAP_NAME) -> str:
        if not stack:
            return stack
        document = self.cache.get(map_name)
        if document is None:
            return stack

        consumer: Optional[SourceMapConsumer] = None
        try:
            consumer = document.consumer()
            return "\n".join(self._remap_line(consumer, line) for line in stack.split("\n"))
        except Exception as exc:
            _diagnostics.warning("stack_remap_failed", map_name=map_name, error=str(exc))
            return stack
        finally:
            if consumer is not None:
                consumer.close()

    def _remap_line(self, consumer: SourceMapConsumer, line: str) -> str:
        try:
            return self._resolve(consumer, line)
        except RemapParseError:
            return line

    @staticmethod
    def _resolve(consumer: SourceMapConsumer, line: str) -> str:
        parsed = StackFrame.parse(line)
        if parsed is None:
            return line
        frame, match = parsed
        try:
            position = consumer.original_position_for(frame.line, frame.column)
        except (IndexError, ValueError) as exc:
            raise RemapParseError(line, str(exc)) from exc
        if not position.source:
            return line
        resolved = f"{position.source}:{position.line}:{position.column}"
        if position.name:
            resolved += f" at {position.name}"
        return line[: match.start()] + resolved
