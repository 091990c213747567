"""
Source map (revision 3) parsing and position lookup.

Only what stack remapping needs is decoded: per generated line, the sorted
segments ``(generated_column, source_index, original_line, original_column,
name_index)``. Lookups use greatest-lower-bound on the generated column within
the requested line.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from relaylog.errors import SourceMapLoadError

_BASE64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_BASE64_VALUES = {char: index for index, char in enumerate(_BASE64)}

_VLQ_SHIFT = 5
_VLQ_CONTINUATION = 1 << _VLQ_SHIFT
_VLQ_MASK = _VLQ_CONTINUATION - 1


def decode_vlq(segment: str) -> list[int]:
    """Decode one comma-free mappings segment into its signed integers."""
    values: list[int] = []
    shift = 0
    accum = 0
    for char in segment:
        try:
            digit = _BASE64_VALUES[char]
        except KeyError:
            raise ValueError(f"Invalid base64 character {char!r} in mappings") from None
        accum += (digit & _VLQ_MASK) << shift
        if digit & _VLQ_CONTINUATION:
            shift += _VLQ_SHIFT
            continue
        negative = accum & 1
        value = accum >> 1
        values.append(-value if negative else value)
        accum = 0
        shift = 0
    if shift:
        raise ValueError("Truncated VLQ sequence in mappings")
    return values


@dataclass(frozen=True)
class OriginalPosition:
    source: Optional[str]
    line: Optional[int]
    column: Optional[int]
    name: Optional[str] = None


_NO_POSITION = OriginalPosition(source=None, line=None, column=None)


class SourceMapDocument:
    """Parsed, read-only source map."""

    def __init__(
        self,
        sources: Sequence[str],
        names: Sequence[str],
        lines: Sequence[Sequence[tuple[int, ...]]],
        *,
        file: Optional[str] = None,
    ):
        self.file = file
        self.sources = tuple(sources)
        self.names = tuple(names)
        self._lines = tuple(tuple(segments) for segments in lines)
        self._columns = tuple(tuple(segment[0] for segment in segments) for segments in self._lines)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SourceMapDocument":
        """Validate and decode a parsed JSON source map."""
        if not isinstance(data, Mapping):
            raise SourceMapLoadError("Source map must be a JSON object")
        if data.get("version") != 3:
            raise SourceMapLoadError(f"Unsupported source map version {data.get('version')!r}")
        mappings = data.get("mappings")
        sources = data.get("sources")
        if not isinstance(mappings, str) or not isinstance(sources, list):
            raise SourceMapLoadError("Source map requires 'mappings' and 'sources'")

        root = data.get("sourceRoot") or ""
        if root and not root.endswith("/"):
            root += "/"
        resolved_sources = [f"{root}{source}" if source is not None else "" for source in sources]
        names = [str(name) for name in data.get("names", [])]

        try:
            lines = _decode_mappings(mappings, len(resolved_sources), len(names))
        except ValueError as exc:
            raise SourceMapLoadError(f"Malformed mappings: {exc}") from exc
        return cls(resolved_sources, names, lines, file=data.get("file"))

    @property
    def line_count(self) -> int:
        return len(self._lines)

    def original_position_for(self, line: int, column: int) -> OriginalPosition:
        """Map a 1-based generated line and 0-based column to the original position.

        Returns an OriginalPosition whose ``source`` is None when no mapping
        with a source precedes the column on that line.
        """
        if line < 1 or line > len(self._lines) or column < 0:
            return _NO_POSITION
        columns = self._columns[line - 1]
        index = bisect.bisect_right(columns, column) - 1
        if index < 0:
            return _NO_POSITION
        segment = self._lines[line - 1][index]
        if len(segment) < 4:
            return _NO_POSITION
        name = self.names[segment[4]] if len(segment) >= 5 else None
        return OriginalPosition(
            source=self.sources[segment[1]],
            line=segment[2] + 1,
            column=segment[3],
            name=name,
        )

    def consumer(self) -> "SourceMapConsumer":
        return SourceMapConsumer(self)


class SourceMapConsumer:
    """Per-call lookup session with a memo of resolved positions.

    Use as a context manager; closing drops the memo.
    """

    def __init__(self, document: SourceMapDocument):
        self._document: Optional[SourceMapDocument] = document
        self._memo: dict[tuple[int, int], OriginalPosition] = {}

    def original_position_for(self, line: int, column: int) -> OriginalPosition:
        if self._document is None:
            raise RuntimeError("SourceMapConsumer is closed")
        key = (line, column)
        if key not in self._memo:
            self._memo[key] = self._document.original_position_for(line, column)
        return self._memo[key]

    @property
    def closed(self) -> bool:
        return self._document is None

    def close(self) -> None:
        self._memo.clear()
        self._document = None

    def __enter__(self) -> "SourceMapConsumer":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def _decode_mappings(mappings: str, source_count: int, name_count: int) -> list[list[tuple[int, ...]]]:
    lines: list[list[tuple[int, ...]]] = []
    # Source, original line/column and name are delta-encoded across the whole
    # mappings string; the generated column resets on each line.
    source = original_line = original_column = name = 0

    for raw_line in mappings.split(";"):
        segments: list[tuple[int, ...]] = []
        generated_column = 0
        for raw_segment in raw_line.split(","):
            if not raw_segment:
                continue
            fields = decode_vlq(raw_segment)
            if len(fields) not in (1, 4, 5):
                raise ValueError(f"Segment {raw_segment!r} has {len(fields)} fields")
            generated_column += fields[0]
            if len(fields) == 1:
                segments.append((generated_column,))
                continue
            source += fields[1]
            original_line += fields[2]
            original_column += fields[3]
            if not 0 <= source < source_count:
                raise ValueError(f"Source index {source} out of range")
            if len(fields) == 5:
                name += fields[4]
                if not 0 <= name < name_count:
                    raise ValueError(f"Name index {name} out of range")
                segments.append((generated_column, source, original_line, original_column, name))
            else:
                segments.append((generated_column, source, original_line, original_column))
        segments.sort(key=lambda segment: segment[0])
        lines.append(segments)
    return lines
