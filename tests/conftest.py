from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import orjson
import pytest

from relaylog.logging import Destination, LevelTable, LogRecord, Logger, StreamRoute, StreamRouter
from relaylog.logging.formatters import JsonEncoder


class RecordingDestination(Destination):
    """Keeps every record it is asked to write."""

    name = "recording"

    def __init__(self) -> None:
        super().__init__(JsonEncoder())
        self.records: list[LogRecord] = []
        self.closed = 0

    def emit(self, record: LogRecord) -> None:
        self.records.append(record)

    def write(self, data: str) -> None:
        raise AssertionError("emit() is overridden")

    def close(self) -> None:
        self.closed += 1


class FailingDestination(Destination):
    name = "failing"

    def __init__(self) -> None:
        super().__init__(JsonEncoder())

    def write(self, data: str) -> None:
        raise OSError("disk full")

    def close(self) -> None:
        pass


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


# ================================
# Fixtures
# ================================


@pytest.fixture
def recording() -> RecordingDestination:
    return RecordingDestination()


@pytest.fixture
def failing() -> FailingDestination:
    return FailingDestination()


@pytest.fixture
def levels() -> LevelTable:
    return LevelTable({"clienterror": 55})


@pytest.fixture
def recording_logger(recording: RecordingDestination, levels: LevelTable) -> Logger:
    """Logger with one route at the lowest level."""
    return Logger(StreamRouter([StreamRoute(recording, "trace", "recording")], levels))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


# A one-source map resolving generated (1, 234) to app.js:42:7 "f".
# Line 1: "A" is a column-0 segment without a source; "0OAyCOA" is
# column +234, source 0, original line +41, column +7, name 0.
# Line 2: "AACA" is column 0, original line +1 (app.js:43:7, no name).
SOURCE_MAP = {
    "version": 3,
    "file": "bundle.min.js",
    "sources": ["app.js"],
    "names": ["f"],
    "mappings": "A,0OAyCOA;AACA",
}


@pytest.fixture
def source_map() -> dict[str, Any]:
    return dict(SOURCE_MAP)


@pytest.fixture
def source_map_dir(tmp_path: Path) -> Path:
    build = tmp_path / "build"
    build.mkdir()
    (build / "main.3f9a1c.js.map").write_bytes(orjson.dumps(SOURCE_MAP))
    (build / "main.3f9a1c.js").write_text("/* bundle */")
    return build
