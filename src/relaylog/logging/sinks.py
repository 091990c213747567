"""
Destination abstractions and the factory that builds them from descriptors.
"""

from __future__ import annotations

import asyncio
import re
import sys
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Literal, Mapping, Optional, TextIO

import httpx
import orjson

from relaylog.errors import DirectoryCreateError, SinkSetupError, SinkWriteError

from .diagnostics import get_diagnostics_logger
from .formatters import Encoder, JsonEncoder, PrettyEncoder
from .records import LogRecord

SinkKind = Literal["console", "rotatingFile", "http"]

_diagnostics = get_diagnostics_logger("relaylog.sinks")


# =============================================================================
# Destination Abstraction (Strategy Pattern)
# =============================================================================


class Destination(ABC):
    """A writable place for serialized records."""

    name: str = "destination"

    def __init__(self, encoder: Encoder):
        self.encoder = encoder

    def emit(self, record: LogRecord) -> None:
        """Serialize with this destination's encoder and write."""
        self.write(self.encoder.encode(record))

    @abstractmethod
    def write(self, data: str) -> None:
        """Append already serialized output."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release handles held by the destination."""
        ...

    async def aclose(self) -> None:
        self.close()


class ConsoleDestination(Destination):
    """Standard output, or any text stream handed in."""

    name = "console"

    def __init__(self, encoder: Encoder, stream: Optional[TextIO] = None):
        super().__init__(encoder)
        self._stream = stream or sys.stdout

    @property
    def stream(self) -> TextIO:
        return self._stream

    def write(self, data: str) -> None:
        self._stream.write(data)
        self._stream.flush()

    def close(self) -> None:
        self._stream.flush()


# =============================================================================
# Rotating File
# =============================================================================

_FREQUENCY_PATTERN = re.compile(r"^(\d+)([mh])$")
_MAX_AGE_PATTERN = re.compile(r"^(\d+)d$")


def parse_size(size: int | str | None) -> Optional[int]:
    """``10485760``, ``"500k"``, ``"10M"`` or ``"1G"`` to a byte count."""
    if size is None or size == "":
        return None
    if isinstance(size, int):
        return size
    match = re.fullmatch(r"(\d+)\s*([kKmMgG]?)", str(size).strip())
    if not match:
        raise ValueError(f"Invalid size '{size}'")
    number, unit = int(match.group(1)), match.group(2).lower()
    return number * {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3}[unit]


class RotationAudit:
    """Persisted index of rotated files used for age/count based pruning."""

    def __init__(self, path: Path):
        self._path = path
        self._files: list[dict[str, Any]] = []
        if path.exists():
            try:
                self._files = list(orjson.loads(path.read_bytes()).get("files", []))
            except (OSError, orjson.JSONDecodeError, AttributeError):
                _diagnostics.warning("rotation_audit_unreadable", path=str(path))
                self._files = []

    @property
    def files(self) -> list[dict[str, Any]]:
        return list(self._files)

    def record(self, filename: Path, when: datetime) -> None:
        name = str(filename)
        if any(entry["name"] == name for entry in self._files):
            return
        self._files.append({"date": int(when.timestamp() * 1000), "name": name})
        self._save()

    def prune(self, max_logs: int | str | None, now: datetime, current: Path) -> list[str]:
        """Delete files beyond the retention policy; returns deleted paths."""
        if max_logs in (None, ""):
            return []
        keep: list[dict[str, Any]]
        age = _MAX_AGE_PATTERN.match(str(max_logs))
        if age:
            cutoff_ms = (now.timestamp() - int(age.group(1)) * 86400) * 1000
            keep = [entry for entry in self._files if entry["date"] >= cutoff_ms]
        else:
            count = int(max_logs)
            keep = sorted(self._files, key=lambda entry: entry["date"])[-count:] if count > 0 else []

        removed = []
        for entry in self._files:
            if entry in keep or entry["name"] == str(current):
                continue
            Path(entry["name"]).unlink(missing_ok=True)
            removed.append(entry["name"])

        if removed:
            self._files = [entry for entry in self._files if entry["name"] not in removed]
            self._save()
        return removed

    def _save(self) -> None:
        self._path.write_bytes(orjson.dumps({"files": self._files}, option=orjson.OPT_INDENT_2))


class RotatingFileDestination(Destination):
    """Append-only file that rolls over by period and by size.

    The active file name is ``filename_pattern`` with ``%DATE%`` replaced by
    the current period, plus ``.N`` when the size limit forces a rollover
    within the same period.
    """

    name = "rotatingFile"

    def __init__(
        self,
        encoder: Encoder,
        *,
        directory: str | Path,
        filename_pattern: str = "app-%DATE%",
        frequency: Optional[str] = "daily",
        date_format: str = "%Y-%m-%d",
        extension: str = ".log",
        max_size_bytes: Optional[int] = None,
        max_logs: int | str | None = "10d",
        audit_file: str | Path | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(encoder)
        self._directory = Path(directory)
        self._pattern = filename_pattern
        self._frequency = frequency
        self._date_format = date_format
        self._extension = extension
        self._max_size = max_size_bytes
        self._max_logs = max_logs
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        stem = filename_pattern.replace("%DATE%", "").strip("-_.") or "app"
        audit_path = Path(audit_file) if audit_file else self._directory / f".{stem}-audit.json"
        self._audit = RotationAudit(audit_path)

        self._period = self._period_key(self._clock())
        self._counter = 0
        self._size = 0
        self._file: Any = None
        self._path: Optional[Path] = None
        self._open()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def audit(self) -> RotationAudit:
        return self._audit

    def _period_key(self, now: datetime) -> str:
        freq = self._frequency
        if not freq:
            return ""
        if freq == "daily":
            return now.strftime(self._date_format)
        if freq == "hourly":
            return now.strftime(f"{self._date_format}-%H")
        match = _FREQUENCY_PATTERN.match(freq)
        if not match:
            raise ValueError(f"Unsupported rotation frequency '{freq}'")
        step, unit = int(match.group(1)), match.group(2)
        if unit == "h":
            bucket = now.replace(hour=now.hour - now.hour % step, minute=0, second=0, microsecond=0)
            return bucket.strftime(f"{self._date_format}-%H")
        bucket = now.replace(minute=now.minute - now.minute % step, second=0, microsecond=0)
        return bucket.strftime(f"{self._date_format}-%H%M")

    def _current_path(self) -> Path:
        base = self._pattern.replace("%DATE%", self._period) if self._period else self._pattern.replace("%DATE%", "")
        base = base.rstrip("-_.") or "app"
        suffix = f".{self._counter}" if self._counter else ""
        return self._directory / f"{base}{suffix}{self._extension}"

    def _open(self) -> None:
        path = self._current_path()
        # Resume past files that already reached the size limit
        while self._max_size and path.exists() and path.stat().st_size >= self._max_size:
            self._counter += 1
            path = self._current_path()
        self._path = path
        self._file = open(path, "a", encoding="utf-8")
        self._size = path.stat().st_size
        now = self._clock()
        self._audit.record(path, now)
        self._audit.prune(self._max_logs, now, path)

    def _rotate(self, period: str) -> None:
        self._file.close()
        if period != self._period:
            self._period = period
            self._counter = 0
        else:
            self._counter += 1
        self._open()

    def write(self, data: str) -> None:
        period = self._period_key(self._clock())
        if period != self._period:
            self._rotate(period)
        elif self._max_size and self._size > 0 and self._size + len(data.encode("utf-8")) > self._max_size:
            self._rotate(period)
        self._file.write(data)
        self._file.flush()
        self._size += len(data.encode("utf-8"))

    def close(self) -> None:
        if self._file is not None and not self._file.closed:
            self._file.close()


# =============================================================================
# HTTP Collector
# =============================================================================


class HttpDestination(Destination):
    """Ships records to a remote collector in batches.

    Inside a running event loop a drain task sends batches through the async
    client. Without one, a background thread sends every full batch, and
    whatever is buffered every ``flush_interval`` seconds, through a sync
    client. Each batch is one request with a JSON array body. Sends are retried
    a fixed number of times with a constant interval; a batch that still fails
    is reported on the diagnostics console and dropped.

    At most ``max_buffer`` records wait to be sent. Past that the oldest are
    dropped and the drop is reported.
    """

    name = "http"

    def __init__(
        self,
        encoder: Encoder,
        *,
        url: str,
        method: str = "POST",
        retries: int = 0,
        retry_interval: float = 1.0,
        batch_size: int = 10,
        max_buffer: int = 1000,
        flush_interval: float = 1.0,
        timeout: float = 5.0,
        headers: Mapping[str, str] | None = None,
        client: Optional[httpx.AsyncClient] = None,
        sync_client: Optional[httpx.Client] = None,
    ):
        super().__init__(encoder)
        self.url = url
        self.method = method.upper()
        self.retries = max(0, retries)
        self.retry_interval = retry_interval
        self.batch_size = max(1, batch_size)
        self.max_buffer = max(self.batch_size, max_buffer)
        self.flush_interval = flush_interval
        self._timeout = timeout
        self._headers = {"content-type": "application/json", **(headers or {})}
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._sync_client = sync_client
        self._owns_sync_client = sync_client is None
        self._buffer: list[str] = []
        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task[None]] = None
        self._worker: Optional[threading.Thread] = None
        self._wake = threading.Event()
        self._stopping = False
        self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def write(self, data: str) -> None:
        if self._closed:
            raise SinkWriteError("HTTP destination is closed", destination=self.name)
        with self._lock:
            self._buffer.append(data.rstrip("\n"))
            overflow = len(self._buffer) - self.max_buffer
            if overflow > 0:
                del self._buffer[:overflow]
            full = len(self._buffer) >= self.batch_size
        if overflow > 0:
            _diagnostics.warning("http_sink_buffer_full", url=self.url, dropped=overflow, max_buffer=self.max_buffer)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._ensure_worker()
            if full:
                self._wake.set()
            return
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._drain())

    def _take_batch(self) -> list[str]:
        with self._lock:
            batch = self._buffer[: self.batch_size]
            del self._buffer[: self.batch_size]
        return batch

    def _body(self, batch: list[str]) -> str:
        return "[" + ",".join(batch) + "]"

    def _report_retry(self, attempt: int, exc: Exception) -> None:
        _diagnostics.warning(
            "http_sink_retry",
            attempt=attempt,
            retries=self.retries,
            url=self.url,
            error=str(exc),
        )

    def _report_dropped(self, batch: list[str], exc: Optional[Exception]) -> None:
        _diagnostics.error(
            "http_sink_send_failed",
            url=self.url,
            dropped=len(batch),
            error=str(exc),
        )

    # =========================================================================
    # Event loop path
    # =========================================================================

    async def _drain(self) -> None:
        while True:
            batch = self._take_batch()
            if not batch:
                return
            await self._send(batch)

    async def _send(self, batch: list[str]) -> bool:
        last_exc: Optional[Exception] = None
        for attempt in range(1, self.retries + 2):
            try:
                response = await self._client.request(
                    self.method, self.url, content=self._body(batch), headers=self._headers
                )
                response.raise_for_status()
                return True
            except httpx.HTTPError as exc:
                last_exc = exc
                if attempt <= self.retries:
                    self._report_retry(attempt, exc)
                    await asyncio.sleep(self.retry_interval)
        self._report_dropped(batch, last_exc)
        return False

    async def flush(self) -> None:
        if self._task is not None and not self._task.done():
            await self._task
        await self._drain()

    # =========================================================================
    # Background thread path
    # =========================================================================

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is not None:
                return
            self._worker = threading.Thread(target=self._run_worker, name="relaylog-http-sink", daemon=True)
        self._worker.start()

    def _run_worker(self) -> None:
        while True:
            self._wake.wait(self.flush_interval)
            self._wake.clear()
            self._drain_sync()
            if self._stopping:
                return

    def _stop_worker(self) -> None:
        if self._worker is None:
            return
        self._stopping = True
        self._wake.set()
        self._worker.join()

    def _drain_sync(self) -> None:
        while True:
            batch = self._take_batch()
            if not batch:
                return
            self._send_sync(batch)

    def _send_sync(self, batch: list[str]) -> bool:
        if self._sync_client is None:
            self._sync_client = httpx.Client(timeout=self._timeout)
        last_exc: Optional[Exception] = None
        for attempt in range(1, self.retries + 2):
            try:
                response = self._sync_client.request(
                    self.method, self.url, content=self._body(batch), headers=self._headers
                )
                response.raise_for_status()
                return True
            except httpx.HTTPError as exc:
                last_exc = exc
                if attempt <= self.retries:
                    self._report_retry(attempt, exc)
                    time.sleep(self.retry_interval)
        self._report_dropped(batch, last_exc)
        return False

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self) -> None:
        """Synchronous teardown: sends what is still buffered, then releases the clients."""
        if self._closed:
            return
        self._closed = True
        self._stop_worker()
        self._drain_sync()
        if self._owns_sync_client and self._sync_client is not None:
            self._sync_client.close()
        if self._owns_client:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(self._client.aclose())
            else:
                loop.create_task(self._release_client())

    async def _release_client(self) -> None:
        if self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)
        await self._client.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        await self.flush()
        self._closed = True
        await asyncio.to_thread(self._stop_worker)
        await asyncio.to_thread(self._drain_sync)
        if self._owns_sync_client and self._sync_client is not None:
            self._sync_client.close()
        if self._owns_client:
            await self._client.aclose()


# =============================================================================
# Descriptor & Factory
# =============================================================================


@dataclass(frozen=True)
class SinkDescriptor:
    """Resolved description of one sink, built once from configuration."""

    kind: SinkKind
    min_level: str
    options: Mapping[str, Any] = field(default_factory=dict)
    role: Optional[str] = None
    dedupe: bool = False


class SinkFactory:
    """Turns SinkDescriptors into Destinations.

    Args:
        pretty_options: keyword arguments for PrettyEncoder shared by the
            console and file sinks
        console_stream: stream used by console sinks (default: stdout)
        http_client: optional pre-built async httpx client for http sinks
        http_sync_client: optional pre-built sync httpx client, used when
            records are written outside an event loop
    """

    def __init__(
        self,
        *,
        pretty_options: Mapping[str, Any] | None = None,
        console_stream: Optional[TextIO] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        http_sync_client: Optional[httpx.Client] = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._pretty_options = dict(pretty_options or {})
        self._console_stream = console_stream
        self._http_client = http_client
        self._http_sync_client = http_sync_client
        self._clock = clock

    def build(self, descriptor: SinkDescriptor) -> Destination:
        builder = {
            "console": self._build_console,
            "rotatingFile": self._build_rotating_file,
            "http": self._build_http,
        }.get(descriptor.kind)
        if builder is None:
            raise SinkSetupError(f"Unknown sink kind '{descriptor.kind}'", kind=str(descriptor.kind))
        try:
            return builder(descriptor.options)
        except SinkSetupError:
            raise
        except (OSError, ValueError, TypeError, KeyError) as exc:
            raise SinkSetupError(
                f"Cannot build {descriptor.kind} sink: {exc}",
                kind=descriptor.kind,
                details={"role": descriptor.role},
            ) from exc

    def _encoder(self, options: Mapping[str, Any], *, colorize: bool) -> Encoder:
        if options.get("format") == "json":
            return JsonEncoder()
        return PrettyEncoder(**{**self._pretty_options, "colorize": bool(options.get("colorize", colorize))})

    def _build_console(self, options: Mapping[str, Any]) -> Destination:
        stream = self._console_stream or sys.stdout
        use_color = bool(getattr(stream, "isatty", lambda: False)())
        return ConsoleDestination(self._encoder(options, colorize=use_color), stream=stream)

    def _build_rotating_file(self, options: Mapping[str, Any]) -> Destination:
        directory = Path(options["directory"])
        ensure_directory(directory)
        colorize = bool(self._pretty_options.get("colorize", False))
        return RotatingFileDestination(
            self._encoder(options, colorize=colorize),
            directory=directory,
            filename_pattern=options.get("filenamePattern", "app-%DATE%"),
            frequency=options.get("frequency", "daily"),
            date_format=options.get("dateFormat", "%Y-%m-%d"),
            extension=options.get("extension", ".log"),
            max_size_bytes=parse_size(options.get("maxSizeBytes")),
            max_logs=options.get("maxAge", "10d"),
            audit_file=options.get("auditFile"),
            clock=self._clock,
        )

    def _build_http(self, options: Mapping[str, Any]) -> Destination:
        url = options.get("url")
        if not url:
            raise SinkSetupError("HTTP sink requires a url", kind="http")
        return HttpDestination(
            JsonEncoder(),
            url=url,
            method=options.get("method", "POST"),
            retries=int(options.get("retries", 0)),
            retry_interval=float(options.get("retryInterval", 1.0)),
            batch_size=int(options.get("batchSize", 10)),
            max_buffer=int(options.get("maxBuffer", 1000)),
            flush_interval=float(options.get("flushInterval", 1.0)),
            timeout=float(options.get("timeout", 5.0)),
            headers=options.get("headers"),
            client=self._http_client,
            sync_client=self._http_sync_client,
        )


def ensure_directory(directory: Path) -> None:
    """Create ``directory`` (and parents) unless it already exists."""
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except FileExistsError as exc:
        # exist_ok only covers directories; a file in the way is an error
        raise DirectoryCreateError(str(directory), "path exists and is not a directory") from exc
    except OSError as exc:
        raise DirectoryCreateError(str(directory), exc.strerror or str(exc)) from exc
