"""
Logger facade: a structlog processor chain ending in the StreamRouter.

A facade call hands structlog a single ``LogCall`` as its event. Message,
timestamp and error travel under private keys, so call-site fields named
``event``, ``time`` or ``message`` are ordinary fields and cannot displace them.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, TextIO

import httpx
import structlog
from structlog.typing import EventDict, WrappedLogger

from .diagnostics import get_diagnostics_logger
from .levels import LevelTable
from .records import ErrorInfo, LogRecord
from .router import StreamRouter
from .sinks import SinkDescriptor, SinkFactory

if TYPE_CHECKING:
    from relaylog.config import LoggingSettings, PrettyPrintSettings

Mixin = Callable[[], Mapping[str, Any]]

MESSAGE_KEY = "_relaylog_message"
TIME_KEY = "_relaylog_time"
ERROR_KEY = "_relaylog_error"

_diagnostics = get_diagnostics_logger("relaylog.core")


@dataclass(frozen=True)
class LogCall:
    """Positional event handed to structlog by the facade."""

    message: Any
    fields: Mapping[str, Any] = field(default_factory=dict)


# =============================================================================
# Structlog Processors
# =============================================================================


def make_level_filter(router: StreamRouter) -> structlog.typing.Processor:
    """Drop events no route would accept before any work is done on them."""

    def filter_by_route_level(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        if not router.accepts(method_name):
            raise structlog.DropEvent
        return event_dict

    return filter_by_route_level


def unpack_call(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Spread the call's fields over the context and set the message aside."""
    call = event_dict.pop("event")
    event_dict.update(call.fields)
    event_dict[MESSAGE_KEY] = call.message
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp the event with the current UTC time."""
    event_dict[TIME_KEY] = datetime.now(timezone.utc)
    return event_dict


def make_mixin_processor(mixin: Optional[Mixin]) -> structlog.typing.Processor:
    """Merge the mixin's fields into every event without overriding call-site fields.

    A failing mixin is reported on diagnostics; the event goes on without it.
    """

    def apply_mixin(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        if mixin is None:
            return event_dict
        try:
            for key, value in mixin().items():
                event_dict.setdefault(key, value)
        except Exception as exc:
            _diagnostics.warning("mixin_failed", error=str(exc), error_type=type(exc).__name__)
        return event_dict

    return apply_mixin


def extract_error(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Move ``err`` / ``exc_info`` into the record's error slot."""
    err = event_dict.pop("err", None)
    exc_info = event_dict.pop("exc_info", None)
    if err is None and exc_info:
        if exc_info is True:
            err = sys.exc_info()[1]
        elif isinstance(exc_info, BaseException):
            err = exc_info
        elif isinstance(exc_info, tuple):
            err = exc_info[1]
    event_dict[ERROR_KEY] = ErrorInfo.coerce(err)
    return event_dict


def build_record(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> tuple[tuple[Any, ...], dict]:
    """Final processor: turn the event dict into a LogRecord."""
    message = event_dict.pop(MESSAGE_KEY, None)
    time = event_dict.pop(TIME_KEY)
    error = event_dict.pop(ERROR_KEY, None)
    record = LogRecord(
        level=method_name,
        message="" if message is None else str(message),
        time=time,
        fields=event_dict,
        error=error,
    )
    return (record,), {}


class RouterLogger:
    """structlog's wrapped logger: every method name is a level on the router."""

    def __init__(self, router: StreamRouter):
        self._router = router

    def _dispatch(self, record: LogRecord) -> None:
        self._router.route(record)

    def __getattr__(self, name: str) -> Callable[[LogRecord], None]:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._dispatch


# =============================================================================
# Logger Facade
# =============================================================================


class Logger:
    """Single entry point for emitting records.

    Every level of the router's level table is available as a method::

        log.info("user signed in", user_id=42)
        log.clienterror("boom", err={"stack": remapped})

    Context bound with ``bind`` is carried into every record of the returned
    logger. The facade owns the router and must be closed on teardown.
    """

    def __init__(
        self,
        router: StreamRouter,
        *,
        mixin: Optional[Mixin] = None,
        _context: Optional[Mapping[str, Any]] = None,
        _log: Any = None,
    ):
        self._router = router
        self._mixin = mixin
        self._context = dict(_context or {})
        self._log = _log or structlog.wrap_logger(
            RouterLogger(router),
            processors=[
                make_level_filter(router),
                structlog.contextvars.merge_contextvars,
                unpack_call,
                add_timestamp,
                make_mixin_processor(mixin),
                extract_error,
                build_record,
            ],
            wrapper_class=structlog.BoundLogger,
            context_class=dict,
            cache_logger_on_first_use=False,
        )

    @property
    def router(self) -> StreamRouter:
        return self._router

    @property
    def levels(self) -> LevelTable:
        return self._router.levels

    def bind(self, /, **new_values: Any) -> "Logger":
        return Logger(
            self._router,
            mixin=self._mixin,
            _context={**self._context, **new_values},
            _log=self._log,
        )

    def log(self, level: str, message: Any = None, /, **fields: Any) -> None:
        """Emit at ``level``.

        Unknown level names raise UnknownLevelError. Anything that goes wrong
        past that point is reported on diagnostics and never reaches the caller.
        """
        self._router.levels.validate(level)
        call = LogCall(message, {**self._context, **fields})
        try:
            getattr(self._log, level)(call)
        except Exception as exc:
            _diagnostics.warning("log_call_failed", level=level, error=str(exc), error_type=type(exc).__name__)

    def is_enabled(self, level: str) -> bool:
        return level in self._router.levels and self._router.accepts(level)

    def __getattr__(self, name: str) -> Callable[..., None]:
        if name.startswith("_") or name not in self._router.levels:
            raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")
        return partial(self.log, name)

    def close(self) -> None:
        self._router.close()

    async def aclose(self) -> None:
        await self._router.aclose()


# =============================================================================
# Construction from settings
# =============================================================================


def descriptors_from_settings(settings: "LoggingSettings") -> list[SinkDescriptor]:
    """Rotating file descriptors for each configured log stream."""
    descriptors = []
    for stream in settings.log_streams:
        descriptors.append(
            SinkDescriptor(
                kind="rotatingFile",
                min_level=stream.log_level or settings.log_level,
                role=stream.stream,
                dedupe=stream.dedupe,
                options={
                    "directory": str(Path(settings.log_folder)),
                    "filenamePattern": stream.filename or f"{stream.stream}-%DATE%",
                    "frequency": stream.frequency,
                    "maxAge": stream.max_logs,
                    "maxSizeBytes": stream.size,
                    "dateFormat": stream.date_format,
                    "extension": stream.extension,
                    "format": stream.format.value,
                },
            )
        )
    return descriptors


def create_logger(
    settings: "LoggingSettings",
    pretty: Optional["PrettyPrintSettings"] = None,
    *,
    mixin: Optional[Mixin] = None,
    console_stream: Optional[TextIO] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    http_sync_client: Optional[httpx.Client] = None,
    clock: Callable[[], datetime] | None = None,
) -> Logger:
    """Build the router from resolved settings and wrap it in a Logger.

    Raises ConfigError for invalid levels; individual sink failures are
    reported on the diagnostics console and do not abort construction.
    """
    levels = LevelTable(settings.custom_levels)
    factory = SinkFactory(
        pretty_options=pretty.to_encoder_options() if pretty is not None else None,
        console_stream=console_stream,
        http_client=http_client,
        http_sync_client=http_sync_client,
        clock=clock,
    )
    router = StreamRouter.build(
        descriptors_from_settings(settings),
        levels=levels,
        log_level=settings.log_level,
        factory=factory,
        show_errors_in_main_stream=settings.show_errors_in_main_stream,
        stdout=settings.stdout,
        http_options=settings.http_config.to_options(),
        post_level=settings.post_level or "error",
    )
    return Logger(router, mixin=mixin)
