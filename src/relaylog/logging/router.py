"""
Stream composition: turns sink descriptors into an ordered fan-out of routes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

from relaylog.errors import SinkSetupError, SinkWriteError

from .diagnostics import get_diagnostics_logger
from .levels import ERROR, LevelTable
from .records import LogRecord
from .sinks import Destination, SinkDescriptor, SinkFactory

MAIN_ROLE = "main"
CONSOLE_KEY = "console"
HTTP_KEY = "http"

_diagnostics = get_diagnostics_logger("relaylog.router")


@dataclass(frozen=True)
class StreamRoute:
    """A minimum level bound to a destination.

    Routes with the same ``dedupe_key`` hold the very same Destination object.
    """

    destination: Destination
    min_level: str
    dedupe_key: Optional[str] = None


class StreamRouter:
    """Ordered list of routes; every record goes to each route that admits it.

    Dedupe means resource reuse: when two routes share a destination and both
    admit a record, the destination receives it once per route.
    """

    def __init__(self, routes: Iterable[StreamRoute], levels: LevelTable):
        self._routes = tuple(routes)
        self._levels = levels
        self._closed: set[int] = set()

    @property
    def routes(self) -> tuple[StreamRoute, ...]:
        return self._routes

    @property
    def levels(self) -> LevelTable:
        return self._levels

    @property
    def destinations(self) -> list[Destination]:
        """Distinct destinations in first-use order."""
        seen: dict[int, Destination] = {}
        for route in self._routes:
            seen.setdefault(id(route.destination), route.destination)
        return list(seen.values())

    def lowest_level(self) -> Optional[str]:
        return self._levels.lowest([route.min_level for route in self._routes])

    def accepts(self, level: str) -> bool:
        """True when at least one route admits ``level``."""
        return any(self._levels.admits(route.min_level, level) for route in self._routes)

    def route(self, record: LogRecord) -> None:
        rank = self._levels.rank(record.level)
        for route in self._routes:
            if self._levels.rank(route.min_level) > rank:
                continue
            try:
                route.destination.emit(record)
            except Exception as exc:
                error = SinkWriteError(str(exc), destination=route.destination.name)
                _diagnostics.warning(
                    "sink_write_failed",
                    code=error.code,
                    destination=route.destination.name,
                    dedupe_key=route.dedupe_key,
                    error=str(exc),
                )

    def close(self) -> None:
        """Close every destination once.

        A destination whose close fails stays open, so a later ``aclose()``
        can still release it.
        """
        for destination in self.destinations:
            if id(destination) in self._closed:
                continue
            try:
                destination.close()
            except Exception as exc:
                _diagnostics.warning("sink_close_failed", destination=destination.name, error=str(exc))
                continue
            self._closed.add(id(destination))

    async def aclose(self) -> None:
        for destination in self.destinations:
            if id(destination) in self._closed:
                continue
            try:
                await destination.aclose()
            except Exception as exc:
                _diagnostics.warning("sink_close_failed", destination=destination.name, error=str(exc))
                continue
            self._closed.add(id(destination))

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def build(
        cls,
        descriptors: Sequence[SinkDescriptor],
        *,
        levels: LevelTable,
        log_level: str,
        factory: SinkFactory,
        show_errors_in_main_stream: Sequence[str] = (),
        stdout: bool = True,
        http_options: Optional[Mapping[str, Any]] = None,
        post_level: str = ERROR,
    ) -> "StreamRouter":
        """Compose routes from resolved configuration.

        1. At a global level of exactly ``error`` the "main" stream is skipped.
        2. Every other descriptor is built; the main stream follows the global
           level, the others keep their own level.
        3. When the global level is listed in ``show_errors_in_main_stream``,
           an error route is added on the main stream's destination.
        4. Console at the global level, plus an error route on the same console
           unless the global level already is ``error``.
        5. The http sink at ``post_level`` when a url is configured.

        A sink that fails to build is skipped with a warning.
        """
        levels.validate(log_level)
        levels.validate(post_level)
        for level in show_errors_in_main_stream:
            levels.validate(level)

        routes: list[StreamRoute] = []
        by_key: dict[str, Destination] = {}
        main_route: Optional[StreamRoute] = None

        for index, descriptor in enumerate(descriptors):
            if log_level == ERROR and descriptor.role == MAIN_ROLE:
                continue
            min_level = log_level if descriptor.role == MAIN_ROLE else levels.validate(descriptor.min_level)
            key = descriptor.role or f"{descriptor.kind}:{index}"

            if descriptor.dedupe and key in by_key:
                destination: Optional[Destination] = by_key[key]
            else:
                destination = _try_build(factory, descriptor)
            if destination is None:
                continue

            by_key.setdefault(key, destination)
            route = StreamRoute(destination=destination, min_level=min_level, dedupe_key=key)
            routes.append(route)
            if descriptor.role == MAIN_ROLE and main_route is None:
                main_route = route

        if main_route is not None and log_level in show_errors_in_main_stream:
            routes.append(StreamRoute(main_route.destination, ERROR, main_route.dedupe_key))

        if stdout:
            console = _try_build(factory, SinkDescriptor(kind="console", min_level=log_level, role=CONSOLE_KEY))
            if console is not None:
                routes.append(StreamRoute(console, log_level, CONSOLE_KEY))
                if log_level != ERROR:
                    routes.append(StreamRoute(console, ERROR, CONSOLE_KEY))

        if http_options and http_options.get("url"):
            http = _try_build(
                factory,
                SinkDescriptor(kind="http", min_level=post_level, options=dict(http_options), role=HTTP_KEY),
            )
            if http is not None:
                routes.append(StreamRoute(http, post_level, HTTP_KEY))

        return cls(routes, levels)


def _try_build(factory: SinkFactory, descriptor: SinkDescriptor) -> Optional[Destination]:
    try:
        return factory.build(descriptor)
    except SinkSetupError as exc:
        _diagnostics.warning(
            "sink_skipped",
            code=exc.code,
            kind=descriptor.kind,
            role=descriptor.role,
            error=str(exc),
        )
        return None
