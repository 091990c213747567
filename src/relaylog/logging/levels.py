"""
Severity levels and their numeric ranks.
"""

from __future__ import annotations

from typing import Iterator, Mapping

from relaylog.errors import ConfigError, UnknownLevelError

DEFAULT_LEVELS: dict[str, int] = {
    "trace": 10,
    "debug": 20,
    "info": 30,
    "warn": 40,
    "error": 50,
    "fatal": 60,
}

ERROR = "error"


class LevelTable:
    """Ordered mapping of level name to rank, extended by custom levels.

    Ranks must be unique so that the ordering is total. Lookups of names that
    are not in the table raise ``UnknownLevelError``.
    """

    def __init__(self, custom_levels: Mapping[str, int] | None = None):
        ranks = dict(DEFAULT_LEVELS)
        for name, rank in (custom_levels or {}).items():
            if not isinstance(rank, int) or isinstance(rank, bool):
                raise ConfigError(f"Rank for level '{name}' must be an integer", details={"level": name})
            if name in DEFAULT_LEVELS and DEFAULT_LEVELS[name] != rank:
                raise ConfigError(f"Cannot redefine built-in level '{name}'", details={"level": name})
            ranks[name] = rank

        seen: dict[int, str] = {}
        for name, rank in ranks.items():
            if rank in seen:
                raise ConfigError(
                    f"Levels '{seen[rank]}' and '{name}' share rank {rank}",
                    details={"rank": rank},
                )
            seen[rank] = name

        self._ranks = dict(sorted(ranks.items(), key=lambda item: item[1]))

    def rank(self, level: str) -> int:
        try:
            return self._ranks[level]
        except KeyError:
            raise UnknownLevelError(level) from None

    def validate(self, level: str) -> str:
        self.rank(level)
        return level

    def admits(self, min_level: str, level: str) -> bool:
        """True when a record at ``level`` passes a threshold of ``min_level``."""
        return self.rank(min_level) <= self.rank(level)

    def lowest(self, levels: Iterator[str] | list[str]) -> str | None:
        candidates = list(levels)
        if not candidates:
            return None
        return min(candidates, key=self.rank)

    def as_dict(self) -> dict[str, int]:
        return dict(self._ranks)

    def __contains__(self, level: object) -> bool:
        return level in self._ranks

    def __iter__(self) -> Iterator[str]:
        return iter(self._ranks)

    def __repr__(self) -> str:
        return f"LevelTable({self._ranks!r})"
