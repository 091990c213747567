"""
The immutable record handed from the Logger facade to every destination.
"""

from __future__ import annotations

import copy
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class ErrorInfo:
    message: str
    stack: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip("\n")
        return cls(message=str(exc), stack=stack)

    @classmethod
    def coerce(cls, value: Any) -> Optional["ErrorInfo"]:
        """Build from an exception or an ``{"message", "stack"}`` mapping."""
        if value is None:
            return None
        if isinstance(value, ErrorInfo):
            return value
        if isinstance(value, BaseException):
            return cls.from_exception(value)
        if isinstance(value, Mapping):
            return cls(message=str(value.get("message", "")), stack=str(value.get("stack", "")))
        return cls(message=str(value), stack="")

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "stack": self.stack}


def _detached(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Deep copy each value; values that refuse to be copied are shared as is."""
    copied: dict[str, Any] = {}
    for key, value in fields.items():
        try:
            copied[key] = copy.deepcopy(value)
        except Exception:
            copied[key] = value
    return copied


@dataclass(frozen=True)
class LogRecord:
    """One emitted log event.

    ``fields`` is a read-only proxy over a deep copy of what the caller passed,
    so no destination can mutate what another destination is about to
    serialize. Values that cannot be deep-copied (locks, sockets) are shared.
    """

    level: str
    message: str
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    fields: Mapping[str, Any] = field(default_factory=dict)
    error: Optional[ErrorInfo] = None

    def __post_init__(self) -> None:
        if not isinstance(self.fields, MappingProxyType):
            object.__setattr__(self, "fields", MappingProxyType(_detached(self.fields)))

    def to_dict(self) -> dict[str, Any]:
        """Flat JSON-equivalent form used by the encoders.

        ``level``, ``time``, ``message`` and ``err`` always come from the record;
        same-named fields are shadowed.
        """
        data: dict[str, Any] = dict(self.fields)
        data["level"] = self.level
        data["time"] = self.time
        data["message"] = self.message
        if self.error is not None:
            data["err"] = self.error.to_dict()
        return data
