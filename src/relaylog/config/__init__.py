"""
relaylog Configuration Module.

Settings are grouped by concern, each with its own environment variable
prefix (``RELAYLOG_LOG_``, ``RELAYLOG_PRETTY_``, ``RELAYLOG_SOURCEMAP_``).

JSON configuration files use the camelCase layout::

    {
      "logging": {"logLevel": "info", "logStreams": [{"stream": "main"}]},
      "prettyPrint": {"singleLine": true},
      "sourceMap": {"directory": "./build"}
    }

Usage:
    from relaylog.config import load_config

    settings = load_config("config/default.json", "config/local.json")
    settings.logging.log_level
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relaylog.errors import ConfigError

from .logging import HttpConfig, LogFormat, LoggingSettings, LogStreamConfig, PrettyPrintSettings
from .sourcemap import SourceMapSettings

__all__ = [
    "HttpConfig",
    "LogFormat",
    "LogStreamConfig",
    "LoggingSettings",
    "PrettyPrintSettings",
    "Settings",
    "SourceMapSettings",
    "load_config",
]

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


class Settings(BaseModel):
    """Composite of all configuration domains."""

    model_config = ConfigDict(frozen=True)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    pretty_print: PrettyPrintSettings = Field(default_factory=PrettyPrintSettings)
    source_map: SourceMapSettings = Field(default_factory=SourceMapSettings)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "Settings":
        """Build from a camelCase (or snake_case) configuration mapping.

        Only the top-level keys of each section are converted here; nested
        objects such as ``httpConfig`` and ``logStreams`` accept camelCase
        aliases themselves.
        """
        sections: dict[str, Any] = {}
        try:
            for key, section_cls in (
                ("logging", LoggingSettings),
                ("pretty_print", PrettyPrintSettings),
                ("source_map", SourceMapSettings),
            ):
                raw = data.get(key, data.get(_camel(key)))
                if raw is None:
                    continue
                if not isinstance(raw, dict):
                    raise ConfigError(f"Section '{key}' must be an object", details={"section": key})
                sections[key] = section_cls(**{_to_snake(k): v for k, v in raw.items()})
            return cls(**sections)
        except ValidationError as exc:
            raise ConfigError("Invalid configuration", details={"errors": exc.errors(include_url=False)}) from exc


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


def load_config(*paths: str | Path) -> Settings:
    """Shallow-merge JSON files in order (later wins) and validate.

    Missing files are skipped. Malformed JSON raises ConfigError.
    """
    merged: dict[str, Any] = {}
    for path in paths:
        file = Path(path)
        if not file.exists():
            continue
        try:
            data = orjson.loads(file.read_bytes())
        except orjson.JSONDecodeError as exc:
            raise ConfigError(f"Malformed JSON in '{file}': {exc}", details={"path": str(file)}) from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration '{file}' must contain an object", details={"path": str(file)})
        merged.update(data)
    return Settings.from_mapping(merged)
