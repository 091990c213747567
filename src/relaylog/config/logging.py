"""
Logging Configuration.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from relaylog.errors import ConfigError
from relaylog.logging.levels import LevelTable


class LogFormat(str, Enum):
    PRETTY = "pretty"
    JSON = "json"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class HttpConfig(_CamelModel):
    """Remote collector endpoint."""

    url: Optional[str] = None
    method: str = "POST"
    retries: int = Field(default=0, ge=0)
    retry_interval: float = Field(default=1.0, ge=0)
    batch_size: int = Field(default=10, ge=1)
    max_buffer: int = Field(default=1000, ge=1, description="Records held before the oldest are dropped")
    flush_interval: float = Field(default=1.0, gt=0, description="Seconds between background sends without an event loop")
    timeout: float = Field(default=5.0, gt=0)
    headers: Dict[str, str] = Field(default_factory=dict)

    def to_options(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class LogStreamConfig(_CamelModel):
    """One rotating file stream under the log folder."""

    stream: str = Field(description="Role tag, e.g. 'main'")
    log_level: Optional[str] = None
    filename: Optional[str] = Field(default=None, description="Pattern with %DATE%, defaults to '<stream>-%DATE%'")
    frequency: Optional[str] = "daily"
    max_logs: Union[int, str, None] = Field(default="10d", description="'<N>d' keeps N days, a bare count keeps N files")
    date_format: str = "%Y-%m-%d"
    size: Union[int, str, None] = Field(default=None, description="Byte count or '10M' style size")
    extension: str = ".log"
    format: LogFormat = LogFormat.PRETTY
    dedupe: bool = False


class LoggingSettings(BaseSettings):
    """Routing configuration for the logging pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="RELAYLOG_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    log_level: str = Field(default="info", description="Global minimum level for main/console routing")
    log_folder: str = Field(default="./logs", description="Base directory for rotating file streams")
    log_streams: List[LogStreamConfig] = Field(default_factory=list)
    stdout: bool = Field(default=True, description="Console sink on/off")
    post_level: str = Field(default="error", description="Minimum level shipped to the http sink")
    http_config: HttpConfig = Field(default_factory=HttpConfig)
    custom_levels: Dict[str, int] = Field(default_factory=dict)
    show_errors_in_main_stream: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_levels(self) -> "LoggingSettings":
        try:
            levels = LevelTable(self.custom_levels)
            levels.validate(self.log_level)
            levels.validate(self.post_level)
            for level in self.show_errors_in_main_stream:
                levels.validate(level)
            for stream in self.log_streams:
                if stream.log_level is not None:
                    levels.validate(stream.log_level)
        except ConfigError as exc:
            raise ValueError(str(exc)) from exc
        return self

    @property
    def levels(self) -> LevelTable:
        return LevelTable(self.custom_levels)


class PrettyPrintSettings(BaseSettings):
    """Human-readable rendering for console and file streams."""

    model_config = SettingsConfigDict(
        env_prefix="RELAYLOG_PRETTY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    translate_time: str = Field(default="%Y-%m-%d %H:%M:%S", description="strftime format for timestamps")
    colorize: bool = False
    single_line: bool = False
    level_first: bool = False
    ignore: str = Field(default="", description="Comma-separated keys hidden from output")

    def to_encoder_options(self) -> dict[str, Any]:
        return {
            "timestamp_format": self.translate_time,
            "colorize": self.colorize,
            "single_line": self.single_line,
            "level_first": self.level_first,
            "ignore": self.ignore,
        }
