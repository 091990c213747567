"""
Source Map Configuration.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceMapSettings(BaseSettings):
    """Where the client bundle's source map lives."""

    model_config = SettingsConfigDict(
        env_prefix="RELAYLOG_SOURCEMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    directory: Optional[str] = Field(default=None, description="Directory holding the built bundle")
    pattern: str = Field(default=r"main\.\w+\.js\.map", description="Regex selecting the map file")
