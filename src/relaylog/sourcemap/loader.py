"""
Locates the client bundle's source map and loads it into a remapper cache.
"""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import Optional

import orjson

from relaylog.errors import SourceMapLoadError
from relaylog.logging.diagnostics import get_diagnostics_logger

from .document import SourceMapDocument
from .remapper import DEFAULT_MAP_NAME, SourceMapCache

DEFAULT_PATTERN = r"main\.\w+\.js\.map"

_diagnostics = get_diagnostics_logger("relaylog.sourcemap")


class SourceMapLoader:
    """Loads ``main.<hash>.js.map`` style files.

    Loader failures are never fatal: they are reported on the diagnostics
    console and the cache keeps whatever it held before.
    """

    def __init__(self, cache: SourceMapCache, *, pattern: str = DEFAULT_PATTERN, name: str = DEFAULT_MAP_NAME):
        self._cache = cache
        self._pattern = re.compile(pattern)
        self._name = name

    async def load(self, directory: Optional[str | Path]) -> Optional[Path]:
        """Load the map found in ``directory``; returns its path when loaded."""
        if not directory:
            return None
        root = Path(directory)
        if not await asyncio.to_thread(root.is_dir):
            _diagnostics.warning("source_map_directory_missing", directory=str(root))
            return None

        try:
            path = await self._find(root)
            if path is None:
                return None
            document = await self._read(path)
        except SourceMapLoadError as exc:
            _diagnostics.error(
                "source_map_load_failed",
                code=exc.code,
                path=exc.path,
                error=str(exc),
            )
            return None

        self._cache.replace(self._name, document)
        return path

    async def _find(self, root: Path) -> Optional[Path]:
        try:
            names = sorted(await asyncio.to_thread(os.listdir, root))
        except OSError as exc:
            raise SourceMapLoadError(f"Cannot list '{root}': {exc}", path=str(root)) from exc
        matches = [name for name in names if self._pattern.search(name)]
        if not matches:
            return None
        if len(matches) > 1:
            _diagnostics.warning("source_map_ambiguous", directory=str(root), candidates=matches, chosen=matches[0])
        return root / matches[0]

    async def _read(self, path: Path) -> SourceMapDocument:
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise SourceMapLoadError(f"Cannot read source map: {exc}", path=str(path)) from exc
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise SourceMapLoadError(f"Source map is not valid JSON: {exc}", path=str(path)) from exc
        try:
            return SourceMapDocument.from_dict(data)
        except SourceMapLoadError as exc:
            raise SourceMapLoadError(str(exc), path=str(path)) from exc
