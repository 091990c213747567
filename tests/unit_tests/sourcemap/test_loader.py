from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import orjson
import pytest

from relaylog.sourcemap import SourceMapCache, SourceMapLoader
from relaylog.sourcemap import loader as loader_module


@pytest.fixture(autouse=True)
def quiet_loader_diagnostics(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    mock = MagicMock()
    monkeypatch.setattr(loader_module, "_diagnostics", mock)
    return mock


@pytest.fixture
def cache() -> SourceMapCache:
    return SourceMapCache()


class TestSourceMapLoader:
    @pytest.mark.asyncio
    async def test_loads_matching_map(self, cache: SourceMapCache, source_map_dir: Path) -> None:
        path = await SourceMapLoader(cache).load(source_map_dir)
        assert path == source_map_dir / "main.3f9a1c.js.map"
        assert cache.get("source").original_position_for(1, 234).source == "app.js"

    @pytest.mark.asyncio
    async def test_no_directory_configured(self, cache: SourceMapCache) -> None:
        assert await SourceMapLoader(cache).load(None) is None
        assert "source" not in cache

    @pytest.mark.asyncio
    async def test_missing_directory_warns(
        self, cache: SourceMapCache, tmp_path: Path, quiet_loader_diagnostics: MagicMock
    ) -> None:
        assert await SourceMapLoader(cache).load(tmp_path / "nope") is None
        quiet_loader_diagnostics.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_matching_file(self, cache: SourceMapCache, tmp_path: Path) -> None:
        (tmp_path / "vendor.js.map").write_text("{}")
        assert await SourceMapLoader(cache).load(tmp_path) is None
        assert "source" not in cache

    @pytest.mark.asyncio
    async def test_malformed_map_keeps_previous_document(
        self,
        cache: SourceMapCache,
        source_map_dir: Path,
        tmp_path: Path,
        quiet_loader_diagnostics: MagicMock,
    ) -> None:
        loader = SourceMapLoader(cache)
        await loader.load(source_map_dir)
        previous = cache.get("source")

        broken = tmp_path / "broken"
        broken.mkdir()
        (broken / "main.0000.js.map").write_text("{not json")
        assert await loader.load(broken) is None

        assert cache.get("source") is previous
        quiet_loader_diagnostics.error.assert_called_once()
        assert quiet_loader_diagnostics.error.call_args.kwargs["code"] == "SOURCE_MAP_LOAD_ERROR"

    @pytest.mark.asyncio
    async def test_invalid_map_structure_is_reported(
        self, cache: SourceMapCache, tmp_path: Path, quiet_loader_diagnostics: MagicMock
    ) -> None:
        (tmp_path / "main.abc.js.map").write_bytes(orjson.dumps({"version": 2}))
        assert await SourceMapLoader(cache).load(tmp_path) is None
        assert quiet_loader_diagnostics.error.call_args.kwargs["path"] == str(tmp_path / "main.abc.js.map")

    @pytest.mark.asyncio
    async def test_reload_is_idempotent(self, cache: SourceMapCache, source_map_dir: Path) -> None:
        loader = SourceMapLoader(cache)
        await loader.load(source_map_dir)
        await loader.load(source_map_dir)
        assert cache.get("source").original_position_for(1, 234).line == 42

    @pytest.mark.asyncio
    async def test_reload_replaces_document(self, cache: SourceMapCache, source_map_dir: Path, source_map) -> None:
        loader = SourceMapLoader(cache)
        await loader.load(source_map_dir)

        source_map["sources"] = ["checkout.js"]
        (source_map_dir / "main.3f9a1c.js.map").write_bytes(orjson.dumps(source_map))
        await loader.load(source_map_dir)
        assert cache.get("source").original_position_for(1, 234).source == "checkout.js"

    @pytest.mark.asyncio
    async def test_ambiguous_match_picks_first_sorted(
        self, cache: SourceMapCache, source_map_dir: Path, source_map, quiet_loader_diagnostics: MagicMock
    ) -> None:
        source_map["sources"] = ["older.js"]
        (source_map_dir / "main.000aaa.js.map").write_bytes(orjson.dumps(source_map))

        path = await SourceMapLoader(cache).load(source_map_dir)
        assert path.name == "main.000aaa.js.map"
        assert quiet_loader_diagnostics.warning.call_args.args[0] == "source_map_ambiguous"

    @pytest.mark.asyncio
    async def test_custom_name_and_pattern(self, cache: SourceMapCache, tmp_path: Path, source_map) -> None:
        (tmp_path / "admin.bundle.map").write_bytes(orjson.dumps(source_map))
        await SourceMapLoader(cache, pattern=r"admin\..*\.map", name="admin").load(tmp_path)
        assert "admin" in cache
        assert "source" not in cache
