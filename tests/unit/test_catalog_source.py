"""
Unit tests for catalog sources.

Tests cover:
- Parsing catalog documents and skipping invalid records
- Loading the bundled seed and custom seed files
- Remote fetch error mapping
- Refresh keeping the previous snapshot on failure
- The periodic refresh loop surviving unexpected errors
"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import aiohttp
import pytest

from api.src.repositories.catalog_source import (
    DEFAULT_SEED_PATH,
    CatalogLoadError,
    CatalogSource,
    parse_catalog,
    refresh_periodically,
)
from api.src.repositories.drug_catalog import DrugCatalog
from api.src.utils.error_handler import CircuitOpenError

from tests.conftest import CEPHALEXIN, MELOXICAM


class TestParseCatalog:
    """Test catalog document parsing"""

    def test_list_document(self):
        snapshot = parse_catalog([CEPHALEXIN, MELOXICAM])
        assert len(snapshot) == 2

    def test_versioned_document(self):
        snapshot = parse_catalog({"version": 7, "drugs": [CEPHALEXIN]})
        assert snapshot.version == "7"

    def test_invalid_records_skipped(self):
        snapshot = parse_catalog([CEPHALEXIN, {"name": "Broken"}, "garbage"])
        assert [record.name for record in snapshot.records] == ["Cephalexin"]

    @pytest.mark.parametrize("payload", [{"drugs": "x"}, {"version": 1}, 42, [], [{"name": "Broken"}]])
    def test_unusable_document(self, payload):
        with pytest.raises(CatalogLoadError):
            parse_catalog(payload)


class TestSeed:
    """Test seed file loading"""

    def test_bundled_seed(self):
        snapshot = CatalogSource().load_seed()

        cephalexin = snapshot.get("Cephalexin")
        assert cephalexin.default_dose_per_kg == 22
        assert cephalexin.dose_range.min == 15
        assert cephalexin.dose_range.max == 30
        assert [o.value for o in cephalexin.concentration_options if o.default] == [250]
        assert snapshot.version is not None
        assert DEFAULT_SEED_PATH.name == "drugs.json"

    def test_custom_seed(self, tmp_path):
        seed = tmp_path / "catalog.json"
        seed.write_text(json.dumps({"version": "local", "drugs": [MELOXICAM]}), encoding="utf-8")

        snapshot = CatalogSource(seed_path=seed).load_seed()

        assert snapshot.version == "local"
        assert snapshot.get("metacam").name == "Meloxicam"

    def test_missing_seed(self, tmp_path):
        with pytest.raises(CatalogLoadError, match="cannot read catalog seed"):
            CatalogSource(seed_path=tmp_path / "absent.json").load_seed()

    def test_malformed_seed(self, tmp_path):
        seed = tmp_path / "catalog.json"
        seed.write_text("{not json", encoding="utf-8")

        with pytest.raises(CatalogLoadError):
            CatalogSource(seed_path=seed).load_seed()


class TestRemote:
    """Test remote fetch error mapping"""

    @pytest.fixture
    def source(self, metrics):
        return CatalogSource(source_url="http://catalog.test/drugs", metrics=metrics)

    def test_name(self, source):
        assert source.name == "remote"
        assert CatalogSource().name == "seed"

    @pytest.mark.asyncio
    async def test_fetch_remote(self, source):
        source._fetch = AsyncMock(return_value={"version": "r1", "drugs": [CEPHALEXIN]})

        snapshot = await source.load()

        assert snapshot.version == "r1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        aiohttp.ClientConnectionError("refused"),
        CircuitOpenError("circuit open"),
        ValueError("bad json"),
    ])
    async def test_fetch_errors_become_load_errors(self, source, error):
        source._fetch = AsyncMock(side_effect=error)

        with pytest.raises(CatalogLoadError):
            await source.fetch_remote()


class TestRefresh:
    """Test catalog refresh"""

    @pytest.mark.asyncio
    async def test_refresh_loads_catalog(self, metrics):
        catalog = DrugCatalog()
        source = CatalogSource(metrics=metrics)

        assert await source.refresh(catalog)
        assert catalog.is_loaded
        assert metrics.registry.get_sample_value("drug_catalog_records") == len(catalog.snapshot())

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_snapshot(self, catalog, metrics):
        source = CatalogSource(source_url="http://catalog.test/drugs", metrics=metrics)
        source._fetch = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))

        assert not await source.refresh(catalog)
        assert catalog.snapshot().version == "test-1"
        assert metrics.registry.get_sample_value(
            "drug_catalog_refresh_failures_total", {"source": "remote"}
        ) == 1

    @pytest.mark.asyncio
    async def test_refresh_loop_survives_errors(self, catalog):
        source = Mock(spec=CatalogSource)
        source.refresh = AsyncMock(side_effect=[RuntimeError("boom"), True, asyncio.CancelledError()])

        with pytest.raises(asyncio.CancelledError):
            await refresh_periodically(catalog, source, 0)

        assert source.refresh.await_count == 3
