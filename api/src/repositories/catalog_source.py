"""
Drug catalog sources.

Loads catalog snapshots from the bundled seed file (or a configured path)
or from a remote drug reference service. Remote fetches are retried with
exponential backoff behind a circuit breaker; a failed refresh keeps the
previous snapshot in place.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, List, Optional

import aiohttp
import structlog
from pydantic import ValidationError

from api.src.models.dosage import DrugRecord
from api.src.repositories.drug_catalog import CatalogSnapshot, DrugCatalog
from api.src.utils.error_handler import (
    CircuitBreaker,
    CircuitOpenError,
    RetryConfig,
    retry_with_backoff,
    with_circuit_breaker,
)
from shared.metrics import DosageMetrics

logger = structlog.get_logger(__name__)

DEFAULT_SEED_PATH = Path(__file__).resolve().parent.parent / "data" / "drugs.json"


class CatalogLoadError(Exception):
    """A catalog source could not produce a snapshot."""


def parse_catalog(payload: Any) -> CatalogSnapshot:
    """
    Build a snapshot from a decoded catalog document.

    Accepts either a list of records or an object with `drugs` and an
    optional `version`. Invalid records are skipped and logged.

    Raises:
        CatalogLoadError: If the document has no usable records
    """
    version = None
    if isinstance(payload, dict):
        version = payload.get("version")
        raw_records = payload.get("drugs")
    else:
        raw_records = payload

    if not isinstance(raw_records, list):
        raise CatalogLoadError("catalog document must contain a list of drugs")

    records: List[DrugRecord] = []
    for index, raw in enumerate(raw_records):
        try:
            records.append(DrugRecord.model_validate(raw))
        except ValidationError as e:
            name = raw.get("name") if isinstance(raw, dict) else None
            logger.error(
                "catalog_record_invalid",
                index=index,
                name=name,
                errors=e.error_count(),
            )

    if not records:
        raise CatalogLoadError("catalog document contains no valid drug records")

    return CatalogSnapshot(records, version=str(version) if version is not None else None)


class CatalogSource:
    """Produces catalog snapshots from a seed file or a remote service."""

    def __init__(
        self,
        seed_path: Optional[Path] = None,
        source_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        metrics: Optional[DosageMetrics] = None,
    ):
        """
        Initialize catalog source.

        Args:
            seed_path: JSON seed file (bundled seed if None)
            source_url: Remote catalog URL; when set it takes precedence
            timeout_seconds: Total timeout of one remote request
            retry_attempts: Attempts per remote load
            metrics: Optional metrics sink
        """
        self.seed_path = Path(seed_path) if seed_path else DEFAULT_SEED_PATH
        self.source_url = source_url
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.breaker = CircuitBreaker(failure_threshold=3, timeout_seconds=300)
        self._fetch = with_circuit_breaker(self.breaker)(
            retry_with_backoff(RetryConfig(max_attempts=retry_attempts))(self._fetch_once)
        )

    @property
    def name(self) -> str:
        return "remote" if self.source_url else "seed"

    def load_seed(self) -> CatalogSnapshot:
        """
        Load the seed file.

        Raises:
            CatalogLoadError: If the file is missing or malformed
        """
        try:
            with open(self.seed_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogLoadError(f"cannot read catalog seed {self.seed_path}: {e}") from e

        snapshot = parse_catalog(payload)
        logger.info("catalog_seed_loaded", path=str(self.seed_path), drugs=len(snapshot))
        return snapshot

    async def _fetch_once(self) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.source_url, headers={"Accept": "application/json"}) as response:
                response.raise_for_status()
                return await response.json()

    async def fetch_remote(self) -> CatalogSnapshot:
        """
        Fetch the remote catalog.

        Raises:
            CatalogLoadError: If the service cannot be reached or returns garbage
        """
        try:
            payload = await self._fetch()
        except CircuitOpenError as e:
            raise CatalogLoadError(str(e)) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError) as e:
            raise CatalogLoadError(f"catalog service unreachable: {e}") from e
        except ValueError as e:
            raise CatalogLoadError(f"catalog service returned invalid JSON: {e}") from e

        snapshot = parse_catalog(payload)
        logger.info("catalog_remote_loaded", url=self.source_url, drugs=len(snapshot))
        return snapshot

    async def load(self) -> CatalogSnapshot:
        if self.source_url:
            return await self.fetch_remote()
        return await asyncio.to_thread(self.load_seed)

    async def refresh(self, catalog: DrugCatalog) -> bool:
        """
        Load a fresh snapshot into the catalog.

        Returns:
            True if the catalog was replaced, False if the load failed
        """
        try:
            snapshot = await self.load()
        except CatalogLoadError as e:
            logger.error(
                "catalog_refresh_failed",
                source=self.name,
                error=str(e),
                keeping_version=catalog.snapshot().version if catalog.is_loaded else None,
            )
            if self.metrics:
                self.metrics.catalog_refresh_failures.labels(source=self.name).inc()
            return False

        catalog.replace(snapshot)
        if self.metrics:
            self.metrics.catalog_drugs.set(len(snapshot))
        return True


async def refresh_periodically(catalog: DrugCatalog, source: CatalogSource, interval_seconds: float) -> None:
    """Refresh the catalog forever; cancel the task to stop."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await source.refresh(catalog)
        except Exception as e:
            logger.error("catalog_refresh_loop_failed", error=str(e), exc_info=True)
