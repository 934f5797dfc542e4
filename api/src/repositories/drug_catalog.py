"""
In-memory drug catalog.

Holds an immutable snapshot of drug records indexed by normalized name and
alias. Refreshing the catalog swaps the snapshot reference, so readers that
captured a snapshot keep a consistent view for the rest of their request.
"""

import re
import threading
from datetime import datetime, timezone
from difflib import SequenceMatcher
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from api.src.exceptions import CatalogUnavailableError
from api.src.models.dosage import DrugRecord

logger = structlog.get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_name(value: str) -> str:
    """Case and whitespace insensitive lookup key."""
    return _WHITESPACE.sub(" ", value.strip().lower())


class CatalogSnapshot:
    """Immutable, indexed view of a set of drug records."""

    def __init__(
        self,
        records: Iterable[DrugRecord],
        version: Optional[str] = None,
        loaded_at: Optional[datetime] = None,
    ):
        self._records: Tuple[DrugRecord, ...] = tuple(sorted(records, key=lambda r: r.name.lower()))
        self.loaded_at = loaded_at or datetime.now(timezone.utc)
        self.version = version or self.loaded_at.strftime("%Y%m%d%H%M%S")

        index: Dict[str, DrugRecord] = {}
        for record in self._records:
            for key in [record.name, *record.aliases]:
                normalized = normalize_name(key)
                existing = index.get(normalized)
                if existing is not None and existing.name != record.name:
                    logger.warning(
                        "catalog_duplicate_name",
                        name=key,
                        kept=existing.name,
                        ignored=record.name,
                    )
                    continue
                index[normalized] = record
        self._index = index

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> Tuple[DrugRecord, ...]:
        return self._records

    def get(self, name: str) -> Optional[DrugRecord]:
        """Exact lookup on canonical name or alias."""
        return self._index.get(normalize_name(name))

    def find(self, name: str, threshold: float = 0.8) -> Optional[DrugRecord]:
        """
        Lookup with a fuzzy fallback.

        Args:
            name: Drug name as typed by a user
            threshold: Minimum SequenceMatcher ratio accepted

        Returns:
            Exact match, else the best fuzzy match above threshold, else None
        """
        exact = self.get(name)
        if exact is not None:
            return exact

        query = normalize_name(name)
        best: Optional[Tuple[float, DrugRecord]] = None
        for key, record in self._index.items():
            ratio = SequenceMatcher(None, query, key).ratio()
            if ratio >= threshold and (best is None or ratio > best[0]):
                best = (ratio, record)
        return best[1] if best else None

    def search(
        self,
        query: Optional[str] = None,
        category: Optional[str] = None,
        threshold: float = 0.8,
    ) -> List[DrugRecord]:
        """
        Search records by name and category.

        A record matches the query when the query is a substring of its name
        or one of its aliases, or when the fuzzy ratio reaches threshold.
        Category filtering is exact and case-insensitive.
        """
        results: List[DrugRecord] = []
        normalized_query = normalize_name(query) if query else ""
        normalized_category = normalize_name(category) if category else ""

        for record in self._records:
            if normalized_category and normalize_name(record.category) != normalized_category:
                continue
            if normalized_query and not self._matches(record, normalized_query, threshold):
                continue
            results.append(record)
        return results

    def categories(self) -> List[str]:
        return sorted({record.category for record in self._records}, key=str.lower)

    @staticmethod
    def _matches(record: DrugRecord, query: str, threshold: float) -> bool:
        for key in (record.name, *record.aliases):
            candidate = normalize_name(key)
            if query in candidate:
                return True
            if SequenceMatcher(None, query, candidate).ratio() >= threshold:
                return True
        return False


class DrugCatalog:
    """
    Read-mostly holder of the current catalog snapshot.

    Readers call snapshot() once per request; writers call replace().
    """

    def __init__(self, snapshot: Optional[CatalogSnapshot] = None, fuzzy_threshold: float = 0.8):
        self._snapshot = snapshot
        self._write_lock = threading.Lock()
        self.fuzzy_threshold = fuzzy_threshold

    @classmethod
    def from_records(cls, records: Iterable[DrugRecord], **kwargs) -> "DrugCatalog":
        return cls(CatalogSnapshot(records), **kwargs)

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def snapshot(self) -> CatalogSnapshot:
        """
        Current snapshot.

        Raises:
            CatalogUnavailableError: If no snapshot has been loaded
        """
        snapshot = self._snapshot
        if snapshot is None:
            logger.error("catalog_unavailable")
            raise CatalogUnavailableError()
        return snapshot

    def replace(self, snapshot: CatalogSnapshot) -> None:
        """Swap in a new snapshot."""
        with self._write_lock:
            previous = self._snapshot
            self._snapshot = snapshot
        logger.info(
            "catalog_replaced",
            version=snapshot.version,
            drugs=len(snapshot),
            previous_version=previous.version if previous else None,
        )

    def get(self, name: str) -> Optional[DrugRecord]:
        return self.snapshot().get(name)

    def find(self, name: str) -> Optional[DrugRecord]:
        return self.snapshot().find(name, self.fuzzy_threshold)

    def search(self, query: Optional[str] = None, category: Optional[str] = None) -> List[DrugRecord]:
        return self.snapshot().search(query, category, self.fuzzy_threshold)

    def categories(self) -> List[str]:
        return self.snapshot().categories()
