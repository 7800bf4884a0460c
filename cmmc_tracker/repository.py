"""
Generic domain repository.

A ``Repository`` gives async CRUD, filtered search, statistics and CSV
export over one collection of the ``DataStore``. Domain repositories
subclass it and declare:

- ``collection`` / ``model``: the stored collection and its record class
- ``text_fields``: fields searched by free text (tags are always searched)
- ``group_fields``: categorical fields counted in the statistics
- ``good_status``: the status that counts towards ``compliance_rate``
- ``level_field`` / ``level_order``: optional ordered enum averaged in the
  statistics as ``average_<level_field>``
- ``csv_columns``: ``(header, getter)`` pairs for CSV export

Reads (``get_all``, ``get_by_id``, ``search``, ``get_statistics``) log
store failures and return an empty result. Writes log and re-raise.
"""

from __future__ import annotations

import csv
import dataclasses
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

import pandas as pd

from cmmc_tracker.config import AppConfig
from cmmc_tracker.data_store import DataStore
from cmmc_tracker.errors import NotFoundError, StorageError
from cmmc_tracker.models import Record, new_id, parse_datetime, stamp, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Record)

# Filter value meaning "no constraint on this field"
ANY = "all"

CsvColumn = Tuple[str, Callable[[Any], Any]]


def is_unconstrained(value: Any) -> bool:
    return value is None or value == ANY


def format_date(value: Optional[datetime]) -> str:
    """Format a date the way the CSV exports show it (M/D/YYYY)."""
    if value is None:
        return ""
    return f"{value.month}/{value.day}/{value.year}"


def percentage(part: int, total: int) -> float:
    return part / total * 100 if total else 0.0


@dataclass
class SearchFilters:
    """Base search filter.

    ``text`` matches case-insensitively against the repository's text
    fields and tags. ``tags`` matches records carrying at least one of
    the given tags. Every other field is an equality constraint; ``None``
    or ``"all"`` leaves it unconstrained. All constraints must hold.
    """
    text: Optional[str] = None
    tags: Optional[List[str]] = None

    def field_constraints(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if f.name not in ("text", "tags") and not is_unconstrained(getattr(self, f.name))
        }


class Repository(Generic[T]):
    """Async CRUD, search and statistics over one stored collection."""

    collection: str = ""
    model: Type[Record] = Record
    id_prefix: str = ""
    text_fields: Sequence[str] = ("name", "description")
    group_fields: Sequence[str] = ("status",)
    status_field: str = "status"
    good_status: Optional[str] = None
    level_field: Optional[str] = None
    level_order: Sequence[str] = ()
    csv_columns: Sequence[CsvColumn] = ()

    def __init__(
        self,
        store: DataStore,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or AppConfig()
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _records(self) -> List[T]:
        return self.store.get_collection(self.collection)

    async def get_all(self) -> List[T]:
        try:
            return self._records()
        except (StorageError, ValueError) as e:
            logger.error("Failed to read %s: %s", self.collection, e)
            return []

    async def get_by_id(self, item_id: str) -> Optional[T]:
        try:
            return next((r for r in self._records() if r.id == item_id), None)
        except (StorageError, ValueError) as e:
            logger.error("Failed to read %s '%s': %s", self.collection, item_id, e)
            return None

    async def require(self, item_id: str) -> T:
        """Like ``get_by_id`` but raises ``NotFoundError`` when missing."""
        item = await self.get_by_id(item_id)
        if item is None:
            raise NotFoundError(self.collection, item_id)
        return item

    async def search(self, filters: Optional[SearchFilters] = None) -> List[T]:
        try:
            records = self._records()
        except (StorageError, ValueError) as e:
            logger.error("Failed to search %s: %s", self.collection, e)
            return []
        if filters is None:
            return records
        return [r for r in records if self.matches(r, filters)]

    def matches(self, record: T, filters: SearchFilters) -> bool:
        if filters.text:
            needle = str(filters.text).lower()
            haystack = [str(getattr(record, f, "") or "") for f in self.text_fields]
            haystack.extend(str(tag) for tag in getattr(record, "tags", []) or [])
            haystack.extend(self.extra_text(record))
            if not any(needle in str(value).lower() for value in haystack):
                return False
        if filters.tags:
            record_tags = {str(tag) for tag in getattr(record, "tags", []) or []}
            if not record_tags.intersection(str(tag) for tag in filters.tags):
                return False
        for name, expected in filters.field_constraints().items():
            if not self._field_matches(record, name, expected):
                return False
        return True

    def _field_matches(self, record: T, name: str, expected: Any) -> bool:
        return getattr(record, name, None) == expected

    def extra_text(self, record: T) -> List[str]:
        """Additional strings searched by ``SearchFilters.text``."""
        return []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def _commit(self, records: List[T]) -> None:
        await self.store.commit(self.collection, records)

    async def save(self, item: T) -> T:
        """Insert or replace ``item`` by id, maintaining timestamps."""
        try:
            records = self._records()
            if not item.id:
                item.id = new_id(self.id_prefix)
            existing = next((r for r in records if r.id == item.id), None)
            stamp(item, existing)
            self.prepare(item)
            if existing is None:
                records.append(item)
            else:
                records = [item if r.id == item.id else r for r in records]
            await self._commit(records)
        except StorageError:
            logger.exception("Failed to save %s '%s'", self.collection, item.id)
            raise
        logger.info("Saved %s '%s'", self.collection, item.id)
        return item

    def _coerce_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        known = {f.name for f in dataclasses.fields(self.model)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown {self.model.__name__} field(s): {', '.join(sorted(unknown))}")
        coerced = {}
        for key, value in changes.items():
            if key in self.model.DATE_FIELDS:
                value = parse_datetime(value)
            elif key in self.model.NESTED and value is not None:
                nested = self.model.NESTED[key]
                if isinstance(value, list):
                    value = [nested.from_dict(v) if isinstance(v, dict) else v for v in value]
                elif isinstance(value, dict):
                    value = nested.from_dict(value)
            coerced[key] = value
        return coerced

    async def update(self, item_id: str, **changes: Any) -> T:
        """Apply ``changes`` to an existing record.

        Raises:
            NotFoundError: if no record has ``item_id``.
        """
        changes.pop("id", None)
        changes.pop("created_at", None)
        changes = self._coerce_changes(changes)
        try:
            records = self._records()
            existing = next((r for r in records if r.id == item_id), None)
            if existing is None:
                raise NotFoundError(self.collection, item_id)
            updated = dataclasses.replace(existing, **changes)
            stamp(updated, existing)
            self.prepare(updated)
            await self._commit([updated if r.id == item_id else r for r in records])
        except StorageError:
            logger.exception("Failed to update %s '%s'", self.collection, item_id)
            raise
        logger.info("Updated %s '%s'", self.collection, item_id)
        return updated

    async def delete(self, item_id: str) -> None:
        """Remove a record.

        Raises:
            NotFoundError: if no record has ``item_id``.
        """
        try:
            records = self._records()
            remaining = [r for r in records if r.id != item_id]
            if len(remaining) == len(records):
                raise NotFoundError(self.collection, item_id)
            await self._commit(remaining)
        except StorageError:
            logger.exception("Failed to delete %s '%s'", self.collection, item_id)
            raise
        logger.info("Deleted %s '%s'", self.collection, item_id)

    def prepare(self, item: T) -> None:
        """Hook for derived fields, run on every save and update."""

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    @staticmethod
    def count_by(items: Iterable[Any], field_name: str) -> Dict[str, int]:
        return dict(Counter(str(getattr(i, field_name, "") or "unassigned") for i in items))

    def compliance_rate(self, items: List[T]) -> float:
        if self.good_status is None:
            return 0.0
        good = sum(1 for i in items if getattr(i, self.status_field, None) == self.good_status)
        return percentage(good, len(items))

    def average_level(self, items: List[T]) -> float:
        """Mean position (0..N) of ``level_field`` within ``level_order``."""
        if not self.level_field:
            return 0.0
        positions = [
            self.level_order.index(getattr(i, self.level_field))
            for i in items
            if getattr(i, self.level_field, None) in self.level_order
        ]
        return sum(positions) / len(positions) if positions else 0.0

    def compute_statistics(self, items: List[T]) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"total": len(items)}
        for name in self.group_fields:
            stats[f"by_{name}"] = self.count_by(items, name)
        stats["compliance_rate"] = self.compliance_rate(items)
        if self.level_field:
            stats[f"average_{self.level_field}"] = self.average_level(items)
        stats.update(self.extra_statistics(items))
        return stats

    def extra_statistics(self, items: List[T]) -> Dict[str, Any]:
        return {}

    def empty_statistics(self) -> Dict[str, Any]:
        return self.compute_statistics([])

    def _statistics_from_store(self) -> Dict[str, Any]:
        return self.compute_statistics(self._records())

    async def get_statistics(self) -> Dict[str, Any]:
        try:
            return self._statistics_from_store()
        except (StorageError, ValueError) as e:
            logger.error("Failed to compute %s statistics: %s", self.collection, e)
            return self.empty_statistics()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def to_dataframe(self, items: List[T]) -> pd.DataFrame:
        headers = [header for header, _ in self.csv_columns]
        rows = [[getter(item) for _, getter in self.csv_columns] for item in items]
        return pd.DataFrame(rows, columns=headers)

    async def export_csv(self, items: Optional[List[T]] = None) -> str:
        """Export ``items`` (default: every record) as CSV with quoted fields."""
        if items is None:
            items = await self.get_all()
        df = self.to_dataframe(items)
        return df.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
