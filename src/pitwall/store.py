"""Record store used for lap archives, sync status and transponder mappings.

Records are plain dicts grouped by table name. Upserts replace the fields
of an existing record matched on the conflict keys and insert otherwise.
Bulk writes are sent in chunks of :data:`CHUNK_SIZE` and full-table reads
page through :data:`PAGE_SIZE` rows at a time, so a backend with a row cap
per request still returns every row.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Sequence

from pitwall.config import get_settings
from pitwall.models.unified import TransponderMapping

CHUNK_SIZE = 500
PAGE_SIZE = 1000

Record = dict[str, Any]


def _matches(record: Record, filters: dict[str, Any]) -> bool:
    return all(record.get(k) == v for k, v in filters.items())


class RecordStore(ABC):
    """Upsert-by-natural-key record storage."""

    @abstractmethod
    def _upsert_chunk(self, table: str, records: Sequence[Record], conflict_keys: Sequence[str]) -> int:
        """Write up to CHUNK_SIZE records; return how many were written."""

    @abstractmethod
    def _select_page(self, table: str, filters: dict[str, Any], offset: int, limit: int) -> list[Record]:
        """Return at most *limit* matching records starting at *offset*."""

    def upsert(self, table: str, record: Record, conflict_keys: Sequence[str]) -> Record:
        self._upsert_chunk(table, [record], conflict_keys)
        stored = self.get(table, **{k: record[k] for k in conflict_keys})
        return stored if stored is not None else dict(record)

    def upsert_many(self, table: str, records: Iterable[Record], conflict_keys: Sequence[str]) -> int:
        rows = list(records)
        written = 0
        for start in range(0, len(rows), CHUNK_SIZE):
            written += self._upsert_chunk(table, rows[start:start + CHUNK_SIZE], conflict_keys)
        return written

    def get(self, table: str, **keys: Any) -> Record | None:
        page = self._select_page(table, keys, 0, 1)
        return page[0] if page else None

    def get_all(self, table: str, **filters: Any) -> list[Record]:
        rows: list[Record] = []
        offset = 0
        while True:
            page = self._select_page(table, filters, offset, PAGE_SIZE)
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            offset += PAGE_SIZE

    def count(self, table: str, **filters: Any) -> int:
        return len(self.get_all(table, **filters))


class MemoryStore(RecordStore):
    """In-process store; contents are lost when the process exits."""

    def __init__(self) -> None:
        self._tables: dict[str, list[Record]] = {}
        self._lock = threading.Lock()

    def _upsert_chunk(self, table: str, records: Sequence[Record], conflict_keys: Sequence[str]) -> int:
        with self._lock:
            rows = self._tables.setdefault(table, [])
            for record in records:
                key = {k: record.get(k) for k in conflict_keys}
                for existing in rows:
                    if _matches(existing, key):
                        existing.update(record)
                        break
                else:
                    rows.append(dict(record))
            self._on_write()
        return len(records)

    def _select_page(self, table: str, filters: dict[str, Any], offset: int, limit: int) -> list[Record]:
        with self._lock:
            matching = [r for r in self._tables.get(table, []) if _matches(r, filters)]
        return [dict(r) for r in matching[offset:offset + limit]]

    def _on_write(self) -> None:
        pass


class JsonFileStore(MemoryStore):
    """Memory store persisted to a single JSON file after every write."""

    def __init__(self, path: str | Path | None = None) -> None:
        super().__init__()
        self.path = Path(path) if path is not None else get_settings().store_path
        if self.path.exists():
            with self.path.open(encoding="utf-8") as f:
                self._tables = json.load(f)

    def _on_write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(self._tables, f)
        os.replace(tmp, self.path)


MAPPINGS_TABLE = "transponder_mappings"


class TransponderRegistry:
    """Durable transponder -> car identity mapping.

    Updating a mapping never erases a known attribute with ``None``.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def upsert(self, mapping: TransponderMapping) -> TransponderMapping:
        existing = self._store.get(MAPPINGS_TABLE, transponder=mapping.transponder) or {}
        incoming = mapping.model_dump(exclude_none=True)
        stored = self._store.upsert(MAPPINGS_TABLE, {**existing, **incoming}, ["transponder"])
        return TransponderMapping.model_validate(stored)

    def get(self, transponder: str) -> TransponderMapping | None:
        record = self._store.get(MAPPINGS_TABLE, transponder=transponder)
        return TransponderMapping.model_validate(record) if record else None

    def by_car_number(self, car_number: str) -> TransponderMapping | None:
        record = self._store.get(MAPPINGS_TABLE, car_number=car_number)
        return TransponderMapping.model_validate(record) if record else None

    def all(self) -> list[TransponderMapping]:
        return [TransponderMapping.model_validate(r) for r in self._store.get_all(MAPPINGS_TABLE)]
