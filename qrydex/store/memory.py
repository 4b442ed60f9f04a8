"""In-process store. Used by tests and single-process development runs."""
import copy
import threading
from typing import Any, Dict, List, Optional, Sequence

from qrydex.store.base import Filter, OrderBy, Store, matches


def _sort_key(field: str):
    def key(row):
        value = row.get(field)
        return (value is not None, value if value is not None else 0)
    return key


class MemoryStore(Store):
    def __init__(self):
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        return self._tables.setdefault(table, [])

    def upsert(self, table: str, record: Dict[str, Any], conflict_key: Sequence[str]) -> Dict[str, Any]:
        with self._lock:
            rows = self._rows(table)
            key = {k: record.get(k) for k in conflict_key}
            for row in rows:
                if all(row.get(k) == v for k, v in key.items()):
                    row.update(copy.deepcopy(record))
                    return copy.deepcopy(row)
            row = copy.deepcopy(record)
            rows.append(row)
            return copy.deepcopy(row)

    def select(
        self,
        table: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: Optional[OrderBy] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            found = [row for row in self._rows(table) if matches(row, filters)]
            # Stable sorts applied from the last key to the first.
            for field, direction in reversed(order_by or []):
                found.sort(key=_sort_key(field), reverse=direction.lower() == "desc")
            end = offset + limit if limit is not None else None
            return copy.deepcopy(found[offset:end])

    def count(self, table: str, filters: Optional[Filter] = None) -> int:
        with self._lock:
            return sum(1 for row in self._rows(table) if matches(row, filters))

    def update(self, table: str, patch: Dict[str, Any], filters: Filter) -> int:
        with self._lock:
            updated = 0
            for row in self._rows(table):
                if matches(row, filters):
                    row.update(copy.deepcopy(patch))
                    updated += 1
            return updated
