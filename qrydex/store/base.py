"""
Qrydex - Store contract

Every component receives a Store handle; nothing reaches for a global
connection. Filters are lists of conditions joined with AND; an AnyOf groups
conditions joined with OR.

    store.select(BUSINESSES,
                 [AnyOf([Cond("last_verified_at", Op.IS_NULL),
                         Cond("last_verified_at", Op.LT, cutoff)])],
                 limit=50,
                 order_by=[("last_verified_at", "asc")])

Ordering puts nulls first when ascending and last when descending.
update() is the only compare-and-set primitive: it returns how many records
matched the filter at write time, so a caller that filters on the value it
last saw learns whether it won.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union


class Op(str, Enum):
    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IN = "in"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"


@dataclass(frozen=True)
class Cond:
    field: str
    op: Op = Op.EQ
    value: Any = None


@dataclass(frozen=True)
class AnyOf:
    conds: Sequence[Cond]


Filter = List[Union[Cond, AnyOf]]
OrderBy = List[Tuple[str, str]]


def eq(**fields) -> Filter:
    """Shorthand for an all-equal filter: eq(status="pending", id=job_id)."""
    return [Cond(k, Op.EQ, v) for k, v in fields.items()]


def _compare(op: Op, left, right) -> bool:
    if op == Op.IS_NULL:
        return left is None
    if op == Op.NOT_NULL:
        return left is not None
    if op == Op.EQ:
        return left == right
    if op == Op.NE:
        return left != right
    if op == Op.IN:
        return left in right
    if left is None or right is None:
        return False
    if op == Op.LT:
        return left < right
    if op == Op.LTE:
        return left <= right
    if op == Op.GT:
        return left > right
    if op == Op.GTE:
        return left >= right
    raise ValueError(f"unknown operator: {op}")


def matches(record: Dict[str, Any], filters: Optional[Filter]) -> bool:
    for item in filters or []:
        if isinstance(item, AnyOf):
            if not any(_compare(c.op, record.get(c.field), c.value) for c in item.conds):
                return False
        elif not _compare(item.op, record.get(item.field), item.value):
            return False
    return True


class Store(ABC):
    @abstractmethod
    def upsert(self, table: str, record: Dict[str, Any], conflict_key: Sequence[str]) -> Dict[str, Any]:
        """Insert or merge `record` on the fields named by conflict_key."""

    @abstractmethod
    def select(
        self,
        table: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: Optional[OrderBy] = None,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def count(self, table: str, filters: Optional[Filter] = None) -> int:
        ...

    @abstractmethod
    def update(self, table: str, patch: Dict[str, Any], filters: Filter) -> int:
        """Apply `patch` to every matching record. Returns the match count."""

    def get(self, table: str, **key) -> Optional[Dict[str, Any]]:
        rows = self.select(table, eq(**key), limit=1)
        return rows[0] if rows else None

    def close(self) -> None:
        pass
