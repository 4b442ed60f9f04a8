"""
Qrydex Database Layer

Neo4j connection management, schema initialization and the durable Store
backend. Each table maps to a node label; nested structures (registry data,
quality analysis, news, job details) are stored as JSON strings because Neo4j
properties cannot hold maps.
"""
import json
import re
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

from neo4j import GraphDatabase, Query
import structlog

from qrydex.errors import StorageFailure
from qrydex.models import BUSINESSES, CRAWL_QUEUE
from qrydex.store.base import AnyOf, Cond, Filter, Op, OrderBy, Store

logger = structlog.get_logger()

_driver = None

LABELS = {
    BUSINESSES: "Business",
    CRAWL_QUEUE: "CrawlJob",
}

JSON_FIELDS = {
    BUSINESSES: {
        "registry_data", "quality_analysis", "trust_score_breakdown",
        "news_signals", "products", "services",
    },
    CRAWL_QUEUE: {"details"},
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_OPERATORS = {
    Op.EQ: "=",
    Op.NE: "<>",
    Op.LT: "<",
    Op.LTE: "<=",
    Op.GT: ">",
    Op.GTE: ">=",
    Op.IN: "IN",
}


def get_driver():
    """Get or create Neo4j driver (singleton)."""
    global _driver
    if _driver is None:
        from qrydex.config import settings
        _driver = GraphDatabase.driver(
            settings.NEO4J_URI,
            auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
            connection_acquisition_timeout=settings.STORE_TIMEOUT,
            connection_timeout=settings.STORE_TIMEOUT,
        )
        logger.info("neo4j_connected", uri=settings.NEO4J_URI)
    return _driver


@contextmanager
def get_session(driver=None):
    """Get a Neo4j session (context manager)."""
    session = (driver or get_driver()).session()
    try:
        yield session
    finally:
        session.close()


def init_schema(driver=None):
    """Initialize Neo4j constraints and indexes for businesses and the crawl queue."""
    constraints = [
        "CREATE CONSTRAINT IF NOT EXISTS FOR (b:Business) REQUIRE (b.org_number, b.country_code) IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (j:CrawlJob) REQUIRE j.id IS UNIQUE",
    ]

    indexes = [
        "CREATE INDEX IF NOT EXISTS FOR (b:Business) ON (b.last_verified_at)",
        "CREATE INDEX IF NOT EXISTS FOR (b:Business) ON (b.analysis_status)",
        "CREATE INDEX IF NOT EXISTS FOR (b:Business) ON (b.domain)",
        "CREATE INDEX IF NOT EXISTS FOR (j:CrawlJob) ON (j.status, j.priority)",
        "CREATE INDEX IF NOT EXISTS FOR (j:CrawlJob) ON (j.job_type, j.target)",
    ]

    with get_session(driver) as session:
        for query in constraints + indexes:
            try:
                session.run(query)
            except Exception as e:
                logger.warning("schema_init_warning", query=query[:60], error=str(e))

    logger.info("schema_initialized", constraints=len(constraints), indexes=len(indexes))


def close():
    """Close the Neo4j driver."""
    global _driver
    if _driver:
        _driver.close()
        _driver = None
        logger.info("neo4j_disconnected")


def _field(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"invalid field name: {name!r}")
    return f"n.{name}"


class _Compiler:
    """Turns Cond/AnyOf filters into a WHERE clause with numbered parameters."""

    def __init__(self):
        self.params: Dict[str, Any] = {}

    def _param(self, value) -> str:
        name = f"p{len(self.params)}"
        self.params[name] = value
        return f"${name}"

    def cond(self, c: Cond) -> str:
        ref = _field(c.field)
        if c.op == Op.IS_NULL:
            return f"{ref} IS NULL"
        if c.op == Op.NOT_NULL:
            return f"{ref} IS NOT NULL"
        value = list(c.value) if c.op == Op.IN else c.value
        return f"{ref} {_OPERATORS[c.op]} {self._param(value)}"

    def where(self, filters: Optional[Filter]) -> str:
        parts = []
        for item in filters or []:
            if isinstance(item, AnyOf):
                parts.append("(" + " OR ".join(self.cond(c) for c in item.conds) + ")")
            else:
                parts.append(self.cond(item))
        return " AND ".join(parts) if parts else "true"


def _order(order_by: Optional[OrderBy]) -> str:
    terms = []
    for field, direction in order_by or []:
        ref = _field(field)
        if direction.lower() == "desc":
            terms.extend([f"{ref} IS NULL", f"{ref} DESC"])
        else:
            terms.extend([f"{ref} IS NULL DESC", f"{ref} ASC"])
    return ("ORDER BY " + ", ".join(terms)) if terms else ""


class Neo4jStore(Store):
    def __init__(self, driver=None, labels: Optional[Dict[str, str]] = None,
                 json_fields: Optional[Dict[str, set]] = None, timeout: float = 15.0):
        self._driver = driver or get_driver()
        self.timeout = timeout
        self._labels = labels or LABELS
        self._json_fields = json_fields or JSON_FIELDS

    def _label(self, table: str) -> str:
        label = self._labels.get(table)
        if not label:
            raise ValueError(f"unknown table: {table}")
        return label

    def _encode(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        nested = self._json_fields.get(table, set())
        return {
            k: json.dumps(v, default=str) if k in nested and v is not None else v
            for k, v in record.items()
        }

    def _decode(self, table: str, props: Dict[str, Any]) -> Dict[str, Any]:
        nested = self._json_fields.get(table, set())
        row = dict(props)
        for k in nested:
            if isinstance(row.get(k), str):
                row[k] = json.loads(row[k])
        return row

    def _run(self, query: str, params: Dict[str, Any]) -> List[Any]:
        try:
            with get_session(self._driver) as session:
                return list(session.run(Query(query, timeout=self.timeout), params))
        except Exception as e:
            logger.error("neo4j_query_failed", query=query[:80], error=str(e))
            raise StorageFailure(str(e)) from e

    def upsert(self, table: str, record: Dict[str, Any], conflict_key: Sequence[str]) -> Dict[str, Any]:
        label = self._label(table)
        for k in conflict_key:
            _field(k)
        merge = ", ".join(f"{k}: $key.{k}" for k in conflict_key)
        query = f"MERGE (n:{label} {{{merge}}}) SET n += $props RETURN n"
        props = self._encode(table, record)
        rows = self._run(query, {"key": {k: props.get(k) for k in conflict_key}, "props": props})
        return self._decode(table, dict(rows[0]["n"]))

    def select(
        self,
        table: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: Optional[OrderBy] = None,
    ) -> List[Dict[str, Any]]:
        compiler = _Compiler()
        query = f"MATCH (n:{self._label(table)}) WHERE {compiler.where(filters)} RETURN n {_order(order_by)}"
        params = dict(compiler.params)
        if offset:
            query += " SKIP $offset"
            params["offset"] = offset
        if limit is not None:
            query += " LIMIT $limit"
            params["limit"] = limit
        return [self._decode(table, dict(r["n"])) for r in self._run(query, params)]

    def count(self, table: str, filters: Optional[Filter] = None) -> int:
        compiler = _Compiler()
        query = f"MATCH (n:{self._label(table)}) WHERE {compiler.where(filters)} RETURN count(n) AS total"
        rows = self._run(query, compiler.params)
        return rows[0]["total"] if rows else 0

    def update(self, table: str, patch: Dict[str, Any], filters: Filter) -> int:
        # SET/REMOVE takes the node's write lock without leaving a property
        # behind; the filter is re-checked once the lock is held.
        compiler = _Compiler()
        where = compiler.where(filters)
        query = (
            f"MATCH (n:{self._label(table)}) WHERE {where} "
            f"SET n._lock = true REMOVE n._lock "
            f"WITH n WHERE {where} "
            f"SET n += $patch "
            f"RETURN count(n) AS updated"
        )
        params = dict(compiler.params)
        params["patch"] = self._encode(table, patch)
        rows = self._run(query, params)
        return rows[0]["updated"] if rows else 0

    def close(self) -> None:
        if self._driver is _driver:
            close()
        else:
            self._driver.close()

