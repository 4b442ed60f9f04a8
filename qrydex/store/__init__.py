from qrydex.store.base import AnyOf, Cond, Filter, Op, OrderBy, Store, eq
from qrydex.store.memory import MemoryStore


def open_store(settings) -> Store:
    """Build the configured backend. Neo4j is imported lazily."""
    if settings.STORE_BACKEND == "neo4j":
        from qrydex.store.neo4j import Neo4jStore, init_schema
        init_schema()
        return Neo4jStore(timeout=settings.STORE_TIMEOUT)
    return MemoryStore()


__all__ = ["AnyOf", "Cond", "Filter", "MemoryStore", "Op", "OrderBy", "Store", "eq", "open_store"]
