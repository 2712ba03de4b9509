"""Adapters for external storage: in-memory and SQL distribution stores."""

from app.adapters.distribution_store import InMemoryDistributionStore
from app.adapters.postgres_store import PostgresDistributionStore

__all__ = ["InMemoryDistributionStore", "PostgresDistributionStore"]
