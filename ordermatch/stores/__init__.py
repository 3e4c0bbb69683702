"""
Record stores used by the matching engine and the order service
"""

from .base import OrderStore, OrderFilter, StoreCommit
from .memory import InMemoryStore
from .rest import RestStore

__all__ = [
    "OrderStore",
    "OrderFilter",
    "StoreCommit",
    "InMemoryStore",
    "RestStore",
    "create_store",
]


def create_store(settings) -> OrderStore:
    """
    Build the record store selected by configuration.

    Args:
        settings: Application settings

    Raises:
        ValueError: If ``store_backend`` is unknown
    """
    backend = settings.store_backend.lower()
    if backend == "memory":
        return InMemoryStore(timeout=settings.store_timeout_seconds)
    if backend == "rest":
        return RestStore(
            base_url=settings.store_base_url,
            timeout=settings.store_timeout_seconds,
            read_retries=settings.store_read_retries,
        )
    raise ValueError(f"Unknown store backend: {settings.store_backend}")
