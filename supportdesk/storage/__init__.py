"""Backing stores for the support services."""

from supportdesk.core.config import Settings

from .base import AuditStore, ChatStore, SupportStore, TicketStore, UserDirectory
from .memory import InMemorySupportStore
from .sql import SqlSupportStore, to_asyncpg_dsn


def build_store(settings: Settings) -> SupportStore:
    """Return the store selected by ``storage_backend``."""

    backend = settings.storage_backend.strip().lower()
    if backend == "memory":
        return InMemorySupportStore()
    if backend == "database":
        return SqlSupportStore.from_dsn(settings.postgres_dsn)
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend!r}")


__all__ = [
    "AuditStore",
    "ChatStore",
    "InMemorySupportStore",
    "SqlSupportStore",
    "SupportStore",
    "TicketStore",
    "UserDirectory",
    "build_store",
    "to_asyncpg_dsn",
]
