"""Database module."""

from partnermap.db.database import close_database, get_db, init_database, transaction
from partnermap.db.registry_store import RegistryStore

__all__ = [
    "get_db",
    "init_database",
    "close_database",
    "transaction",
    "RegistryStore",
]
