"""Transactional record stores for the vote integrity subsystem."""

from .base import VoteStore
from .cipher import FieldCipher
from .postgres import PostgresStore
from .sqlite import SQLiteStore


def create_store(app_settings) -> VoteStore:
    """Build the store selected by DATABASE_BACKEND."""
    cipher = FieldCipher(app_settings.STUDENT_ID_ENCRYPTION_KEY)
    backend = app_settings.DATABASE_BACKEND.lower()

    if backend == "postgres":
        return PostgresStore(
            app_settings.postgres_dsn,
            cipher=cipher,
            min_size=app_settings.POSTGRES_POOL_MIN_SIZE,
            max_size=app_settings.POSTGRES_POOL_MAX_SIZE
        )
    if backend == "sqlite":
        return SQLiteStore(app_settings.SQLITE_PATH, cipher=cipher)

    raise ValueError(f"Unknown DATABASE_BACKEND: {app_settings.DATABASE_BACKEND}")


__all__ = [
    'VoteStore',
    'FieldCipher',
    'PostgresStore',
    'SQLiteStore',
    'create_store',
]
