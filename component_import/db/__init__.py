from .batch_insert import BatchInsertError, batch_insert
from .repository import (
    ChunkTimeoutError,
    PostgresComponentStore,
    StorageError,
    StorageUnavailableError,
    UniqueConflictError,
)

__all__ = [
    "BatchInsertError",
    "ChunkTimeoutError",
    "PostgresComponentStore",
    "StorageError",
    "StorageUnavailableError",
    "UniqueConflictError",
    "batch_insert",
]
