"""SQLite-backed secret store, phân vùng theo website."""

from .db_manager import (
    MalformedImport,
    NotFound,
    Secret,
    SecretStore,
    StoreError,
    ValidationError,
)

__all__ = [
    "MalformedImport",
    "NotFound",
    "Secret",
    "SecretStore",
    "StoreError",
    "ValidationError",
]
