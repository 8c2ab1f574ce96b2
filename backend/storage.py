"""Key-value persistence used by the ledger.

The ledger only needs get/set over string keys. Two backends are provided:
a SQLAlchemy table for the running service and a plain dict for isolated
storage partitions (one per browser profile, device, or test).
"""

from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class SqlKeyValueStore:
    """Stores each key as a row in the storage_entries table."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str) -> Optional[str]:
        # Another session may have written since our last read
        entry = self.db.get(models.StorageEntry, key, populate_existing=True)
        return entry.value if entry else None

    def set(self, key: str, value: str) -> None:
        entry = self.db.get(models.StorageEntry, key)
        if entry is None:
            self.db.add(models.StorageEntry(key=key, value=value))
        else:
            entry.value = value
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class MemoryKeyValueStore:
    """Process-local storage partition."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value
