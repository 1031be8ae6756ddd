"""
Item store: the ordered collection of inventory records.

The collection is held in memory and mirrored to durable storage after every
mutation. It is restored wholesale by ``load()``. Storage problems never
propagate: the in-memory collection stays authoritative and the user gets an
error notification instead.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

from .models import InventoryRecord
from .notifications import DEFAULT_TIMEOUT, Notifier
from .storage import DEFAULT_QUOTA_BYTES, LocalStorage, StorageError

logger = logging.getLogger(__name__)

# Key holding the serialized collection
STORAGE_KEY = "inventoryItems"

LOAD_ERROR_MESSAGE = "Could not load saved data. It may be corrupt."
SAVE_ERROR_MESSAGE = "Could not save data. Storage may be full."


class ItemStore:
    """Ordered, persisted collection of inventory records."""

    def __init__(self, storage: LocalStorage, key: str = STORAGE_KEY, notifier: Notifier | None = None):
        self.storage = storage
        self.key = key
        self.notifier = notifier if notifier is not None else Notifier()
        self._records: list[InventoryRecord] = []

    @classmethod
    def open(
        cls,
        directory: Path | str,
        key: str = STORAGE_KEY,
        quota_bytes: int | None = DEFAULT_QUOTA_BYTES,
        notification_timeout: float = DEFAULT_TIMEOUT,
    ) -> ItemStore:
        """Create a store on a storage directory and load it."""
        store = cls(LocalStorage(directory, quota_bytes), key, Notifier(notification_timeout))
        store.load()
        return store

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[InventoryRecord]:
        return iter(list(self._records))

    def __contains__(self, record_id: object) -> bool:
        return self._index(record_id) is not None

    @property
    def records(self) -> list[InventoryRecord]:
        """A copy of the collection, in insertion order."""
        return list(self._records)

    def _index(self, record_id: object) -> int | None:
        for i, record in enumerate(self._records):
            if record.id == record_id:
                return i
        return None

    def get(self, record_id: str) -> InventoryRecord | None:
        index = self._index(record_id)
        return self._records[index] if index is not None else None

    def load(self) -> list[InventoryRecord]:
        """Replace the collection with the persisted one.

        Missing data gives an empty collection. Corrupt data gives an empty
        collection and an error notification.
        """
        self._records = []
        try:
            raw = self.storage.get_item(self.key)
            if raw is None:
                logger.debug("No saved data under %s", self.key)
                return self.records

            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError(f"Expected a list of records, got {type(data).__name__}")
            records = [InventoryRecord.from_dict(item) for item in data]

            seen = set()
            for record in records:
                if record.id in seen:
                    raise ValueError(f"Duplicate record identifier: {record.id}")
                seen.add(record.id)
        except (StorageError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.error("Failed to load saved data from %s: %s", self.key, e)
            self.notifier.error(LOAD_ERROR_MESSAGE)
            return self.records

        self._records = records
        logger.info("Loaded %d records from %s", len(records), self.key)
        return self.records

    def dumps(self) -> str:
        """Serialize the whole collection."""
        return json.dumps([record.to_dict() for record in self._records], ensure_ascii=False)

    def save(self) -> bool:
        """Write the whole collection to durable storage.

        Returns:
            True if saved, False if storage refused the write.
        """
        try:
            self.storage.set_item(self.key, self.dumps())
        except StorageError as e:
            logger.error("Failed to save %d records to %s: %s", len(self._records), self.key, e)
            self.notifier.error(SAVE_ERROR_MESSAGE)
            return False
        return True

    def upsert(self, record: InventoryRecord) -> bool:
        """Replace the record with the same identifier, or append it.

        The caller is responsible for carrying over the identifier and
        creation date of an edited record.

        Returns:
            True if the record was added, False if it replaced an existing one.
        """
        index = self._index(record.id)
        if index is None:
            self._records.append(record)
            created = True
        else:
            self._records[index] = record
            created = False

        if self.save():
            self.notifier.success("Item added" if created else "Item updated")
        return created

    def remove(self, record_id: str) -> bool:
        """Delete the record with the given identifier.

        Returns:
            True if a record was removed, False if there was none.
        """
        index = self._index(record_id)
        if index is None:
            logger.debug("Remove ignored, no record %s", record_id)
            return False

        del self._records[index]
        if self.save():
            self.notifier.success("Item deleted")
        return True
