"""
Record editor: form state for creating or editing one record.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path

from . import images as image_io
from .models import InventoryRecord, new_identifier, parse_quantity, utc_timestamp
from .store import ItemStore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "quantity", "location", "user")

REQUIRED_MESSAGE = "Please fill in all required fields"

_DIGITS = re.compile(r"^\d*$")


class ValidationError(ValueError):
    """Submission rejected because required fields are missing."""

    def __init__(self, message: str, fields: list[str]):
        super().__init__(message)
        self.fields = fields


class RecordEditor:
    """Collects input for one record and submits it to the store.

    Without a seed record the editor creates new records and clears itself
    after each submit. With a seed it edits that record, keeping its
    identifier and creation date, and is dismissed after submit.
    """

    def __init__(self, store: ItemStore, seed: InventoryRecord | None = None, max_image_size: int = 0):
        self.store = store
        self.seed = seed
        self.max_image_size = max_image_size
        self.error = ""
        self.dismissed = False
        self._fill(seed)

    def _fill(self, seed: InventoryRecord | None) -> None:
        self.name = seed.name if seed else ""
        self.quantity = str(seed.quantity) if seed else ""
        self.description = seed.description if seed else ""
        self.location = seed.location if seed else ""
        self.user = seed.user if seed else ""
        self.images: list[str] = list(seed.images) if seed else []

    @property
    def editing(self) -> bool:
        return self.seed is not None

    def set_quantity(self, value: str) -> bool:
        """Accept the quantity text only if it is all digits (or empty)."""
        if not _DIGITS.match(value):
            return False
        self.quantity = value
        return True

    async def attach_images(self, paths: list[Path | str]) -> int:
        """Read the selected files and append them to the pending images.

        Returns:
            Number of images attached.
        """
        new_images, errors = await image_io.read_images(list(paths), max_size=self.max_image_size)
        self.images = self.images + new_images
        for message in errors:
            logger.debug("Not attached: %s", message)
        return len(new_images)

    async def capture_image(self, path: Path | str) -> bool:
        """Attach a single directly-captured image."""
        return await self.attach_images([path]) == 1

    def remove_image(self, index: int) -> str:
        """Drop a pending image by position and return it."""
        if not 0 <= index < len(self.images):
            raise IndexError(f"No image at position {index}")
        images = list(self.images)
        removed = images.pop(index)
        self.images = images
        return removed

    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not str(getattr(self, name)).strip()]

    def validate(self) -> None:
        """Raise ValidationError if a required field is empty."""
        missing = self.missing_fields()
        if missing:
            self.error = REQUIRED_MESSAGE
            raise ValidationError(REQUIRED_MESSAGE, missing)
        self.error = ""

    def build_record(self) -> InventoryRecord:
        """Build the candidate record from the current field values."""
        return InventoryRecord(
            id=self.seed.id if self.seed else new_identifier(),
            name=self.name.strip(),
            quantity=parse_quantity(self.quantity),
            description=self.description,
            location=self.location.strip(),
            user=self.user.strip(),
            date=self.seed.date if self.seed else utc_timestamp(),
            images=list(self.images),
        )

    def submit(self) -> InventoryRecord:
        """Validate, store and return the record.

        Raises:
            ValidationError: If required fields are missing. Nothing is stored.
        """
        self.validate()
        record = self.build_record()
        self.store.upsert(record)

        if self.editing:
            self.dismissed = True
        else:
            self.reset()
        return record

    def reset(self) -> None:
        """Clear every field (create mode)."""
        self._fill(None)
        self.error = ""

    def cancel(self) -> bool:
        """Discard pending edits. Only meaningful while editing."""
        if not self.editing:
            return False
        self._fill(self.seed)
        self.error = ""
        self.dismissed = True
        return True
