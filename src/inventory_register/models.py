"""
Inventory record model.

A record is one inventory entry: what it is, how many there are, where it is
kept, who is responsible for it, when it was registered and a list of photos
embedded inline as ``data:`` URLs.

The persisted key names (``id``, ``user``, ``date`` ...) are part of the
storage format and must not change.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# Order of keys in the serialized form
RECORD_KEYS = ("id", "name", "quantity", "description", "location", "user", "date", "images")


def new_identifier() -> str:
    """Return a fresh, opaque record identifier."""
    return str(uuid.uuid4())


def utc_timestamp(now: datetime | None = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision.

    Examples:
        >>> utc_timestamp(datetime(2024, 5, 1, 10, 20, 30, 123000, tzinfo=timezone.utc))
        '2024-05-01T10:20:30.123Z'
    """
    if now is None:
        now = datetime.now(timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp into an aware datetime.

    Naive timestamps are taken to be UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp.
    """
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_quantity(text: Any) -> int:
    """Parse quantity input, defaulting to 0 when there are no leading digits.

    Examples:
        >>> parse_quantity("10")
        10
        >>> parse_quantity(" 7 boxes")
        7
        >>> parse_quantity("abc")
        0
        >>> parse_quantity("-3")
        0
    """
    if isinstance(text, bool):
        return 0
    if isinstance(text, int):
        return max(text, 0)
    if text is None:
        return 0
    match = re.match(r"\s*(\d+)", str(text))
    return int(match.group(1)) if match else 0


@dataclass
class InventoryRecord:
    """One entry in the inventory register."""
    id: str
    name: str
    quantity: int
    location: str
    user: str
    date: str
    description: str = ""
    images: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise ValueError("Record identifier must be a non-empty string")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Quantity must be an integer, got {self.quantity!r}")
        if self.quantity < 0:
            raise ValueError(f"Quantity must not be negative, got {self.quantity}")
        if self.description is None:
            self.description = ""
        self.images = list(self.images)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted JSON shape."""
        return {
            "id": self.id,
            "name": self.name,
            "quantity": self.quantity,
            "description": self.description,
            "location": self.location,
            "user": self.user,
            "date": self.date,
            "images": list(self.images),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InventoryRecord:
        """Build a record from its persisted JSON shape.

        Raises:
            ValueError: If a required key is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Record must be an object, got {type(data).__name__}")

        missing = [key for key in ("id", "name", "quantity", "location", "user", "date") if key not in data]
        if missing:
            raise ValueError(f"Record is missing required keys: {', '.join(missing)}")

        for key in ("id", "name", "location", "user", "date"):
            if not isinstance(data[key], str):
                raise ValueError(f"Record field '{key}' must be a string")

        description = data.get("description", "")
        if description is None:
            description = ""
        if not isinstance(description, str):
            raise ValueError("Record field 'description' must be a string")

        images = data.get("images", [])
        if images is None:
            images = []
        if not isinstance(images, list) or not all(isinstance(img, str) for img in images):
            raise ValueError("Record field 'images' must be a list of strings")

        return cls(
            id=data["id"],
            name=data["name"],
            quantity=data["quantity"],
            location=data["location"],
            user=data["user"],
            date=data["date"],
            description=description,
            images=images,
        )
