"""
Inventory Register - A single-user register of items, their location and owner

Features:
- Add, edit and delete items with quantity, description, location, responsible user and photos
- Saved locally and restored on every start
- Free-text search across all fields
- Export to a spreadsheet bundled with all photos in a zip archive
- CLI and an optional local JSON API
"""

from ._version import __version__
from .editor import RecordEditor, ValidationError
from .export import ExportAssembler, ExportResult, ExportState
from .models import InventoryRecord
from .search import filter_records
from .storage import LocalStorage
from .store import ItemStore

__all__ = [
    "__version__",
    "InventoryRecord",
    "ItemStore",
    "LocalStorage",
    "RecordEditor",
    "ValidationError",
    "filter_records",
    "ExportAssembler",
    "ExportResult",
    "ExportState",
]
