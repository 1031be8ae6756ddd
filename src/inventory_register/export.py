"""
Spreadsheet + image archive export.

The whole collection is written to an ``.xlsx`` workbook with one row per
record, and every embedded image is decoded into an ``images/`` folder next
to it. Both go into a single zip archive. Each row's Images cell lists the
archive-relative paths of that record's image files.
"""
from __future__ import annotations

import asyncio
import io
import logging
import os
import tempfile
import zipfile
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from . import images as image_io
from .models import InventoryRecord
from .search import DEFAULT_DATETIME_FORMAT, format_datetime

logger = logging.getLogger(__name__)

HEADERS = ("ID", "Name", "Quantity", "Description", "Location", "User", "Date/Time", "Images")

DEFAULT_ARCHIVE_NAME = "inventory_export.zip"
DEFAULT_WORKBOOK_NAME = "inventory.xlsx"
DEFAULT_SHEET_NAME = "Inventory"
DEFAULT_IMAGES_FOLDER = "images"


class ExportState(str, Enum):
    IDLE = "idle"
    EXPORTING = "exporting"


class ExportError(Exception):
    """The export could not be started or completed."""


@dataclass
class ExportResult:
    """Outcome of a completed export."""
    path: Path | None
    rows: int
    images: int


def image_filename(record_id: str, index: int, mime: str) -> str:
    """Deterministic archive file name for the index-th image of a record.

    Examples:
        >>> image_filename("42", 0, "image/jpeg")
        'item_42_image_0.jpg'
    """
    safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in record_id)
    return f"item_{safe_id}_image_{index}.{image_io.extension_for(mime)}"


class ExportAssembler:
    """Builds the export archive for a collection of records."""

    def __init__(
        self,
        archive_name: str = DEFAULT_ARCHIVE_NAME,
        workbook_name: str = DEFAULT_WORKBOOK_NAME,
        sheet_name: str = DEFAULT_SHEET_NAME,
        images_folder: str = DEFAULT_IMAGES_FOLDER,
        datetime_format: str = DEFAULT_DATETIME_FORMAT,
        on_state_change: Callable[[ExportState], None] | None = None,
    ):
        self.archive_name = archive_name
        self.workbook_name = workbook_name
        self.sheet_name = sheet_name
        self.images_folder = images_folder.strip("/")
        self.datetime_format = datetime_format
        self.on_state_change = on_state_change
        self._state = ExportState.IDLE

    @property
    def state(self) -> ExportState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is ExportState.EXPORTING

    def _set_state(self, state: ExportState) -> None:
        self._state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _decode_record_images(self, record: InventoryRecord) -> list[tuple[str, bytes]]:
        """Decode one record's images into (archive path, bytes) entries."""
        files: list[tuple[str, bytes]] = []
        for index, payload in enumerate(record.images):
            if not image_io.is_embedded_image(payload):
                logger.warning("Skipping image %d of %s: not an embedded image", index, record.id)
                continue
            try:
                mime, data = image_io.decode_data_url(payload)
            except ValueError as e:
                logger.warning("Skipping image %d of %s: %s", index, record.id, e)
                continue
            path = f"{self.images_folder}/{image_filename(record.id, index, mime)}"
            files.append((path, data))
        return files

    async def collect_images(self, records: list[InventoryRecord]) -> tuple[list[list[str]], list[tuple[str, bytes]]]:
        """Decode every record's images.

        Returns:
            Tuple of (image paths per record, (archive path, bytes) for every image).
        """
        paths_per_record: list[list[str]] = []
        files: list[tuple[str, bytes]] = []
        used: set[str] = set()
        for record in records:
            record_files = await asyncio.to_thread(self._decode_record_images, record)
            # Sanitized ids can collide, e.g. "a/b" and "a_b"
            record_files = [(_unique_path(path, used), data) for path, data in record_files]
            paths_per_record.append([path for path, _ in record_files])
            files.extend(record_files)
        return paths_per_record, files

    def build_rows(self, records: list[InventoryRecord], image_paths: list[list[str]]) -> list[list]:
        """Spreadsheet rows (without header), one per record."""
        return [
            [
                record.id,
                record.name,
                record.quantity,
                record.description,
                record.location,
                record.user,
                format_datetime(record.date, self.datetime_format),
                ", ".join(paths),
            ]
            for record, paths in zip(records, image_paths)
        ]

    def build_workbook(self, rows: list[list]) -> bytes:
        """Write rows under the header row into an xlsx workbook."""
        wb = Workbook()
        ws = wb.active
        ws.title = self.sheet_name
        ws.append(list(HEADERS))
        for row in rows:
            ws.append([_cell_text(value) for value in row])
            # Keep text that looks like a formula as plain text
            for cell in ws[ws.max_row]:
                if isinstance(cell.value, str):
                    cell.data_type = "s"

        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    def build_archive(self, workbook: bytes, files: list[tuple[str, bytes]]) -> bytes:
        """Zip the workbook and image files together."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(self.workbook_name, workbook)
            zf.writestr(f"{self.images_folder}/", b"")
            for path, data in files:
                zf.writestr(path, data)
        return buffer.getvalue()

    async def _assemble(self, records: list[InventoryRecord]) -> tuple[bytes, ExportResult]:
        image_paths, files = await self.collect_images(records)
        rows = self.build_rows(records, image_paths)
        workbook = await asyncio.to_thread(self.build_workbook, rows)
        archive = await asyncio.to_thread(self.build_archive, workbook, files)
        return archive, ExportResult(path=None, rows=len(rows), images=len(files))

    def _begin(self) -> None:
        if self.busy:
            raise ExportError("An export is already in progress")
        self._set_state(ExportState.EXPORTING)

    async def assemble(self, records: list[InventoryRecord]) -> tuple[bytes, ExportResult]:
        """Build the archive in memory.

        Unlike ``export()`` this propagates failures; the state still
        returns to idle.

        Raises:
            ExportError: If an export is already running.
        """
        self._begin()
        try:
            return await self._assemble(list(records))
        finally:
            self._set_state(ExportState.IDLE)

    async def export(self, records: list[InventoryRecord], destination: Path | str | None = None) -> ExportResult | None:
        """Build the archive and save it.

        Args:
            records: Collection to export.
            destination: Target file, or a directory to place ``archive_name``
                in. Defaults to ``archive_name`` in the current directory.

        Returns:
            ExportResult on success, None if anything failed. On failure
            nothing is left at the destination.

        Raises:
            ExportError: If an export is already running.
        """
        self._begin()
        try:
            target = self.resolve_destination(destination)
            archive, result = await self._assemble(list(records))
            await asyncio.to_thread(_write_atomically, target, archive)
        except Exception:
            logger.exception("Export failed")
            return None
        finally:
            self._set_state(ExportState.IDLE)

        result.path = target
        logger.info("Exported %d records and %d images to %s", result.rows, result.images, target)
        return result

    def resolve_destination(self, destination: Path | str | None) -> Path:
        if destination is None:
            return Path.cwd() / self.archive_name
        destination = Path(destination).expanduser()
        if destination.is_dir():
            return destination / self.archive_name
        return destination


def _write_atomically(target: Path, data: bytes) -> None:
    """Write data to target via a temporary file in the same directory."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _cell_text(value):
    """Drop control characters that xlsx cannot hold."""
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _unique_path(path: str, used: set[str]) -> str:
    """Return path, or path with a counter before the extension if already used."""
    candidate = path
    stem, dot, ext = path.rpartition(".")
    counter = 1
    while candidate in used:
        candidate = f"{stem}_{counter}{dot}{ext}"
        counter += 1
    used.add(candidate)
    return candidate
