"""Tests for export module."""
import asyncio
import io
import zipfile
from unittest.mock import patch

import pytest
from openpyxl import load_workbook

from inventory_register.export import (
    HEADERS,
    ExportAssembler,
    ExportError,
    ExportState,
    image_filename,
)
from inventory_register.images import encode_data_url
from inventory_register.models import InventoryRecord
from inventory_register.search import format_datetime

PNG_URL = encode_data_url(b"fake-png-bytes", "image/png")
JPEG_URL = encode_data_url(b"fake-jpeg-bytes", "image/jpeg")


@pytest.fixture
def records():
    return [
        InventoryRecord(
            id="a1",
            name="Widget",
            quantity=42,
            description="Blue",
            location="Shelf A",
            user="Alice",
            date="2024-03-15T12:00:00.000Z",
            images=[PNG_URL],
        ),
        InventoryRecord(
            id="b2",
            name="Gadget",
            quantity=0,
            location="Drawer",
            user="Bob",
            date="2024-03-16T08:30:00.000Z",
        ),
    ]


def read_sheet(archive: zipfile.ZipFile, workbook="inventory.xlsx", sheet="Inventory"):
    wb = load_workbook(io.BytesIO(archive.read(workbook)))
    return list(wb[sheet].iter_rows(values_only=True))


class TestImageFilename:
    """Tests for image_filename function."""

    def test_basic(self):
        assert image_filename("42", 0, "image/jpeg") == "item_42_image_0.jpg"
        assert image_filename("42", 3, "image/png") == "item_42_image_3.png"

    def test_unsafe_characters_replaced(self):
        assert image_filename("a/b c", 1, "image/gif") == "item_a_b_c_image_1.gif"


class TestExport:
    """Tests for ExportAssembler.export."""

    def test_export_archive(self, records, tmp_path):
        """Test a two-item export with one image."""
        assembler = ExportAssembler()

        result = asyncio.run(assembler.export(records, tmp_path))

        assert result.path == tmp_path / "inventory_export.zip"
        assert result.rows == 2
        assert result.images == 1

        with zipfile.ZipFile(result.path) as archive:
            names = archive.namelist()
            assert "inventory.xlsx" in names
            assert "images/item_a1_image_0.png" in names
            assert archive.read("images/item_a1_image_0.png") == b"fake-png-bytes"
            rows = read_sheet(archive)

        assert rows[0] == HEADERS
        assert len(rows) == 3
        assert rows[1][:6] == ("a1", "Widget", 42, "Blue", "Shelf A", "Alice")
        assert rows[1][6] == format_datetime(records[0].date)
        assert rows[1][7] == "images/item_a1_image_0.png"
        assert rows[2][0] == "b2"
        assert rows[2][2] == 0
        assert not rows[2][7]

    def test_every_image_path_in_archive(self, records, tmp_path):
        """Test that each path listed in the Images column exists in the archive."""
        records[1].images = [JPEG_URL, PNG_URL]
        result = asyncio.run(ExportAssembler().export(records, tmp_path / "out.zip"))

        with zipfile.ZipFile(result.path) as archive:
            names = set(archive.namelist())
            rows = read_sheet(archive)

        paths = [p for row in rows[1:] if row[7] for p in row[7].split(", ")]
        assert paths == [
            "images/item_a1_image_0.png",
            "images/item_b2_image_0.jpg",
            "images/item_b2_image_1.png",
        ]
        assert set(paths) <= names

    def test_non_embedded_images_skipped(self, records, tmp_path):
        """Test that references which are not data URLs are left out."""
        records[0].images = ["https://example.com/photo.jpg", PNG_URL]

        result = asyncio.run(ExportAssembler().export(records, tmp_path))

        assert result.images == 1
        with zipfile.ZipFile(result.path) as archive:
            rows = read_sheet(archive)
            assert "images/item_a1_image_1.png" in archive.namelist()
        assert rows[1][7] == "images/item_a1_image_1.png"

    def test_custom_names(self, records, tmp_path):
        assembler = ExportAssembler(
            archive_name="stock.zip",
            workbook_name="stock.xlsx",
            sheet_name="Stock",
            images_folder="photos",
        )

        result = asyncio.run(assembler.export(records, tmp_path))

        assert result.path == tmp_path / "stock.zip"
        with zipfile.ZipFile(result.path) as archive:
            assert "photos/item_a1_image_0.png" in archive.namelist()
            rows = read_sheet(archive, "stock.xlsx", "Stock")
        assert rows[1][7] == "photos/item_a1_image_0.png"

    def test_default_destination_is_cwd(self, records, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = asyncio.run(ExportAssembler().export(records))
        assert result.path == tmp_path / "inventory_export.zip"
        assert result.path.exists()

    def test_state_transitions(self, records, tmp_path):
        states = []
        assembler = ExportAssembler(on_state_change=states.append)

        asyncio.run(assembler.export(records, tmp_path))

        assert states == [ExportState.EXPORTING, ExportState.IDLE]
        assert assembler.state is ExportState.IDLE
        assert not assembler.busy

    def test_failure_returns_none(self, records, tmp_path):
        """Test that a failing step is reported and leaves nothing behind."""
        assembler = ExportAssembler()

        with patch.object(ExportAssembler, "build_workbook", side_effect=RuntimeError("boom")):
            result = asyncio.run(assembler.export(records, tmp_path))

        assert result is None
        assert assembler.state is ExportState.IDLE
        assert list(tmp_path.iterdir()) == []

    def test_write_failure_leaves_no_partial_file(self, records, tmp_path):
        assembler = ExportAssembler()

        with patch("inventory_register.export.os.replace", side_effect=OSError("disk full")):
            result = asyncio.run(assembler.export(records, tmp_path))

        assert result is None
        assert list(tmp_path.iterdir()) == []
        assert assembler.state is ExportState.IDLE

    def test_control_characters_stripped(self, records, tmp_path):
        """Test that characters xlsx cannot hold do not block the export."""
        records[0].description = "line\x0bbreak\x00"

        result = asyncio.run(ExportAssembler().export(records, tmp_path))

        assert result is not None
        assert result.rows == 2
        with zipfile.ZipFile(result.path) as archive:
            rows = read_sheet(archive)
        assert rows[1][3] == "linebreak"

    def test_formula_like_text_kept_as_text(self, records, tmp_path):
        """Test that a name starting with '=' is written as a string cell."""
        records[0].name = "=1+1"

        result = asyncio.run(ExportAssembler().export(records, tmp_path))

        with zipfile.ZipFile(result.path) as archive:
            wb = load_workbook(io.BytesIO(archive.read("inventory.xlsx")))
        cell = wb["Inventory"]["B2"]
        assert cell.value == "=1+1"
        assert cell.data_type == "s"
        assert wb["Inventory"]["C2"].value == 42

    def test_colliding_image_names(self, tmp_path):
        """Test that ids which sanitize to the same name get distinct files."""
        records = [
            InventoryRecord(id=record_id, name="Widget", quantity=1, location="Shelf A",
                            user="Alice", date="2024-03-15T12:00:00.000Z", images=[PNG_URL])
            for record_id in ("a/b", "a_b")
        ]

        result = asyncio.run(ExportAssembler().export(records, tmp_path))

        assert result.images == 2
        with zipfile.ZipFile(result.path) as archive:
            names = archive.namelist()
            rows = read_sheet(archive)
        assert rows[1][7] == "images/item_a_b_image_0.png"
        assert rows[2][7] == "images/item_a_b_image_0_1.png"
        assert len(names) == len(set(names))
        assert {rows[1][7], rows[2][7]} <= set(names)

    def test_busy_rejected(self, records, tmp_path):
        """Test that a second export cannot start while one is running."""
        assembler = ExportAssembler()
        assembler._set_state(ExportState.EXPORTING)

        with pytest.raises(ExportError):
            asyncio.run(assembler.export(records, tmp_path))
        assert not (tmp_path / "inventory_export.zip").exists()


class TestAssemble:
    """Tests for in-memory assembly."""

    def test_assemble_returns_zip_bytes(self, records):
        assembler = ExportAssembler()

        archive, result = asyncio.run(assembler.assemble(records))

        assert result.path is None
        assert result.rows == 2
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            assert "images/" in zf.namelist()
            assert len(read_sheet(zf)) == 3
        assert assembler.state is ExportState.IDLE

    def test_assemble_propagates_errors(self, records):
        assembler = ExportAssembler()
        with patch.object(ExportAssembler, "build_archive", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError, match="boom"):
                asyncio.run(assembler.assemble(records))
        assert assembler.state is ExportState.IDLE

    def test_empty_collection(self):
        archive, result = asyncio.run(ExportAssembler().assemble([]))
        assert result.rows == 0
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            assert read_sheet(zf) == [HEADERS]
