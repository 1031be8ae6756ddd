#!/usr/bin/env python3
"""
FastAPI server for the inventory register.

Local JSON API behind the single-page view: list and search items, add,
edit and delete them, and download the spreadsheet + images export.
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional, Union

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import images as image_io
from .config import Config
from .editor import RecordEditor, ValidationError
from .export import ExportAssembler, ExportError
from .models import InventoryRecord
from .search import DEFAULT_DATE_FORMAT, filter_records
from .store import ItemStore

logger = logging.getLogger(__name__)

# Server state, set by configure() or on startup
store: Optional[ItemStore] = None
assembler: Optional[ExportAssembler] = None
settings: Optional[Config] = None


def configure(config: Config, data_dir: Optional[Path] = None) -> None:
    """Open the store and export assembler described by config."""
    global store, assembler, settings

    settings = config
    store = ItemStore.open(
        data_dir if data_dir is not None else config.data_dir,
        key=config.storage_key,
        quota_bytes=config.storage_quota,
        notification_timeout=config.notification_timeout,
    )
    assembler = ExportAssembler(**config.export_options)
    logger.info("Serving %d records from %s", len(store), store.storage.directory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the store on startup unless configure() already did."""
    if store is None:
        configure(Config())
    yield


app = FastAPI(title="Inventory Register", lifespan=lifespan)

# Enable CORS for a locally opened front end
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ItemInput(BaseModel):
    """Form contents for creating or editing an item."""
    name: str = ""
    quantity: Union[int, str] = ""
    description: str = ""
    location: str = ""
    user: str = ""
    images: list[str] = Field(default_factory=list)


def _get_store() -> ItemStore:
    if store is None:
        raise HTTPException(status_code=503, detail="Inventory store not loaded")
    return store


def _get_assembler() -> ExportAssembler:
    global assembler
    if assembler is None:
        assembler = ExportAssembler(**(settings.export_options if settings else {}))
    return assembler


def _date_format() -> str:
    return settings.date_format if settings else DEFAULT_DATE_FORMAT


def _with_notification(payload: dict[str, Any]) -> dict[str, Any]:
    notification = _get_store().notifier.pop()
    payload["notification"] = notification.to_dict() if notification else None
    return payload


def _submit(editor: RecordEditor, item: ItemInput) -> InventoryRecord:
    """Fill the editor from the request body and submit it."""
    bad_images = [i for i, payload in enumerate(item.images) if not image_io.is_embedded_image(payload)]
    if bad_images:
        raise HTTPException(
            status_code=422,
            detail={"message": "Images must be base64 image data URLs", "images": bad_images},
        )

    editor.name = item.name
    editor.quantity = str(item.quantity)
    editor.description = item.description
    editor.location = item.location
    editor.user = item.user
    editor.images = list(item.images)
    try:
        return editor.submit()
    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "fields": e.fields}) from e


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "store_loaded": store is not None,
        "item_count": len(store) if store is not None else 0,
        "exporting": assembler.busy if assembler is not None else False,
    }


@app.get("/api/items")
async def list_items(q: str = "") -> dict:
    """List items, filtered by the free-text query q."""
    items_store = _get_store()
    records = filter_records(items_store.records, q, _date_format())
    return _with_notification({
        "total": len(items_store),
        "count": len(records),
        "items": [r.to_dict() for r in records],
    })


@app.get("/api/items/{item_id}")
async def get_item(item_id: str) -> dict:
    record = _get_store().get(item_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return {"item": record.to_dict()}


@app.post("/api/items", status_code=201)
async def create_item(item: ItemInput) -> dict:
    """Register a new item."""
    editor = RecordEditor(_get_store())
    record = _submit(editor, item)
    return _with_notification({"item": record.to_dict()})


@app.put("/api/items/{item_id}")
async def update_item(item_id: str, item: ItemInput) -> dict:
    """Replace an item's fields, keeping its ID and creation date."""
    items_store = _get_store()
    seed = items_store.get(item_id)
    if seed is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    editor = RecordEditor(items_store, seed=seed)
    record = _submit(editor, item)
    return _with_notification({"item": record.to_dict()})


@app.delete("/api/items/{item_id}")
async def delete_item(item_id: str) -> dict:
    """Delete an item. Unknown IDs are not an error."""
    removed = _get_store().remove(item_id)
    return _with_notification({"deleted": removed, "id": item_id})


@app.get("/api/export")
async def export_items() -> Response:
    """Download all items as a spreadsheet + images zip archive."""
    items_store = _get_store()
    export_assembler = _get_assembler()

    if len(items_store) == 0:
        raise HTTPException(status_code=409, detail="No items to export")
    if export_assembler.busy:
        raise HTTPException(status_code=409, detail="An export is already in progress")

    try:
        archive, result = await export_assembler.assemble(items_store.records)
    except ExportError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except Exception as e:
        logger.exception("Export failed")
        raise HTTPException(status_code=500, detail="Export failed") from e

    logger.info("Exported %d records and %d images for download", result.rows, result.images)
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{export_assembler.archive_name}"'},
    )


if __name__ == "__main__":
    import uvicorn

    config = Config()
    configure(config)
    uvicorn.run(app, host=config.api_host, port=config.api_port)
