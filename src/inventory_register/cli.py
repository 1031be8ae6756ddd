#!/usr/bin/env python3
# PYTHON_ARGCOMPLETE_OK
"""
Command-line interface for Inventory Register
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import argcomplete

from . import images as image_io
from ._version import __version__
from .config import Config
from .editor import RecordEditor, ValidationError
from .export import ExportAssembler
from .models import InventoryRecord
from .search import DEFAULT_DATE_FORMAT, DEFAULT_DATETIME_FORMAT, filter_records, format_datetime
from .store import ItemStore

SHORT_ID_LENGTH = 8


def open_store(config: Config, data_dir: Path | None = None) -> ItemStore:
    """Open the item store described by config, loading saved data."""
    return ItemStore.open(
        data_dir if data_dir is not None else config.data_dir,
        key=config.storage_key,
        quota_bytes=config.storage_quota,
        notification_timeout=config.notification_timeout,
    )


def print_notification(store: ItemStore) -> None:
    """Print and clear the store's pending notification, if any."""
    notification = store.notifier.pop()
    if notification is None:
        return
    if notification.is_error:
        print(f"⚠️  {notification.message}", file=sys.stderr)
    else:
        print(f"✅ {notification.message}")


def find_record(store: ItemStore, record_id: str) -> InventoryRecord | None:
    """Look up a record by identifier or by a unique identifier prefix."""
    record = store.get(record_id)
    if record is not None:
        return record
    candidates = [r for r in store if r.id.startswith(record_id)]
    if len(candidates) == 1:
        return candidates[0]
    if len(candidates) > 1:
        print(f"❌ '{record_id}' matches {len(candidates)} items, use a longer ID")
    return None


def summarize_images(images: list[str], preview_count: int = 3) -> str:
    """Describe the first preview_count images and count the rest.

    Examples:
        >>> summarize_images([])
        '-'
    """
    if not images:
        return "-"
    shown = []
    for payload in images[:preview_count]:
        mime = image_io.mime_type(payload)
        shown.append(image_io.extension_for(mime) if mime else "?")
    summary = ", ".join(shown)
    rest = len(images) - preview_count
    if rest > 0:
        summary += f" +{rest} more"
    return summary


def _attach(editor: RecordEditor, images: list[Path] | None, capture: Path | None) -> None:
    """Attach selected and captured images to the editor, reporting skipped files."""
    skipped = 0
    if images:
        skipped += len(images) - asyncio.run(editor.attach_images(images))
    if capture is not None and not asyncio.run(editor.capture_image(capture)):
        skipped += 1
    if skipped:
        print(f"⚠️  {skipped} file(s) could not be read as images and were skipped")


def add_command(
    store: ItemStore,
    name: str,
    quantity: str,
    location: str,
    user: str,
    description: str = "",
    images: list[Path] | None = None,
    capture: Path | None = None,
    max_image_size: int = 0,
) -> int:
    """Register a new item."""
    editor = RecordEditor(store, max_image_size=max_image_size)
    editor.name = name or ""
    editor.description = description or ""
    editor.location = location or ""
    editor.user = user or ""
    if not editor.set_quantity(quantity or ""):
        print(f"❌ Quantity must be a whole number, got '{quantity}'")
        return 1

    _attach(editor, images, capture)

    try:
        record = editor.submit()
    except ValidationError as e:
        print(f"❌ {e} (missing: {', '.join(e.fields)})")
        return 1

    print_notification(store)
    print(f"   ID: {record.id}")
    return 0


def edit_command(
    store: ItemStore,
    record_id: str,
    name: str | None = None,
    quantity: str | None = None,
    description: str | None = None,
    location: str | None = None,
    user: str | None = None,
    images: list[Path] | None = None,
    remove_images: list[int] | None = None,
    max_image_size: int = 0,
) -> int:
    """Edit an existing item; fields not given keep their values."""
    seed = find_record(store, record_id)
    if seed is None:
        print(f"❌ Item {record_id} not found")
        return 1

    editor = RecordEditor(store, seed=seed, max_image_size=max_image_size)
    if name is not None:
        editor.name = name
    if description is not None:
        editor.description = description
    if location is not None:
        editor.location = location
    if user is not None:
        editor.user = user
    if quantity is not None and not editor.set_quantity(quantity):
        print(f"❌ Quantity must be a whole number, got '{quantity}'")
        return 1

    # Remove from the highest index down so earlier positions stay valid
    for index in sorted(set(remove_images or []), reverse=True):
        try:
            editor.remove_image(index)
        except IndexError:
            print(f"❌ Item has no image at position {index}")
            return 1

    _attach(editor, images, None)

    try:
        editor.submit()
    except ValidationError as e:
        print(f"❌ {e} (missing: {', '.join(e.fields)})")
        return 1

    print_notification(store)
    return 0


def delete_command(store: ItemStore, record_id: str, yes: bool = False) -> int:
    """Delete an item after confirmation."""
    record = find_record(store, record_id)
    if record is None:
        print(f"⚠️  Item {record_id} not found, nothing deleted")
        return 0

    if not yes:
        response = input(f"Delete '{record.name}' ({record.id[:SHORT_ID_LENGTH]})? [y/N] ")
        if response.lower() != 'y':
            print("Aborted.")
            return 1

    store.remove(record.id)
    print_notification(store)
    return 0


def list_command(
    store: ItemStore,
    query: str | None = None,
    as_json: bool = False,
    preview_count: int = 3,
    date_format: str = DEFAULT_DATE_FORMAT,
    datetime_format: str = DEFAULT_DATETIME_FORMAT,
) -> int:
    """Print the (optionally filtered) items as a table or JSON."""
    records = filter_records(store.records, query, date_format)

    if as_json:
        print(json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False))
        return 0

    if not records:
        print("No items registered" if len(store) == 0 else "No items match the search")
        return 0

    header = ["ID", "Name", "Qty", "Location", "User", "Date/Time", "Images"]
    rows = [
        [
            r.id[:SHORT_ID_LENGTH],
            r.name,
            str(r.quantity),
            r.location,
            r.user,
            format_datetime(r.date, datetime_format),
            summarize_images(r.images, preview_count),
        ]
        for r in records
    ]
    widths = [max(len(row[i]) for row in [header] + rows) for i in range(len(header))]

    print("  ".join(h.ljust(w) for h, w in zip(header, widths)))
    print("  ".join("-" * w for w in widths))
    for row in rows:
        print("  ".join(cell.ljust(w) for cell, w in zip(row, widths)))

    if query and query.strip():
        print(f"\n{len(records)} of {len(store)} item(s)")
    else:
        print(f"\n{len(records)} item(s)")
    return 0


def show_command(store: ItemStore, record_id: str, datetime_format: str = DEFAULT_DATETIME_FORMAT) -> int:
    """Print all details of one item."""
    record = find_record(store, record_id)
    if record is None:
        print(f"❌ Item {record_id} not found")
        return 1

    print(f"ID:          {record.id}")
    print(f"Name:        {record.name}")
    print(f"Quantity:    {record.quantity}")
    print(f"Description: {record.description or '-'}")
    print(f"Location:    {record.location}")
    print(f"User:        {record.user}")
    print(f"Date/Time:   {format_datetime(record.date, datetime_format)}")
    print(f"Images:      {len(record.images)}")
    for i, payload in enumerate(record.images):
        print(f"   [{i}] {image_io.mime_type(payload) or 'unrecognized'}")
    return 0


def export_command(store: ItemStore, output: Path | None = None, export_options: dict | None = None) -> int:
    """Export all items to a spreadsheet + images zip archive."""
    if len(store) == 0:
        print("❌ No items to export")
        return 1

    assembler = ExportAssembler(**(export_options or {}))
    print(f"📦 Exporting {len(store)} item(s)...")
    result = asyncio.run(assembler.export(store.records, output))
    if result is None:
        print("❌ Export failed, see log for details")
        return 1

    print(f"✅ Exported {result.rows} item(s) and {result.images} image(s) to {result.path}")
    return 0


def config_command(config: Config, show: bool = False, show_path: bool = False) -> int:
    """Show configuration information."""
    if show_path:
        if config.path:
            print(config.path)
        else:
            print("No configuration file found")
        return 0

    if config.path:
        print(f"# Configuration loaded from: {config.path}")
    else:
        print("# No configuration file found, showing defaults")
    print()
    print(json.dumps(config.data, indent=2))
    return 0


def api_command(config: Config, data_dir: Path | None = None, host: str = "127.0.0.1", port: int = 8765) -> int:
    """Start the local JSON API server."""
    try:
        import uvicorn

        from . import api_server
    except ImportError as e:
        print(f"❌ Missing required package: {e}")
        print("\nInstall API server dependencies:")
        print("  pip install inventory-register[web]")
        return 1

    api_server.configure(config, data_dir)

    print("🚀 Starting Inventory Register API...")
    print(f"📂 Data directory: {data_dir or config.data_dir}")
    print(f"🌐 Server will run at: http://{host}:{port}")
    print(f"📋 Items: http://{host}:{port}/api/items")
    print(f"📦 Export: http://{host}:{port}/api/export")
    print("Press Ctrl+C to stop\n")

    try:
        uvicorn.run(api_server.app, host=host, port=port, log_level="info")
    except KeyboardInterrupt:
        print("\n\n👋 API server stopped")
        return 0
    except Exception as e:
        import traceback
        print(f"\n❌ Server failed to start: {e}")
        print("\nFull traceback:")
        traceback.print_exc()
        return 1
    return 0


def build_parser(config: Config) -> argparse.ArgumentParser:
    parser_cli = argparse.ArgumentParser(
        prog="inventory-register",
        description="Inventory Register - Keep track of items, where they are and who has them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Register an item with two photos
  inventory-register add --name Widget --quantity 10 --location "Shelf A" --user Alice --image a.jpg b.jpg

  # Search items
  inventory-register list --search shelf

  # Change the quantity of an item
  inventory-register edit 3f2a9c1e --quantity 15

  # Export everything to a zip with a spreadsheet and the photos
  inventory-register export --output ~/inventory.zip
        """
    )
    parser_cli.add_argument(
        '--version', '-V',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser_cli.add_argument('--data-dir', type=Path, default=None,
                            help=f'Directory for saved data (default: {config.data_dir})')

    subparsers = parser_cli.add_subparsers(dest='command', help='Command to run')

    config_parser = subparsers.add_parser('config', help='Show configuration')
    config_parser.add_argument('--show', action='store_true', help='Show merged configuration')
    config_parser.add_argument('--path', action='store_true', help='Show config file path')

    add_parser = subparsers.add_parser('add', help='Register a new item')
    add_parser.add_argument('--name', '-n', type=str, default='', help='Item name (required)')
    add_parser.add_argument('--quantity', '-q', type=str, default='', help='Quantity, digits only (required)')
    add_parser.add_argument('--location', '-l', type=str, default='', help='Where the item is kept (required)')
    add_parser.add_argument('--user', '-u', type=str, default='', help='Responsible user (required)')
    add_parser.add_argument('--description', '-d', type=str, default='', help='Free-text description')
    add_parser.add_argument('--image', '-i', type=Path, nargs='+', dest='images', help='Image file(s) to attach')
    add_parser.add_argument('--capture', type=Path, help='Single captured photo to attach')

    edit_parser = subparsers.add_parser('edit', help='Edit an item')
    edit_parser.add_argument('id', type=str, help='Item ID (or unique prefix)')
    edit_parser.add_argument('--name', '-n', type=str, help='New name')
    edit_parser.add_argument('--quantity', '-q', type=str, help='New quantity, digits only')
    edit_parser.add_argument('--location', '-l', type=str, help='New location')
    edit_parser.add_argument('--user', '-u', type=str, help='New responsible user')
    edit_parser.add_argument('--description', '-d', type=str, help='New description')
    edit_parser.add_argument('--image', '-i', type=Path, nargs='+', dest='images', help='Image file(s) to add')
    edit_parser.add_argument('--remove-image', type=int, nargs='+', dest='remove_images', metavar='INDEX',
                             help='Positions of images to remove (see "show")')

    delete_parser = subparsers.add_parser('delete', help='Delete an item')
    delete_parser.add_argument('id', type=str, help='Item ID (or unique prefix)')
    delete_parser.add_argument('--yes', '-y', action='store_true', help='Delete without asking')

    list_parser = subparsers.add_parser('list', help='List and search items')
    list_parser.add_argument('--search', '-s', type=str, help='Only items containing this text')
    list_parser.add_argument('--json', '-j', action='store_true', help='Output as JSON')

    show_parser = subparsers.add_parser('show', help='Show one item')
    show_parser.add_argument('id', type=str, help='Item ID (or unique prefix)')

    export_parser = subparsers.add_parser('export', help='Export to spreadsheet + images zip')
    export_parser.add_argument('--output', '-o', type=Path,
                               help=f'Output file or directory (default: ./{config.export_options["archive_name"]})')

    api_parser = subparsers.add_parser('api', help='Start the local JSON API server')
    api_parser.add_argument('--port', '-p', type=int, default=None, help=f'Port number (default: {config.api_port})')
    api_parser.add_argument('--host', type=str, default=None, help=f'Host to bind to (default: {config.api_host})')

    return parser_cli


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    config = Config()
    parser_cli = build_parser(config)

    # Enable shell tab completion
    argcomplete.autocomplete(parser_cli)

    args = parser_cli.parse_args(argv)

    if args.command == 'config':
        return config_command(config, show=args.show, show_path=args.path)
    elif args.command == 'api':
        port = args.port if args.port is not None else config.api_port
        host = args.host if args.host is not None else config.api_host
        return api_command(config, args.data_dir, host, port)
    elif args.command is None:
        parser_cli.print_help()
        return 1

    store = open_store(config, args.data_dir)
    # Surface load warnings before anything else
    print_notification(store)

    if args.command == 'add':
        return add_command(
            store,
            name=args.name,
            quantity=args.quantity,
            location=args.location,
            user=args.user,
            description=args.description,
            images=args.images,
            capture=args.capture,
            max_image_size=config.image_max_size,
        )
    elif args.command == 'edit':
        return edit_command(
            store,
            args.id,
            name=args.name,
            quantity=args.quantity,
            description=args.description,
            location=args.location,
            user=args.user,
            images=args.images,
            remove_images=args.remove_images,
            max_image_size=config.image_max_size,
        )
    elif args.command == 'delete':
        return delete_command(store, args.id, yes=args.yes)
    elif args.command == 'list':
        return list_command(
            store,
            query=args.search,
            as_json=args.json,
            preview_count=config.image_preview_count,
            date_format=config.date_format,
            datetime_format=config.datetime_format,
        )
    elif args.command == 'show':
        return show_command(store, args.id, datetime_format=config.datetime_format)
    elif args.command == 'export':
        return export_command(store, args.output, config.export_options)
    else:
        parser_cli.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
