"""
Configuration file system for inventory-register.

Configuration is merged from several locations, later ones winning:
1. Built-in defaults
2. /etc/inventory-register/config.yaml or config.json
3. ~/.config/inventory-register/config.yaml or config.json
4. ./config.yaml, ./config.json, ./inventory-register.yaml or ./inventory-register.json
5. Environment variables INVENTORY_REGISTER_* (nested keys joined by "__")

YAML is checked before JSON at each location.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .export import (
    DEFAULT_ARCHIVE_NAME,
    DEFAULT_IMAGES_FOLDER,
    DEFAULT_SHEET_NAME,
    DEFAULT_WORKBOOK_NAME,
)
from .notifications import DEFAULT_TIMEOUT
from .search import DEFAULT_DATE_FORMAT, DEFAULT_DATETIME_FORMAT
from .storage import DEFAULT_QUOTA_BYTES
from .store import STORAGE_KEY

ENV_PREFIX = "INVENTORY_REGISTER_"

# Filenames looked for in the current directory
CONFIG_FILENAMES = ["config.yaml", "config.json", "inventory-register.yaml", "inventory-register.json"]
# Filenames looked for in system/user config directories
CONFIG_USER_FILENAMES = ["config.yaml", "config.json"]

DEFAULT_DATA_DIR = "~/.local/share/inventory-register"

DEFAULTS: dict[str, Any] = {
    "data_dir": DEFAULT_DATA_DIR,
    "storage": {
        "key": STORAGE_KEY,
        "quota_bytes": DEFAULT_QUOTA_BYTES,
    },
    "images": {
        "max_size": 0,  # Downscale attached photos to this many pixels, 0 keeps originals
    },
    "display": {
        "image_preview_count": 3,
        "date_format": DEFAULT_DATE_FORMAT,
        "datetime_format": DEFAULT_DATETIME_FORMAT,
    },
    "export": {
        "archive_name": DEFAULT_ARCHIVE_NAME,
        "workbook_name": DEFAULT_WORKBOOK_NAME,
        "sheet_name": DEFAULT_SHEET_NAME,
        "images_folder": DEFAULT_IMAGES_FOLDER,
    },
    "notifications": {"timeout": DEFAULT_TIMEOUT},
    "api": {"host": "127.0.0.1", "port": 8765},
}


def _get_config_dirs() -> list[Path]:
    """Config directories in merge order (lowest priority first)."""
    return [
        Path("/etc/inventory-register"),
        Path.home() / ".config" / "inventory-register",
        Path.cwd(),
    ]


def find_config_files() -> list[Path]:
    """Find existing config files, lowest priority first.

    Only the first matching file in each directory is used.
    """
    found_files = []
    for dir_path in _get_config_dirs():
        filenames = CONFIG_FILENAMES if dir_path == Path.cwd() else CONFIG_USER_FILENAMES
        for filename in filenames:
            path = dir_path / filename
            if path.exists():
                found_files.append(path)
                break
    return found_files


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base in place and return base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _deep_copy(d: dict) -> dict:
    return {key: _deep_copy(value) if isinstance(value, dict) else value for key, value in d.items()}


def _load_config_file(path: Path) -> dict[str, Any]:
    """Load one YAML or JSON config file.

    Raises:
        ImportError: If the file is YAML and PyYAML is not installed.
        json.JSONDecodeError: If a JSON file is malformed.
    """
    if path.suffix in (".yaml", ".yml"):
        try:
            import yaml
        except ImportError as e:
            raise ImportError(
                "PyYAML required for .yaml config files. Install with: pip install inventory-register[yaml]"
            ) from e
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load the merged configuration.

    Args:
        path: Explicit config file. When given, only that file is merged over
              the defaults (environment overrides still apply).
    """
    config = _deep_copy(DEFAULTS)

    paths = ([path] if path.exists() else []) if path is not None else find_config_files()
    for config_path in paths:
        _deep_merge(config, _load_config_file(config_path))

    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: dict[str, Any]) -> None:
    """Apply INVENTORY_REGISTER_<KEY> variables, e.g. INVENTORY_REGISTER_API__PORT=9000."""
    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            _set_nested_value(config, key[len(ENV_PREFIX):].lower(), value)


def _set_nested_value(config: dict, key: str, value: str) -> None:
    parts = key.split("__")
    target = config
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = _convert_value(value)


def _convert_value(value: str) -> Any:
    """Convert an environment string to bool, int or float where it looks like one."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            pass
    return value


def get_config_value(config: dict[str, Any], key: str, default: Any = None) -> Any:
    """Look up a dot-separated key such as "api.port"."""
    target = config
    for part in key.split("."):
        if isinstance(target, dict) and part in target:
            target = target[part]
        else:
            return default
    return target


class Config:
    """Loaded configuration with typed accessors."""

    def __init__(self, path: Path | None = None):
        if path is not None:
            self._paths = [path] if path.exists() else []
        else:
            self._paths = find_config_files()
        self._data = load_config(path)

    @property
    def path(self) -> Path | None:
        return self._paths[-1] if self._paths else None

    @property
    def paths(self) -> list[Path]:
        return self._paths.copy()

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        return get_config_value(self._data, key, default)

    @property
    def data_dir(self) -> Path:
        """Directory holding the durable storage."""
        return Path(str(self.get("data_dir") or DEFAULT_DATA_DIR)).expanduser()

    @property
    def storage_key(self) -> str:
        return str(self.get("storage.key", STORAGE_KEY))

    @property
    def storage_quota(self) -> int | None:
        """Storage quota in bytes; 0 or a negative value disables it."""
        quota = self.get("storage.quota_bytes", DEFAULT_QUOTA_BYTES)
        if quota is None or int(quota) <= 0:
            return None
        return int(quota)

    @property
    def image_max_size(self) -> int:
        return int(self.get("images.max_size", 0) or 0)

    @property
    def image_preview_count(self) -> int:
        return int(self.get("display.image_preview_count", 3))

    @property
    def date_format(self) -> str:
        return self.get("display.date_format", DEFAULT_DATE_FORMAT)

    @property
    def datetime_format(self) -> str:
        return self.get("display.datetime_format", DEFAULT_DATETIME_FORMAT)

    @property
    def export_options(self) -> dict[str, str]:
        """Keyword arguments for ExportAssembler."""
        return {
            "archive_name": self.get("export.archive_name", DEFAULT_ARCHIVE_NAME),
            "workbook_name": self.get("export.workbook_name", DEFAULT_WORKBOOK_NAME),
            "sheet_name": self.get("export.sheet_name", DEFAULT_SHEET_NAME),
            "images_folder": self.get("export.images_folder", DEFAULT_IMAGES_FOLDER),
            "datetime_format": self.datetime_format,
        }

    @property
    def notification_timeout(self) -> float:
        return float(self.get("notifications.timeout", DEFAULT_TIMEOUT))

    @property
    def api_host(self) -> str:
        return self.get("api.host", "127.0.0.1")

    @property
    def api_port(self) -> int:
        return int(self.get("api.port", 8765))
