"""
Central configuration for the outstanding-inventory core.

All paths, lease timing and polling settings are defined here.
Override via environment variables, the settings document, or by passing
a Config instance directly.

Settings priority (highest wins):
  1. Attributes assigned on a Config instance after it is built
  2. <data_dir>/settings.json  (admin-editable, persisted); it is applied
     in __post_init__ and so also beats constructor arguments
  3. Constructor arguments
  4. Environment variables
  5. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

DEFAULT_DATA_DIR    = PROJECT_ROOT / "data"
DEFAULT_BACKUP_DIR  = PROJECT_ROOT / "backups"
DEFAULT_SOURCES_DIR = PROJECT_ROOT / "sources"

ITEMS_FILENAME    = "outstanding_items.json"
ORDERS_FILENAME   = "orders.json"
SETTINGS_FILENAME = "settings.json"

# Settings document keys that relocate a collection
ITEMS_FILE_KEY  = "itemsFile"
ORDERS_FILE_KEY = "ordersFile"

LEASE_DURATION_SECONDS = 20
DEFAULT_BUBBLE = "New Stock"
DEFAULT_BUBBLES = ["New Stock", "Cash Sales", "Shelf", "Returns"]


class SettingsDocument:
    """
    Small key/value JSON document holding operator settings.

    Read lazily on first access and cached in memory; the cache is only
    invalidated by an explicit write through this object.  Edits made to
    the file by another process are picked up after invalidate().
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._cache: Optional[dict] = None

    def read(self) -> dict:
        if self._cache is None:
            self._cache = self._load()
        return dict(self._cache)

    def get(self, key: str, default: Any = None) -> Any:
        return self.read().get(key, default)

    def write(self, values: dict) -> None:
        """Replace the whole document."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(values, f, indent=2)
        self._cache = dict(values)
        logger.info("Settings saved: %s", self.path)

    def set(self, key: str, value: Any) -> None:
        values = self.read()
        values[key] = value
        self.write(values)

    def unset(self, key: str) -> None:
        values = self.read()
        if key in values:
            del values[key]
            self.write(values)

    def invalidate(self) -> None:
        self._cache = None

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring %s: expected a JSON object", self.path)
            return {}
        return data


@dataclass
class Config:
    # --- Storage ---
    data_dir: Path = field(
        default_factory=lambda: Path(os.getenv("STOCKFLOW_DATA_DIR", str(DEFAULT_DATA_DIR)))
    )
    pretty_json: bool = True       # Indent collection files so they stay human-diffable

    # --- Edit leases ---
    lease_seconds: int = field(
        default_factory=lambda: int(os.getenv("STOCKFLOW_LEASE_SECONDS", str(LEASE_DURATION_SECONDS)))
    )
    default_bubble: str = DEFAULT_BUBBLE

    # --- Ingestion / watch mode ---
    sources_dir: Path = field(
        default_factory=lambda: Path(os.getenv("STOCKFLOW_SOURCES_DIR", str(DEFAULT_SOURCES_DIR)))
    )
    # Source names run by watch mode, e.g. "world,cbk"
    enabled_sources: list[str] = field(
        default_factory=lambda: [
            s.strip() for s in os.getenv("STOCKFLOW_SOURCES", "").split(",") if s.strip()
        ]
    )
    poll_interval_seconds: int = field(
        default_factory=lambda: int(os.getenv("POLL_INTERVAL", "300"))
    )
    # Seconds between mtime checks of the collection files
    watch_interval_seconds: float = field(
        default_factory=lambda: float(os.getenv("STOCKFLOW_WATCH_INTERVAL", "1.0"))
    )
    auto_derive: bool = field(
        default_factory=lambda: os.getenv("STOCKFLOW_AUTO_DERIVE", "true").lower() != "false"
    )

    # --- Sage export ---
    sage_template: Optional[Path] = field(
        default_factory=lambda: (
            Path(os.environ["SAGE_EXPORT_TEMPLATE"]) if os.getenv("SAGE_EXPORT_TEMPLATE") else None
        )
    )

    # --- Backup settings ---
    backup_dir: Path = field(
        default_factory=lambda: Path(os.getenv("BACKUP_DIR", str(DEFAULT_BACKUP_DIR)))
    )
    backup_enabled: bool = field(
        default_factory=lambda: os.getenv("BACKUP_ENABLED", "true").lower() != "false"
    )
    backup_interval_hours: int = field(
        default_factory=lambda: int(os.getenv("BACKUP_INTERVAL_HOURS", "24"))
    )
    backup_retention_count: int = field(
        default_factory=lambda: int(os.getenv("BACKUP_RETENTION_COUNT", "7"))
    )

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from settings.json if present."""
        self.data_dir = Path(self.data_dir)
        self.settings = SettingsDocument(self.data_dir / SETTINGS_FILENAME)
        _type_map: dict[str, type] = {
            "lease_seconds":           int,
            "default_bubble":          str,
            "poll_interval_seconds":   int,
            "watch_interval_seconds":  float,
            "auto_derive":             bool,
            "backup_enabled":          bool,
            "backup_interval_hours":   int,
            "backup_retention_count":  int,
        }
        overrides = {k: v for k, v in self.settings.read().items() if not k.startswith("_")}
        for key, val in overrides.items():
            if key in _type_map:
                try:
                    setattr(self, key, _type_map[key](val))
                except (TypeError, ValueError) as exc:
                    logger.warning("Ignoring setting %s=%r: %s", key, val, exc)

    # ------------------------------------------------------------------
    # Collection paths
    # ------------------------------------------------------------------

    @property
    def items_path(self) -> Path:
        override = self.settings.get(ITEMS_FILE_KEY)
        if isinstance(override, str) and override:
            return Path(override)
        return self.data_dir / ITEMS_FILENAME

    @property
    def orders_path(self) -> Path:
        override = self.settings.get(ORDERS_FILE_KEY)
        if isinstance(override, str) and override:
            return Path(override)
        return self.data_dir / ORDERS_FILENAME

    def ensure_data_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
