"""
Backup service for the record store.
Creates and rotates ZIP archives holding both collection files and the
settings document.
"""
import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from config import Config
from stockflow.store import COLLECTIONS, RecordStore

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "stockflow_backup_"


class BackupService:
    """Manages scheduled backups and rotation."""

    def __init__(self, config: Config, store: RecordStore) -> None:
        self.config = config
        self.store = store
        self.backup_dir = Path(config.backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def create_backup(self) -> str:
        """Create a new timestamped ZIP backup.  Returns the filename."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        zip_name = f"{BACKUP_PREFIX}{timestamp}.zip"
        zip_path = self.backup_dir / zip_name

        logger.info("Starting backup: %s", zip_name)
        try:
            with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zipf:
                for collection in COLLECTIONS:
                    path = self.store.path(collection)
                    if path.exists():
                        zipf.write(path, arcname=f"data/{path.name}")
                settings_path = self.config.settings.path
                if settings_path.exists():
                    zipf.write(settings_path, arcname=f"data/{settings_path.name}")
        except Exception as e:
            logger.error("Backup failed: %s", e)
            if zip_path.exists():
                zip_path.unlink()
            raise

        logger.info("Backup completed: %s", zip_name)
        self.rotate_backups()
        return zip_name

    def rotate_backups(self) -> None:
        """Remove old backups, keeping only the newest backup_retention_count."""
        retention = self.config.backup_retention_count
        if retention <= 0:
            return

        backups = self.list_backups()
        for old_zip in backups[retention:]:
            logger.info("Rotating out old backup: %s", old_zip.name)
            try:
                old_zip.unlink()
            except OSError as e:
                logger.warning("Failed to delete old backup %s: %s", old_zip, e)

    def list_backups(self) -> list[Path]:
        """Newest first.  Names embed the timestamp, so name order is age order."""
        return sorted(self.backup_dir.glob(f"{BACKUP_PREFIX}*.zip"), reverse=True)

    def get_last_backup_time(self) -> Optional[datetime]:
        backups = self.list_backups()
        if not backups:
            return None
        return datetime.fromtimestamp(backups[0].stat().st_mtime)
