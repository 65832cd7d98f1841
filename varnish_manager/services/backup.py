"""Per-run backups of files before they are overwritten."""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class BackupManager:
    """Copies files into a timestamped directory before any destructive write."""

    def __init__(self, root: Path, started_at: Optional[datetime] = None):
        """
        Initialize backup manager.

        Args:
            root: Parent directory of per-run backup directories
            started_at: Run start time used for the directory name
        """
        stamp = (started_at or datetime.now()).strftime("%Y%m%d_%H%M%S")
        self.backup_dir = root / f"varnish_hitch_backup_{stamp}"
        self.backups: Dict[Path, Path] = {}

    def _destination(self, path: Path) -> Path:
        relative = path.resolve().relative_to(path.resolve().anchor)
        return self.backup_dir / relative

    def backup(self, path: Path) -> Optional[Path]:
        """
        Copy a file into the backup directory.

        The first copy of a run wins, so the backup always holds the content
        from before this run touched the file.

        Args:
            path: File about to be overwritten

        Returns:
            Backup path, or None if the file does not exist yet
        """
        path = Path(path)
        if path in self.backups:
            return self.backups[path]
        if not path.exists():
            return None

        destination = self._destination(path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, destination)
        self.backups[path] = destination
        logger.info(f"Backed up: {path} -> {destination}")
        return destination

    def restore(self, path: Path) -> bool:
        """
        Restore a file from this run's backup.

        Args:
            path: Original file path

        Returns:
            True if a backup existed and was copied back
        """
        path = Path(path)
        source = self.backups.get(path)
        if source is None or not source.exists():
            logger.warning(f"No backup to restore for {path}")
            return False
        shutil.copy2(source, path)
        logger.info(f"Restored: {source} -> {path}")
        return True

    def write_with_backup(self, path: Path, content: str, mode: Optional[int] = None) -> Optional[Path]:
        """
        Back up a file, then overwrite it.

        Args:
            path: File to write
            content: New content
            mode: Optional permission bits applied after writing

        Returns:
            Backup path, or None if the file did not exist
        """
        path = Path(path)
        backup_path = self.backup(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(content)
        if mode is not None:
            os.chmod(path, mode)
        logger.info(f"Wrote {path}")
        return backup_path
