"""
Backup creation and rotation through the location abstraction.

Backups created here are named backup-<UTC timestamp> so that plain string
order is chronological order. The generated update script keeps its own
backup_<yyyyMMdd_HHmmss> series at deploy time; this service is for callers
that back up and rotate directly.
"""

import logging
from typing import List, Optional

from stagedeploy.models import BackupConfig, Location, timestamp_slug
from .file_ops import FileOperations


logger = logging.getLogger(__name__)

BACKUP_PREFIX = 'backup-'


def backup_root_for(source: Location, backup: BackupConfig) -> Location:
    """Backups live on the same side (local or SSH server) as the data they copy."""
    if source.is_remote:
        return Location.ssh(backup.path, source.remote)
    return Location.local(backup.path)


class BackupRotation:
    """
    Creates timestamped backups and keeps the newest max_backups of them.
    """

    def __init__(self, file_ops: FileOperations):
        self.file_ops = file_ops

    def create_backup(self, source: Location, backup: BackupConfig) -> Optional[str]:
        """
        Copy source into a new backup folder, then rotate.

        Args:
            source: Directory to back up
            backup: Backup root and retention count

        Returns:
            Path of the new backup, or None if source does not exist
        """
        if not self.file_ops.exists(source):
            logger.warning(f"Source directory {source.path} does not exist. Skipping backup.")
            return None

        backup_root = backup_root_for(source, backup)
        target = backup_root.child(f"{BACKUP_PREFIX}{timestamp_slug()}")

        self.file_ops.make_directory(backup_root)
        logger.info(f"Creating backup: {target.path}")

        files_count = self.file_ops.copy(source, target)
        logger.info(f"Backup created with {files_count} files: {target.path}")

        self.rotate(backup_root, backup.max_backups)
        return target.path

    def rotate(self, backup_root: Location, max_backups: int) -> List[str]:
        """
        Delete the oldest backups until max_backups remain.

        Returns:
            Names of the deleted backups, oldest first (empty when nothing
            needed deleting)
        """
        if max_backups < 1:
            raise ValueError(f"max_backups must be >= 1, got {max_backups}")

        backups = sorted(self.list_backups(backup_root))
        if len(backups) <= max_backups:
            logger.info(f"Found {len(backups)} backups, no rotation needed")
            return []

        to_delete = backups[:len(backups) - max_backups]
        for name in to_delete:
            old_backup = backup_root.child(name)
            logger.info(f"Deleting old backup: {old_backup.path}")
            self.file_ops.delete_path(old_backup)

        logger.info(f"Deleted {len(to_delete)} old backup(s), kept {max_backups}")
        return to_delete

    def list_backups(self, backup_root: Location, prefix: str = BACKUP_PREFIX) -> List[str]:
        """Backup names under backup_root, in listing order."""
        return [name for name in self.file_ops.list_entries(backup_root) if name.startswith(prefix)]

    def latest_backup(self, backup_root: Location, prefix: str = BACKUP_PREFIX) -> Optional[str]:
        backups = self.list_backups(backup_root, prefix)
        if not backups:
            return None
        return max(backups)
