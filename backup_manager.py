"""
Backup Manager
Copies mod folders aside before risky operations and restores the latest copy on demand
"""

import json
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from archive_extractor import remove_directory_safe
from mod_errors import BackupNotFoundError, ModIOError, NotFoundError

logger = logging.getLogger(__name__)

METADATA_FILENAME = 'metadata.json'


def _original_key(path):
    """Backups are bound to the absolute form of the path they captured."""
    return str(Path(path).resolve())


@dataclass
class Backup:
    backup_id: str
    original_path: str
    backup_time: float
    location: Path

    @property
    def captured_files(self):
        """Relative paths of every file held by this backup."""
        return sorted(
            str(p.relative_to(self.location)) for p in self.location.rglob('*')
            if p.is_file() and p.name != METADATA_FILENAME
        )


class BackupManager:
    def __init__(self, backup_root):
        """Initialize backup manager.

        Args:
            backup_root: str/Path - Directory holding one subdirectory per backup
        """
        self.backup_root = Path(backup_root)

    def _read_backup(self, entry):
        metadata_path = entry / METADATA_FILENAME
        if not metadata_path.is_file():
            return None
        try:
            with open(metadata_path, 'r', encoding='utf-8') as f:
                metadata = json.load(f)
            return Backup(
                backup_id=entry.name,
                original_path=metadata['original_path'],
                backup_time=float(metadata['backup_time']),
                location=entry,
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning('Ignoring unreadable backup %s: %s', entry, e)
            return None

    def list_backups(self, path=None):
        """List backups, optionally only those bound to path, oldest first."""
        if not self.backup_root.is_dir():
            return []
        wanted = _original_key(path) if path is not None else None
        backups = []
        for entry in self.backup_root.iterdir():
            if not entry.is_dir():
                continue
            backup = self._read_backup(entry)
            if backup and (path is None or _original_key(backup.original_path) == wanted):
                backups.append(backup)
        return sorted(backups, key=lambda b: (b.backup_time, b.backup_id))

    def create_backup(self, path):
        """Copy a mod folder or file into a new backup.

        Args:
            path: str/Path - Mod folder or file to capture

        Returns:
            Backup - The new backup

        Raises:
            NotFoundError - path does not exist
            ModIOError - copy failed
        """
        path = Path(path)
        if not path.exists():
            raise NotFoundError(f"Path doesn't exist: {path}", path=path)

        backup_time = time.time()
        backup_id = f'backup_{int(backup_time * 1000)}'
        backup_path = self.backup_root / backup_id
        suffix = 1
        while backup_path.exists():
            backup_path = self.backup_root / f'{backup_id}_{suffix}'
            suffix += 1

        try:
            backup_path.mkdir(parents=True)
            if path.is_dir():
                shutil.copytree(path, backup_path / path.name)
            else:
                shutil.copy2(path, backup_path / path.name)
            metadata = {'original_path': _original_key(path), 'backup_time': backup_time}
            with open(backup_path / METADATA_FILENAME, 'w', encoding='utf-8') as f:
                json.dump(metadata, f, indent=2)
        except OSError as e:
            remove_directory_safe(backup_path)
            raise ModIOError(f'Failed to back up {path}: {e}', path=path) from e

        logger.info('Backed up %s to %s', path, backup_path.name)
        return Backup(backup_path.name, _original_key(path), backup_time, backup_path)

    def latest_backup(self, path):
        backups = self.list_backups(path)
        if not backups:
            raise BackupNotFoundError('No backup found for this path', path=path)
        return backups[-1]

    def restore_backup(self, path):
        """Replace path with the content of its most recent backup.

        Returns:
            Backup - The backup that was restored
        """
        path = Path(path)
        backup = self.latest_backup(path)
        source = backup.location / path.name
        if not source.exists():
            raise BackupNotFoundError(f'Backup {backup.backup_id} does not hold {path.name}', path=path)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if path.is_dir() and not path.is_symlink():
                remove_directory_safe(path)
            elif path.exists():
                path.unlink()
            if source.is_dir():
                shutil.copytree(source, path)
            else:
                shutil.copy2(source, path)
        except OSError as e:
            raise ModIOError(f'Failed to restore {path} from backup: {e}', path=path) from e

        logger.info('Restored %s from %s', path, backup.backup_id)
        return backup

    def remove_backups(self, path):
        """Delete every backup bound to path.

        Returns:
            int - Number of backups removed
        """
        backups = self.list_backups(path)
        for backup in backups:
            remove_directory_safe(backup.location)
        return len(backups)
