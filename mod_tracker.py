"""
Mod Tracker
Manages the mods.json file that records installed mods and user settings
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from mod_errors import ModIOError, NotFoundError, StateCorruptionError

logger = logging.getLogger(__name__)

TRACKER_FILENAME = 'mods.json'


@dataclass
class InstalledMod:
    name: str
    path: str
    dependencies: List[str] = field(default_factory=list)
    current_version: Optional[str] = None

    def to_dict(self):
        return {
            'name': self.name,
            'path': self.path,
            'dependencies': list(self.dependencies),
            'current_version': self.current_version,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            name=data['name'],
            path=data['path'],
            dependencies=list(data.get('dependencies') or []),
            current_version=data.get('current_version') or None,
        )


class ModTracker:
    def __init__(self, data_dir, lock_timeout=30.0):
        """Initialize mod tracker.

        Args:
            data_dir: str/Path - Directory holding mods.json
            lock_timeout: float - Seconds to wait for exclusive access before giving up
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.tracker_file = self.data_dir / TRACKER_FILENAME
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        self.records = self._load_records()

    def _load_records(self):
        """Load records from mods.json"""
        if not self.tracker_file.exists():
            return self._create_empty_structure()
        try:
            with open(self.tracker_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StateCorruptionError(
                f'Mod record store is unreadable: {e}', path=self.tracker_file
            ) from e
        if not isinstance(data, dict) or not isinstance(data.get('installed_mods', {}), dict):
            raise StateCorruptionError('Mod record store has an unexpected layout', path=self.tracker_file)
        data.setdefault('installed_mods', {})
        data.setdefault('settings', {})
        return data

    def _create_empty_structure(self):
        """Create empty record structure"""
        return {
            'version': '1.0',
            'last_updated': datetime.now().isoformat(),
            'installed_mods': {},
            'settings': {}
        }

    @contextmanager
    def transaction(self):
        """Hold exclusive access to the record store for a whole operation.

        Re-entrant, so a transaction may call other tracker methods freely.

        Raises:
            StateCorruptionError - lock could not be acquired in time
        """
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise StateCorruptionError('Mod record store is locked by another operation')
        try:
            yield self
        finally:
            self._lock.release()

    def save_records(self):
        """Save records to mods.json via a temp file and atomic replace."""
        with self.transaction():
            self.records['last_updated'] = datetime.now().isoformat()
            fd, tmp_name = tempfile.mkstemp(prefix='.mods-', suffix='.json', dir=self.data_dir)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(self.records, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, self.tracker_file)
            except OSError as e:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise ModIOError(f'Failed to save mod records: {e}', path=self.tracker_file) from e

    # ── installed mods ────────────────────────────────────────────────────────

    def add_installed_mod(self, name, path, dependencies=(), current_version=None):
        """Record a mod, replacing any existing row with the same name.

        Args:
            name: str - Unique mod name
            path: str/Path - Absolute location of the mod folder or file
            dependencies: iterable - Names this mod requires
            current_version: Optional str - Installed version, None when unknown

        Returns:
            InstalledMod - The stored row
        """
        mod = InstalledMod(
            name=name,
            path=str(path),
            dependencies=list(dependencies),
            current_version=current_version or None,
        )
        with self.transaction():
            rows = self.records['installed_mods']
            previous = rows.get(name)
            rows[name] = mod.to_dict()
            try:
                self.save_records()
            except ModIOError:
                # Keep memory in step with what is on disk
                if previous is None:
                    del rows[name]
                else:
                    rows[name] = previous
                raise
        return mod

    def remove_installed_mod(self, name):
        """Remove a mod row.

        Returns:
            bool - True if a row was removed, False if none existed
        """
        with self.transaction():
            rows = self.records['installed_mods']
            if name not in rows:
                return False
            previous = rows.pop(name)
            try:
                self.save_records()
            except ModIOError:
                rows[name] = previous
                raise
            return True

    def get_installed_mods(self):
        """Get all tracked mods as a consistent snapshot."""
        with self.transaction():
            return [InstalledMod.from_dict(row) for row in self.records['installed_mods'].values()]

    def find_mod(self, name):
        """Get a mod row by exact name, or None."""
        with self.transaction():
            row = self.records['installed_mods'].get(name)
            return InstalledMod.from_dict(row) if row else None

    def get_mod_details(self, name):
        """Get a mod row by exact name.

        Raises:
            NotFoundError - no mod with that name is tracked
        """
        mod = self.find_mod(name)
        if mod is None:
            raise NotFoundError(f'Mod "{name}" is not installed', path=name)
        return mod

    def mod_exists(self, name):
        with self.transaction():
            return name in self.records['installed_mods']

    def get_dependents(self, name):
        """Get names of all rows whose dependencies contain name.

        Rows listing themselves are returned as-is; callers filter self-loops.
        """
        return [mod.name for mod in self.get_installed_mods() if name in mod.dependencies]

    def get_last_installed_version(self, name):
        mod = self.find_mod(name)
        if mod is None or not mod.current_version:
            return ''
        return mod.current_version

    # ── settings ──────────────────────────────────────────────────────────────

    def get_setting(self, key, default=None):
        """Get a setting value"""
        with self.transaction():
            return self.records['settings'].get(key, default)

    def set_setting(self, key, value):
        """Set a setting value"""
        with self.transaction():
            self.records['settings'][key] = value
            self.save_records()

    def get_all_settings(self):
        with self.transaction():
            return dict(self.records['settings'])

    def get_installation_path(self):
        return self.get_setting('installation_path') or None

    def set_installation_path(self, path):
        self.set_setting('installation_path', str(path))

    def remove_installation_path(self):
        with self.transaction():
            self.records['settings'].pop('installation_path', None)
            self.save_records()

    def is_lovely_console_enabled(self):
        return bool(self.get_setting('lovely_console', True))

    def set_lovely_console_status(self, enabled):
        self.set_setting('lovely_console', bool(enabled))

    def is_discord_rpc_enabled(self):
        return bool(self.get_setting('discord_rpc', True))

    def set_discord_rpc_enabled(self, enabled):
        self.set_setting('discord_rpc', bool(enabled))

    def get_background_enabled(self):
        return bool(self.get_setting('background', True))

    def set_background_enabled(self, enabled):
        self.set_setting('background', bool(enabled))

    def get_last_fetched(self):
        return int(self.get_setting('last_fetched', 0))

    def set_last_fetched(self, timestamp):
        self.set_setting('last_fetched', int(timestamp))
