"""
Mod Manager
Handles installation, detection and removal of Balatro mods and their frameworks
"""

import logging
import time
from pathlib import Path
from urllib.parse import urlparse

import requests

from app_config import AppConfig
from archive_extractor import detect_format, strip_archive_suffix
from backup_manager import BackupManager
from dependency_graph import DependencyGraph, remove_mod_path
from framework_installer import FrameworkInstaller, fetch_archive, get_framework
from game_paths import get_resolver
from local_mod_detector import LocalModDetector
from mod_cache import ModCache
from mod_errors import HasDependentsError, InvalidInputError, ModIOError, ModManagerError, NotFoundError
from mod_tracker import ModTracker

logger = logging.getLogger(__name__)

DISABLE_MARKER = '.lovelyignore'


def is_mod_enabled_at(path):
    """Check the disable marker of a mod folder.

    Raises:
        NotFoundError - mod folder does not exist
    """
    path = Path(path)
    if not path.exists():
        raise NotFoundError(f'Mod path does not exist: {path}', path=path)
    return not (path / DISABLE_MARKER).exists()


def set_mod_enabled_at(path, enabled):
    """Write or remove the disable marker of a mod folder."""
    path = Path(path)
    if not path.is_dir():
        raise NotFoundError(f'Mod path does not exist: {path}', path=path)
    marker = path / DISABLE_MARKER
    try:
        if enabled:
            if marker.exists():
                marker.unlink()
        else:
            marker.write_bytes(b'')
    except OSError as e:
        raise ModIOError(f'Failed to update {DISABLE_MARKER}: {e}', path=marker) from e


class ModManager:
    def __init__(self, config=None, tracker=None, session=None, path_resolver=None):
        """Initialize mod manager.

        Args:
            config: Optional AppConfig - Defaults to AppConfig.from_env()
            tracker: Optional ModTracker - Record store, created in config.data_dir if omitted
            session: Optional requests.Session - Shared HTTP session
            path_resolver: Optional GamePathResolver - Defaults to the host platform's
        """
        self.config = config or AppConfig.from_env()
        self.tracker = tracker or ModTracker(self.config.data_dir, lock_timeout=self.config.lock_timeout)
        self.cache = ModCache(self.config.cache_dir)
        self.backups = BackupManager(self.config.backup_dir)
        self.session = session or requests.Session()
        self.path_resolver = path_resolver or get_resolver()
        self._bind_mods_dir()

    def _bind_mods_dir(self):
        """(Re)build the components that depend on where the Mods folder is."""
        if self.config.mods_dir:
            self.mods_dir = Path(self.config.mods_dir)
        else:
            self.mods_dir = Path(self.path_resolver.get_mods_dir(self.tracker.get_installation_path()))
        self.installer = FrameworkInstaller(
            self.mods_dir,
            self.cache,
            self.tracker,
            session=self.session,
            token=self.config.github_token,
            timeout=self.config.request_timeout
        )
        self.graph = DependencyGraph(self.tracker, self.mods_dir)
        self.detector = LocalModDetector(self.mods_dir)

    def _failure(self, error):
        result = {'success': False, 'error': str(error), 'error_kind': error.kind}
        if isinstance(error, HasDependentsError):
            result['requires_cascade'] = True
            result['dependents'] = error.dependents
        return result

    # ── installed mods ────────────────────────────────────────────────────────

    def get_installed_mods(self):
        return [mod.to_dict() for mod in self.tracker.get_installed_mods()]

    def add_installed_mod(self, name, path, dependencies=(), current_version=None):
        """Record a mod the caller installed or adopted itself."""
        try:
            self.tracker.add_installed_mod(name, path, dependencies, current_version)
            return {'success': True, 'message': f'Mod "{name}" recorded'}
        except ModManagerError as e:
            return self._failure(e)

    def install_mod(self, url, name, folder_name=None, dependencies=(), version=None):
        """Install a mod from a zip download URL.

        Args:
            url: str - Archive download URL
            name: str - Mod name to record
            folder_name: Optional str - Folder inside Mods, defaults to name
            dependencies: iterable - Names this mod requires
            version: Optional str - Version to record

        Returns:
            dict - Result with keys:
            - success: bool - whether installation succeeded
            - message: str - success message
            - path: str - installed folder
            - error: str - error message if failed
            - error_kind: str - error family if failed
        """
        try:
            folder = folder_name or name
            logger.info('Downloading %s from %s', name, url)
            data = fetch_archive(self.session, url, timeout=self.config.request_timeout)
            fmt = self._format_from_url(url)
            path = self.installer.deploy_archive(
                data, fmt, folder, validate=True, record=(name, list(dependencies), version)
            )
            logger.info('Installed %s into %s', name, path)
            return {'success': True, 'message': f'Mod "{name}" installed successfully', 'path': path}
        except ModManagerError as e:
            return self._failure(e)

    def _format_from_url(self, url):
        try:
            return detect_format(Path(urlparse(url).path).name)
        except InvalidInputError:
            # GitHub archive and release links without an extension are zips
            return 'zip'

    def uninstall_mod(self, name):
        """Remove one mod; frameworks with dependents are refused."""
        try:
            self.graph.uninstall_one(name)
            return {'success': True, 'message': f'Mod "{name}" removed successfully'}
        except ModManagerError as e:
            return self._failure(e)

    def force_remove_mod(self, name, path=None):
        try:
            self.graph.force_uninstall(name, path)
            return {'success': True, 'message': f'Mod "{name}" removed successfully'}
        except ModManagerError as e:
            return self._failure(e)

    def cascade_uninstall(self, root_mod):
        """Remove a mod and everything that depends on it."""
        try:
            removed = self.graph.cascade_uninstall(root_mod)
            return {
                'success': True,
                'message': f'Removed {len(removed)} mod(s)',
                'removed': removed
            }
        except ModManagerError as e:
            return self._failure(e)

    def get_dependents(self, name):
        return sorted(self.graph.dependents_of(name))

    def reindex_mods(self):
        """Forget mods whose folders were deleted outside the manager."""
        try:
            cleaned = self.graph.reindex()
            return {'success': True, 'message': f'Cleaned {cleaned} entries', 'cleaned': cleaned}
        except ModManagerError as e:
            return self._failure(e)

    def refresh_mods_folder(self):
        """Delete everything in the Mods folder that no recorded mod owns."""
        try:
            removed = []
            with self.tracker.transaction():
                installed = self.tracker.get_installed_mods()
                for entry in self.detector.find_untracked(installed):
                    remove_mod_path(entry, self.mods_dir)
                    removed.append(entry.name)
            if removed:
                logger.info('Removed untracked entries: %s', ', '.join(removed))
            return {'success': True, 'message': f'Removed {len(removed)} untracked entries', 'removed': removed}
        except ModManagerError as e:
            return self._failure(e)

    def delete_manual_mod(self, path):
        """Delete a mod folder the tracker does not know about."""
        try:
            path = Path(path)
            if not path.exists():
                raise NotFoundError(f"Invalid path '{path}': Path doesn't exist", path=path)
            logger.info('Deleting manual mod at path: %s', path)
            remove_mod_path(path, self.mods_dir)
            return {'success': True, 'message': f'Deleted {path.name}'}
        except ModManagerError as e:
            return self._failure(e)

    # ── frameworks ────────────────────────────────────────────────────────────

    def get_framework_versions(self, framework, refresh=False):
        try:
            versions = self.installer.list_versions(framework, refresh=refresh)
            return {'success': True, 'versions': versions}
        except ModManagerError as e:
            return self._failure(e)

    def get_latest_framework_release(self, framework):
        try:
            version = self.installer.resolve_latest(framework)
            url = self.installer.latest_download_url(framework)
            return {'success': True, 'version': version, 'url': url}
        except ModManagerError as e:
            return self._failure(e)

    def install_framework(self, framework, version=None):
        """Install a framework version, the newest one when version is omitted."""
        try:
            version = version or self.installer.resolve_latest(framework)
            path = self.installer.install(framework, version)
            name = get_framework(framework).name
            return {
                'success': True,
                'message': f'{name} {version} installed successfully',
                'path': path,
                'version': version
            }
        except ModManagerError as e:
            return self._failure(e)

    def check_mod_installation(self, framework):
        """Check whether a framework is recorded or sits in the Mods folder.

        Raises:
            InvalidInputError - framework is not a reserved framework name
        """
        name = get_framework(framework).name
        if self.tracker.mod_exists(name):
            return True
        detected = self.detector.detect(self.tracker.get_installed_mods(), self.cache.cached_mods())
        return any(mod.name == name for mod in detected)

    # ── local detection ───────────────────────────────────────────────────────

    def get_detected_local_mods(self):
        installed = self.tracker.get_installed_mods()
        return [mod.to_dict() for mod in self.detector.detect(installed, self.cache.cached_mods())]

    def mod_update_available(self, name):
        """Compare the recorded version of a mod with the cached index."""
        installed_version = self.tracker.get_last_installed_version(name)
        if not installed_version:
            return False
        for cached in self.cache.cached_mods():
            if cached.matches(name):
                if cached.version:
                    return cached.version != installed_version
                break
        return False

    # ── archive ingestion ─────────────────────────────────────────────────────

    def process_dropped_file(self, path):
        """Install an archive dropped from disk; it must contain Lua files."""
        try:
            path = Path(path)
            fmt = detect_format(path.name)
            mod_path = self.installer.deploy_archive(path, fmt, strip_archive_suffix(path.name), validate=True)
            return {'success': True, 'message': f'Extracted {path.name}', 'path': mod_path}
        except ModManagerError as e:
            return self._failure(e)

    def process_mod_archive(self, filename, data, validate=False):
        """Install an archive received as bytes."""
        try:
            fmt = detect_format(filename)
            mod_path = self.installer.deploy_archive(data, fmt, strip_archive_suffix(filename), validate=validate)
            return {'success': True, 'message': f'Extracted {filename}', 'path': mod_path}
        except ModManagerError as e:
            return self._failure(e)

    # ── enable / disable ──────────────────────────────────────────────────────

    def is_mod_enabled(self, mod_name):
        return is_mod_enabled_at(self.mods_dir / mod_name)

    def is_mod_enabled_by_path(self, mod_path):
        return is_mod_enabled_at(mod_path)

    def toggle_mod_enabled(self, mod_name, enabled):
        return self.toggle_mod_enabled_by_path(self.mods_dir / mod_name, enabled)

    def toggle_mod_enabled_by_path(self, mod_path, enabled):
        try:
            set_mod_enabled_at(mod_path, enabled)
            state = 'enabled' if enabled else 'disabled'
            return {'success': True, 'message': f'{Path(mod_path).name} {state}'}
        except ModManagerError as e:
            return self._failure(e)

    # ── backups ───────────────────────────────────────────────────────────────

    def backup_local_mod(self, path):
        try:
            backup = self.backups.create_backup(path)
            return {'success': True, 'message': f'Backup {backup.backup_id} created', 'backup_id': backup.backup_id}
        except ModManagerError as e:
            return self._failure(e)

    def restore_from_backup(self, path):
        try:
            backup = self.backups.restore_backup(path)
            return {'success': True, 'message': f'Restored from {backup.backup_id}', 'backup_id': backup.backup_id}
        except ModManagerError as e:
            return self._failure(e)

    def remove_backup(self, path):
        try:
            removed = self.backups.remove_backups(path)
            return {'success': True, 'message': f'Removed {removed} backup(s)', 'removed': removed}
        except ModManagerError as e:
            return self._failure(e)

    # ── cache ─────────────────────────────────────────────────────────────────

    def save_mods_cache(self, mods):
        try:
            self.cache.save_mods(mods)
            return {'success': True, 'message': f'Cached {len(mods)} mods'}
        except ModManagerError as e:
            return self._failure(e)

    def load_mods_cache(self):
        return self.cache.load_mods()

    def load_versions_cache(self, framework):
        return self.cache.load_versions(get_framework(framework).cache_kind)

    def clear_cache(self):
        try:
            self.cache.clear()
            return {'success': True, 'message': 'Cache cleared'}
        except ModManagerError as e:
            return self._failure(e)

    def get_last_fetched(self):
        return self.tracker.get_last_fetched()

    def update_last_fetched(self):
        self.tracker.set_last_fetched(int(time.time()))

    # ── installation path & settings ──────────────────────────────────────────

    def get_installation_path(self):
        return self.tracker.get_installation_path()

    def set_installation_path(self, path):
        """Store a custom game folder after checking it holds Balatro."""
        path = Path(path)
        if path.is_file():
            path = path.parent
        if not self.path_resolver.is_valid_installation(path):
            return {
                'success': False,
                'error': f'No Balatro installation found in {path}',
                'error_kind': InvalidInputError.kind
            }
        try:
            self.tracker.set_installation_path(path)
        except ModManagerError as e:
            return self._failure(e)
        self._bind_mods_dir()
        return {'success': True, 'message': f'Installation path set to {path}'}

    def find_installations(self):
        """Look for Steam copies of Balatro and adopt the first one found."""
        installations = self.path_resolver.find_installations()
        if installations:
            self.tracker.set_installation_path(installations[0])
            self._bind_mods_dir()
        return [str(path) for path in installations]

    def check_existing_installation(self):
        """Get the stored installation path, forgetting it if it is no longer valid."""
        path = self.tracker.get_installation_path()
        if not path:
            return None
        if self.path_resolver.is_valid_installation(Path(path)):
            return path
        self.tracker.remove_installation_path()
        self._bind_mods_dir()
        return None

    def get_mods_folder(self):
        return str(self.mods_dir)

    def get_lovely_console_status(self):
        return self.tracker.is_lovely_console_enabled()

    def set_lovely_console_status(self, enabled):
        self.tracker.set_lovely_console_status(enabled)

    def get_discord_rpc_status(self):
        return self.tracker.is_discord_rpc_enabled()

    def set_discord_rpc_status(self, enabled):
        self.tracker.set_discord_rpc_enabled(enabled)
