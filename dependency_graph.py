"""
Dependency Graph
Tracks which installed mods depend on which, and removes mods with or without their dependents
"""

import logging
from pathlib import Path

from archive_extractor import remove_directory_safe
from framework_installer import is_framework_name
from mod_errors import HasDependentsError, InvalidInputError, ModIOError, NotFoundError

logger = logging.getLogger(__name__)


def remove_mod_path(path, mods_dir=None):
    """Delete a mod folder or file from disk.

    Args:
        path: str/Path - Mod folder or single file
        mods_dir: Optional str/Path - When given, path must live inside it

    Raises:
        InvalidInputError - path is outside mods_dir
        ModIOError - deletion failed
    """
    path = Path(path)
    if mods_dir is not None:
        try:
            path.resolve().relative_to(Path(mods_dir).resolve())
        except ValueError:
            raise InvalidInputError(f'Path is outside of the mods directory: {path}', path=path) from None
    if path.is_dir() and not path.is_symlink():
        remove_directory_safe(path)
    elif path.exists() or path.is_symlink():
        try:
            path.unlink()
        except OSError as e:
            raise ModIOError(f'Failed to remove file {path}: {e}', path=path) from e


class DependencyGraph:
    def __init__(self, tracker, mods_dir=None):
        """Initialize dependency graph over the tracked mods.

        Args:
            tracker: ModTracker - Record store of installed mods
            mods_dir: Optional str/Path - Deletions are confined to this directory
        """
        self.tracker = tracker
        self.mods_dir = Path(mods_dir) if mods_dir else None

    def is_framework(self, name):
        return is_framework_name(name)

    def dependents_of(self, name):
        """Get the names of mods that declare name as a dependency.

        A malformed row listing itself is never its own dependent.
        """
        if not name:
            raise InvalidInputError('A mod name is required to look up dependents')
        return {dependent for dependent in self.tracker.get_dependents(name) if dependent != name}

    def _delete(self, mod):
        remove_mod_path(mod.path, self.mods_dir)
        self.tracker.remove_installed_mod(mod.name)

    def uninstall_one(self, name):
        """Remove a single mod.

        Frameworks with remaining dependents are refused and nothing is touched.

        Raises:
            NotFoundError - mod is not tracked
            HasDependentsError - framework still has dependents
        """
        with self.tracker.transaction():
            mod = self.tracker.get_mod_details(name)
            if self.is_framework(name):
                dependents = self.dependents_of(name)
                if dependents:
                    raise HasDependentsError(name, dependents)
            self._delete(mod)
        logger.info('Uninstalled %s', name)

    def force_uninstall(self, name, path=None):
        """Remove a mod without checking its dependents."""
        with self.tracker.transaction():
            mod = self.tracker.find_mod(name)
            target = path or (mod.path if mod else None)
            if target is None:
                raise NotFoundError(f'Mod "{name}" is not installed', path=name)
            remove_mod_path(target, self.mods_dir)
            self.tracker.remove_installed_mod(name)
        logger.info('Force removed %s', name)

    def cascade_uninstall(self, root):
        """Remove root and every mod that depends on it, directly or not.

        Each visited mod is removed in its own transaction. Mods that are
        already gone are not removed again but their dependents are still
        walked, so rerunning after a partial failure finishes the job.

        Returns:
            list - Names actually removed, in removal order
        """
        to_uninstall = [root]
        processed = set()
        removed = []

        while to_uninstall:
            current = to_uninstall.pop()
            if current in processed:
                continue
            processed.add(current)

            with self.tracker.transaction():
                mod = self.tracker.find_mod(current)
                if mod is None:
                    logger.debug('Cascade skipping %s, already removed', current)
                else:
                    self._delete(mod)
                dependents = self.dependents_of(current)
            if mod is not None:
                removed.append(current)
            to_uninstall.extend(sorted(dependents))

        if removed:
            logger.info('Cascade uninstall of %s removed %s', root, ', '.join(removed))
        return removed

    def reindex(self):
        """Drop rows whose path no longer exists; the filesystem is not touched.

        Returns:
            int - Number of rows cleaned
        """
        with self.tracker.transaction():
            stale = [mod.name for mod in self.tracker.get_installed_mods() if not Path(mod.path).exists()]
            for name in stale:
                self.tracker.remove_installed_mod(name)
        if stale:
            logger.info('Reindex removed %d stale entries: %s', len(stale), ', '.join(stale))
        return len(stale)
