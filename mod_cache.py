"""
Mod Cache
Keeps the mod index listing and framework version lists on disk with a fetch timestamp
"""

import json
import logging
import os
import re
import tempfile
import time
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional

from archive_extractor import remove_directory_safe
from mod_errors import InvalidInputError, ModIOError

logger = logging.getLogger(__name__)

MODS_KIND = 'mods'
_KIND_PATTERN = re.compile(r'[a-z0-9_-]+')


@dataclass
class CachedMod:
    """One entry of the remote mod index as cached locally."""
    title: str
    folder_name: Optional[str] = None
    version: Optional[str] = None
    author: str = ''
    repo: str = ''
    requires_steamodded: bool = False
    requires_talisman: bool = False
    thumbnail: Optional[str] = None
    download_url: Optional[str] = None
    categories: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data):
        return cls(
            title=data.get('title', ''),
            folder_name=data.get('folder_name') or data.get('folderName') or None,
            version=data.get('version') or None,
            author=data.get('author', ''),
            repo=data.get('repo', ''),
            requires_steamodded=bool(data.get('requires_steamodded', data.get('requires-steamodded', False))),
            requires_talisman=bool(data.get('requires_talisman', data.get('requires-talisman', False))),
            thumbnail=data.get('thumbnail'),
            download_url=data.get('download_url') or data.get('downloadURL') or None,
            categories=list(data.get('categories') or []),
        )

    def matches(self, name):
        """Match a folder or mod name against title or folder name, ignoring case."""
        lowered = name.lower()
        if self.title and self.title.lower() == lowered:
            return True
        return bool(self.folder_name) and self.folder_name.lower() == lowered


class ModCache:
    def __init__(self, cache_dir):
        """Initialize the cache store.

        Args:
            cache_dir: str/Path - Directory holding the cache files
        """
        self.cache_dir = Path(cache_dir)

    def _file_for(self, kind):
        if kind == MODS_KIND:
            return self.cache_dir / 'mods_cache.json'
        # One file per kind; names that would need rewriting are refused
        lowered = str(kind).lower()
        if not _KIND_PATTERN.fullmatch(lowered):
            raise InvalidInputError(f'Invalid cache kind: {kind!r}', path=kind)
        return self.cache_dir / f'versions_{lowered}.json'

    def load(self, kind):
        """Read a cached payload.

        Args:
            kind: str - 'mods' or a framework name

        Returns:
            tuple - (payload, fetched_at) or None when nothing usable is cached
        """
        cache_file = self._file_for(kind)
        if not cache_file.exists():
            return None
        try:
            with open(cache_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            payload = data['payload']
            fetched_at = int(data['fetched_at'])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning('Ignoring unreadable cache file %s: %s', cache_file, e)
            return None
        if kind == MODS_KIND:
            payload = [CachedMod.from_dict(entry) for entry in payload]
        return payload, fetched_at

    def save(self, kind, payload):
        """Overwrite the cached payload for kind and stamp the current time."""
        if kind == MODS_KIND:
            payload = [asdict(entry) if isinstance(entry, CachedMod) else dict(entry) for entry in payload]
        else:
            payload = [str(version) for version in payload]
        record = {'fetched_at': int(time.time()), 'payload': payload}
        cache_file = self._file_for(kind)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix='.cache-', suffix='.json', dir=self.cache_dir)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(record, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, cache_file)
        except OSError as e:
            raise ModIOError(f'Failed to write cache {cache_file.name}: {e}', path=cache_file) from e
        logger.debug('Cached %d %s entries', len(payload), kind)

    def clear(self):
        """Drop every partition at once."""
        if not self.cache_dir.exists():
            return
        trash = self.cache_dir.with_name(f'.{self.cache_dir.name}-trash-{uuid.uuid4().hex}')
        try:
            os.replace(self.cache_dir, trash)
        except OSError as e:
            raise ModIOError(f'Failed to clear cache: {e}', path=self.cache_dir) from e
        remove_directory_safe(trash)
        logger.info('Cache cleared')

    def load_mods(self):
        return self.load(MODS_KIND)

    def save_mods(self, mods):
        self.save(MODS_KIND, mods)

    def load_versions(self, framework):
        return self.load(framework)

    def save_versions(self, framework, versions):
        self.save(framework, versions)

    def cached_mods(self):
        """Cached listing, or an empty list when nothing is cached."""
        cached = self.load_mods()
        return cached[0] if cached else []
