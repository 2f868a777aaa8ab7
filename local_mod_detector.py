"""
Local Mod Detector
Finds mods sitting in the Mods folder that the tracker does not know about
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from framework_installer import STEAMODDED, TALISMAN

logger = logging.getLogger(__name__)

STEAMODDED_HEADER = '--- STEAMODDED HEADER'
_HEADER_FIELD = re.compile(r'^---\s*([A-Z_]+)\s*:\s*(.*?)\s*$')


@dataclass
class DetectedMod:
    name: str
    path: str
    is_framework: bool = False
    framework: Optional[str] = None
    requires_steamodded: bool = False
    requires_talisman: bool = False
    author: str = ''
    version: Optional[str] = None
    source: str = 'manual'
    dependencies: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            'name': self.name,
            'path': self.path,
            'is_framework': self.is_framework,
            'framework': self.framework,
            'requires_steamodded': self.requires_steamodded,
            'requires_talisman': self.requires_talisman,
            'author': self.author,
            'version': self.version,
            'source': self.source,
            'dependencies': list(self.dependencies),
        }


def is_lovely_entry(name):
    """Lovely's own files live in the Mods folder too and are never mods."""
    return 'lovely' in name.lower()


def _same_path(a, b):
    try:
        return Path(a).resolve() == Path(b).resolve()
    except OSError:
        return str(a) == str(b)


class LocalModDetector:
    def __init__(self, mods_dir):
        """Initialize local mod detector.

        Args:
            mods_dir: str/Path - Lovely Mods directory to scan
        """
        self.mods_dir = Path(mods_dir)

    def _entries(self):
        if not self.mods_dir.is_dir():
            return []
        return sorted(
            (entry for entry in self.mods_dir.iterdir()
             if not entry.name.startswith('.') and not is_lovely_entry(entry.name)),
            key=lambda entry: entry.name.lower()
        )

    def _is_tracked(self, entry, installed):
        return any(_same_path(entry, mod.path) for mod in installed)

    def detect(self, installed, cached_mods=()):
        """Scan one level of the Mods folder for untracked mod folders.

        Args:
            installed: list - InstalledMod rows from the tracker
            cached_mods: list - CachedMod listing used to recover names and flags

        Returns:
            list - DetectedMod entries, never persisted
        """
        detected = []
        for entry in self._entries():
            if not entry.is_dir() or self._is_tracked(entry, installed):
                continue
            detected.append(self.classify(entry, cached_mods))
        return detected

    def find_untracked(self, installed):
        """Get every folder or file in the Mods folder no row references."""
        return [entry for entry in self._entries() if not self._is_tracked(entry, installed)]

    def classify(self, folder, cached_mods=()):
        """Describe one mod folder.

        Args:
            folder: Path - Mod folder
            cached_mods: list - CachedMod listing

        Returns:
            DetectedMod - Best guess at name, role and requirements
        """
        folder = Path(folder)
        framework = self.detect_framework(folder)
        if framework:
            return DetectedMod(
                name=framework,
                path=str(folder),
                is_framework=True,
                framework=framework,
                source='manifest',
            )

        for cached in cached_mods:
            if cached.matches(folder.name):
                return DetectedMod(
                    name=cached.title,
                    path=str(folder),
                    requires_steamodded=cached.requires_steamodded,
                    requires_talisman=cached.requires_talisman,
                    author=cached.author,
                    version=cached.version,
                    source='index',
                    dependencies=self._flags_to_dependencies(
                        cached.requires_steamodded, cached.requires_talisman
                    ),
                )

        metadata = self.read_manifest(folder) or self.read_lua_header(folder)
        if metadata:
            dependencies = metadata.get('dependencies', [])
            return DetectedMod(
                name=metadata.get('name') or folder.name,
                path=str(folder),
                requires_steamodded=metadata.get('requires_steamodded', False),
                requires_talisman=any(dep.lower().startswith('talisman') for dep in dependencies),
                author=metadata.get('author', ''),
                version=metadata.get('version'),
                source='manifest',
                dependencies=dependencies,
            )

        return DetectedMod(name=folder.name, path=str(folder))

    def detect_framework(self, folder):
        """Guess whether a folder holds Steamodded or Talisman itself.

        Returns:
            Optional str - Framework name or None
        """
        folder = Path(folder)
        lower = folder.name.lower()
        if lower.startswith('smods') or lower.startswith('steamodded'):
            return STEAMODDED.name
        if (folder / 'lovely').is_dir() and (folder / 'src' / 'loader.lua').is_file():
            return STEAMODDED.name
        if lower.startswith('talisman') or (folder / 'talisman.lua').is_file():
            return TALISMAN.name
        return None

    def _flags_to_dependencies(self, requires_steamodded, requires_talisman):
        dependencies = []
        if requires_steamodded:
            dependencies.append(STEAMODDED.name)
        if requires_talisman:
            dependencies.append(TALISMAN.name)
        return dependencies

    def read_manifest(self, folder):
        """Read a Steamodded JSON manifest from the top of a mod folder.

        Returns:
            Optional dict - name, author, version, dependencies, requires_steamodded
        """
        for manifest in sorted(Path(folder).glob('*.json')):
            try:
                with open(manifest, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, ValueError):
                continue
            if not isinstance(data, dict) or 'id' not in data or 'name' not in data:
                continue
            author = data.get('author', '')
            if isinstance(author, list):
                author = ', '.join(str(a) for a in author)
            # Entries look like "Talisman (>=2.0)"; keep the bare name
            dependencies = [
                re.split(r'[\s(<>=]', str(dep).strip(), maxsplit=1)[0]
                for dep in data.get('dependencies', []) if str(dep).strip()
            ]
            return {
                'name': data['name'],
                'author': author,
                'version': data.get('version'),
                'dependencies': dependencies,
                'requires_steamodded': True,
            }
        return None

    def read_lua_header(self, folder):
        """Read an old-style '--- STEAMODDED HEADER' block from a top-level Lua file."""
        lua_files = sorted(Path(folder).glob('*.lua'))
        main_lua = self._infer_main_lua(folder, lua_files)
        candidates = [main_lua] + [f for f in lua_files if f != main_lua] if main_lua else lua_files
        for lua_file in candidates:
            try:
                with open(lua_file, 'r', encoding='utf-8', errors='replace') as f:
                    head = [next(f, '') for _ in range(20)]
            except OSError:
                continue
            if not head or head[0].strip() != STEAMODDED_HEADER:
                continue
            fields = {}
            for line in head[1:]:
                match = _HEADER_FIELD.match(line.strip())
                if match:
                    fields[match.group(1)] = match.group(2)
            dependencies = [
                dep.strip() for dep in fields.get('DEPENDENCIES', '').strip('[]').split(',') if dep.strip()
            ]
            return {
                'name': fields.get('MOD_NAME') or Path(folder).name,
                'author': fields.get('MOD_AUTHOR', '').strip('[]'),
                'version': fields.get('VERSION'),
                'dependencies': dependencies,
                'requires_steamodded': True,
            }
        return None

    def _infer_main_lua(self, folder, lua_files):
        """Pick the Lua file most likely to be the entry point.

        Args:
            folder: Path - Mod folder
            lua_files: list - Lua file Paths at the top of the folder

        Returns:
            Optional Path - Entry file, or None when no choice stands out
        """
        if len(lua_files) == 1:
            return lua_files[0]

        folder_name_lower = Path(folder).name.lower()
        for lua_file in lua_files:
            if lua_file.stem.lower() == folder_name_lower:
                return lua_file

        best_match = None
        best_match_length = 0
        for lua_file in lua_files:
            lua_name_lower = lua_file.stem.lower()
            if lua_name_lower in folder_name_lower and len(lua_name_lower) > best_match_length:
                best_match = lua_file
                best_match_length = len(lua_name_lower)
            elif folder_name_lower in lua_name_lower and len(folder_name_lower) > best_match_length:
                best_match = lua_file
                best_match_length = len(folder_name_lower)

        if best_match and best_match_length >= 3:
            return best_match
        return None
