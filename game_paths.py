"""
Game Paths
Locates the Balatro installation and Lovely's Mods folder on each platform
"""

import logging
import os
import re
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

STEAM_APP_ID = '2379780'
GAME_FOLDER = 'Balatro'

_VDF_PATH = re.compile(r'"path"\s+"([^"]+)"')


def read_library_folders(steam_root):
    """Get every Steam library listed in libraryfolders.vdf, including the root.

    Args:
        steam_root: str/Path - Steam installation directory

    Returns:
        list - Library Paths
    """
    steam_root = Path(steam_root)
    libraries = [steam_root]
    vdf = steam_root / 'steamapps' / 'libraryfolders.vdf'
    if vdf.is_file():
        try:
            content = vdf.read_text(encoding='utf-8', errors='replace')
        except OSError as e:
            logger.warning('Cannot read %s: %s', vdf, e)
            return libraries
        for raw in _VDF_PATH.findall(content):
            library = Path(raw.replace('\\\\', '\\'))
            if library not in libraries:
                libraries.append(library)
    return libraries


class GamePathResolver:
    """Finds Balatro installations; one subclass per host platform."""

    def steam_roots(self):
        return []

    def is_valid_installation(self, path):
        raise NotImplementedError

    def get_mods_dir(self, installation_path=None):
        raise NotImplementedError

    def find_installations(self):
        """Get every valid Balatro folder across all Steam libraries."""
        found = []
        for steam_root in self.steam_roots():
            if not steam_root.is_dir():
                continue
            for library in read_library_folders(steam_root):
                candidate = library / 'steamapps' / 'common' / GAME_FOLDER
                if candidate not in found and self.is_valid_installation(candidate):
                    found.append(candidate)
        return found

    def resolve_installation_path(self, preferred=None):
        """Get the active installation: preferred when valid, else the first found."""
        if preferred and self.is_valid_installation(Path(preferred)):
            return Path(preferred)
        installations = self.find_installations()
        return installations[0] if installations else None


class WindowsPathResolver(GamePathResolver):
    def steam_roots(self):
        roots = []
        for env_name in ('ProgramFiles(x86)', 'ProgramFiles'):
            base = os.environ.get(env_name)
            if base:
                roots.append(Path(base) / 'Steam')
        return roots

    def is_valid_installation(self, path):
        return (Path(path) / 'Balatro.exe').is_file()

    def get_mods_dir(self, installation_path=None):
        appdata = os.environ.get('APPDATA') or str(Path.home() / 'AppData' / 'Roaming')
        return Path(appdata) / 'Balatro' / 'Mods'


class MacPathResolver(GamePathResolver):
    def steam_roots(self):
        return [Path.home() / 'Library' / 'Application Support' / 'Steam']

    def is_valid_installation(self, path):
        return (Path(path) / 'Balatro.app').is_dir()

    def get_mods_dir(self, installation_path=None):
        return Path.home() / 'Library' / 'Application Support' / 'Balatro' / 'Mods'


class LinuxPathResolver(GamePathResolver):
    """Balatro runs under Proton, so the Mods folder lives inside its prefix."""

    def steam_roots(self):
        home = Path.home()
        return [
            home / '.local' / 'share' / 'Steam',
            home / '.steam' / 'steam',
            home / '.var' / 'app' / 'com.valvesoftware.Steam' / '.local' / 'share' / 'Steam',
        ]

    def is_valid_installation(self, path):
        path = Path(path)
        return (path / 'Balatro.exe').is_file() or (path / 'Balatro.love').is_file()

    def get_mods_dir(self, installation_path=None):
        if installation_path:
            # <library>/steamapps/common/Balatro -> <library>/steamapps
            steamapps = Path(installation_path).parent.parent
        else:
            steamapps = self.steam_roots()[0] / 'steamapps'
        return (steamapps / 'compatdata' / STEAM_APP_ID / 'pfx' / 'drive_c' / 'users'
                / 'steamuser' / 'AppData' / 'Roaming' / 'Balatro' / 'Mods')


def get_resolver(platform=None):
    """Pick the resolver for the host platform."""
    platform = platform or sys.platform
    if platform.startswith('win'):
        return WindowsPathResolver()
    if platform == 'darwin':
        return MacPathResolver()
    return LinuxPathResolver()


def get_mods_dir(installation_path=None, platform=None):
    return get_resolver(platform).get_mods_dir(installation_path)
