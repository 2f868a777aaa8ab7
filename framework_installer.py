"""
Framework Installer
Resolves Steamodded and Talisman release versions and installs them into the Mods folder
"""

import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path

import requests

from archive_extractor import ArchiveFormat, extract_bytes, extract_file, remove_directory_safe
from mod_errors import (
    InvalidInputError,
    ModIOError,
    ModManagerError,
    RateLimitError,
    RemoteError,
    VersionNotFoundError,
)

logger = logging.getLogger(__name__)

GITHUB_HOST = 'github.com'
GITHUB_API = 'https://api.github.com'


@dataclass(frozen=True)
class Framework:
    name: str
    org: str
    repo: str
    target_dir: str

    @property
    def cache_kind(self):
        return self.name.lower()

    @property
    def repo_url(self):
        return f'https://{GITHUB_HOST}/{self.org}/{self.repo}'


STEAMODDED = Framework(name='Steamodded', org='Steamodded', repo='smods', target_dir='smods')
TALISMAN = Framework(name='Talisman', org='SpectralPack', repo='Talisman', target_dir='Talisman')

FRAMEWORKS = {framework.name: framework for framework in (STEAMODDED, TALISMAN)}


def is_framework_name(name):
    return bool(name) and name.lower() in (key.lower() for key in FRAMEWORKS)


def get_framework(name):
    """Look up a framework by name, ignoring case.

    Raises:
        InvalidInputError - name is not one of the reserved frameworks
    """
    for key, framework in FRAMEWORKS.items():
        if name and key.lower() == name.lower():
            return framework
    raise InvalidInputError(f'Invalid mod type: {name}', path=name)


def download_url(framework, tag):
    """Build the tag archive URL for a framework release."""
    if isinstance(framework, str):
        framework = get_framework(framework)
    return f'https://{GITHUB_HOST}/{framework.org}/{framework.repo}/archive/refs/tags/{tag}.zip'


def fetch_archive(session, url, timeout=30, headers=None):
    """Download an archive into memory.

    Args:
        session: requests.Session - HTTP session
        url: str - Archive URL
        timeout: float - Request timeout in seconds
        headers: Optional dict - Extra request headers

    Returns:
        bytes - Archive contents

    Raises:
        VersionNotFoundError - server answered 404
        RemoteError - transport failure or any other non-200 answer
    """
    try:
        response = session.get(url, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        raise RemoteError(f'Failed to download {url}: {e}', path=url) from e
    if response.status_code == 404:
        raise VersionNotFoundError(f'Archive not found at {url}', path=url)
    if response.status_code != 200:
        raise RemoteError(f'Failed to download {url}: HTTP {response.status_code}', path=url)
    return response.content


class FrameworkInstaller:
    def __init__(self, mods_dir, cache, tracker, session=None, token=None, timeout=30):
        """Initialize framework installer.

        Args:
            mods_dir: str/Path - Lovely Mods directory
            cache: ModCache - Version list cache
            tracker: ModTracker - Record store for installed mods
            session: Optional requests.Session - HTTP session to use
            token: Optional str - GitHub token, else github_token setting or GITHUB_TOKEN
            timeout: float - Request timeout in seconds
        """
        self.mods_dir = Path(mods_dir)
        self.cache = cache
        self.tracker = tracker
        self.session = session or requests.Session()
        self.token = token
        self.timeout = timeout

    def _headers(self):
        headers = {'Accept': 'application/vnd.github+json'}
        token = self.token or self.tracker.get_setting('github_token') or os.environ.get('GITHUB_TOKEN')
        if token:
            headers['Authorization'] = f'token {token}'
        return headers

    def _api_get(self, path, params=None):
        url = f'{GITHUB_API}{path}'
        try:
            response = self.session.get(url, headers=self._headers(), params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteError(f'Failed to query {url}: {e}', path=url) from e

        if response.status_code == 403:
            try:
                message = response.json().get('message', '')
            except ValueError:
                message = ''
            if 'rate limit' in message.lower():
                raise RateLimitError('GitHub API rate limit exceeded', path=url)
        return response

    def fetch_remote_versions(self, framework):
        """Query the release feed for every published tag, newest first."""
        path = f'/repos/{framework.org}/{framework.repo}/releases'
        response = self._api_get(path, params={'per_page': 100})
        if response.status_code != 200:
            raise RemoteError(
                f'Failed to fetch {framework.name} releases: HTTP {response.status_code}',
                path=framework.repo_url
            )
        try:
            releases = response.json()
        except ValueError as e:
            raise RemoteError(f'Malformed release feed for {framework.name}', path=framework.repo_url) from e
        if not isinstance(releases, list):
            raise RemoteError(f'Malformed release feed for {framework.name}', path=framework.repo_url)

        releases = [r for r in releases if isinstance(r, dict) and r.get('tag_name') and not r.get('draft')]
        # ISO timestamps sort lexically; sorted() is stable for equal keys
        releases = sorted(releases, key=lambda r: r.get('published_at') or '', reverse=True)
        return [r['tag_name'] for r in releases]

    def list_versions(self, name, refresh=False):
        """List installable versions, newest first.

        Args:
            name: str - Framework name
            refresh: bool - Ignore the cached list and query the feed

        Returns:
            list - Version tags
        """
        framework = get_framework(name)
        if not refresh:
            cached = self.cache.load_versions(framework.cache_kind)
            if cached and cached[0]:
                return list(cached[0])

        versions = self.fetch_remote_versions(framework)
        self.cache.save_versions(framework.cache_kind, versions)
        logger.info('Fetched %d %s versions', len(versions), framework.name)
        return versions

    def resolve_latest(self, name):
        """Get the newest version tag, preferring a non-empty cached list."""
        framework = get_framework(name)
        cached = self.cache.load_versions(framework.cache_kind)
        if cached and cached[0]:
            return cached[0][0]

        response = self._api_get(f'/repos/{framework.org}/{framework.repo}/releases/latest')
        if response.status_code == 404:
            raise VersionNotFoundError(f'No releases published for {framework.name}', path=framework.repo_url)
        if response.status_code != 200:
            raise RemoteError(
                f'Failed to fetch latest {framework.name} release: HTTP {response.status_code}',
                path=framework.repo_url
            )
        try:
            release = response.json()
        except ValueError as e:
            raise RemoteError(f'Malformed release feed for {framework.name}', path=framework.repo_url) from e
        if not isinstance(release, dict):
            raise RemoteError(f'Malformed release feed for {framework.name}', path=framework.repo_url)
        tag = release.get('tag_name')
        if not tag:
            raise VersionNotFoundError(f'No releases published for {framework.name}', path=framework.repo_url)
        return tag

    def latest_download_url(self, name):
        framework = get_framework(name)
        return download_url(framework, self.resolve_latest(framework.name))

    def install(self, name, version):
        """Download and install one framework version.

        Args:
            name: str - Framework name
            version: str - Release tag

        Returns:
            str - Installed framework folder

        Raises:
            VersionNotFoundError - tag does not exist remotely
            RemoteError - download failed
            ArchiveReadError / InvalidModContentError / ModIOError - extraction failed
        """
        framework = get_framework(name)
        if not version:
            raise InvalidInputError(f'No version given for {framework.name}')

        url = download_url(framework, version)
        logger.info('Downloading %s %s from %s', framework.name, version, url)
        try:
            data = fetch_archive(self.session, url, timeout=self.timeout)
        except VersionNotFoundError as e:
            raise VersionNotFoundError(f'{framework.name} version {version} not found', path=url) from e

        target = self.deploy_archive(
            data, ArchiveFormat.ZIP, framework.target_dir,
            validate=True, record=(framework.name, [], version)
        )
        logger.info('Installed %s %s into %s', framework.name, version, target)
        return target

    def deploy_archive(self, source, fmt, folder_name, validate=True, record=None):
        """Extract an archive next to its final folder, then swap it in.

        The old folder is only replaced once extraction succeeded, and the row
        is only written once the new folder is in place.

        Args:
            source: str/Path/bytes - Archive on disk or in memory
            fmt: ArchiveFormat/str - Archive format
            folder_name: str - Folder name inside the Mods directory
            validate: bool - Require at least one Lua script (archives on disk always are)
            record: Optional tuple - (name, dependencies, version) to record on success

        Returns:
            str - Final mod folder
        """
        if not folder_name or Path(folder_name).name != folder_name or folder_name in ('.', '..'):
            raise InvalidInputError(f'Invalid mod folder name: {folder_name!r}', path=folder_name)
        try:
            self.mods_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ModIOError(f'Failed to create mods directory: {e}', path=self.mods_dir) from e

        target = self.mods_dir / folder_name
        staging = self.mods_dir / f'.{folder_name}-staging-{uuid.uuid4().hex}'
        previous = None
        try:
            if isinstance(source, (bytes, bytearray, memoryview)):
                extract_bytes(source, fmt, staging, validate=validate)
            else:
                extract_file(source, staging)
            with self.tracker.transaction():
                try:
                    if target.exists():
                        previous = self.mods_dir / f'.{folder_name}-old-{uuid.uuid4().hex}'
                        os.replace(target, previous)
                    os.replace(staging, target)
                except OSError as e:
                    if previous is not None and not target.exists():
                        os.replace(previous, target)
                        previous = None
                    raise ModIOError(f'Failed to move {folder_name} into place: {e}', path=target) from e
                if record is not None:
                    name, dependencies, version = record
                    try:
                        self.tracker.add_installed_mod(name, target, dependencies, version)
                    except ModManagerError:
                        remove_directory_safe(target)
                        if previous is not None:
                            os.replace(previous, target)
                            previous = None
                        raise
        finally:
            remove_directory_safe(staging)
        if previous is not None:
            remove_directory_safe(previous)
        return str(target)
