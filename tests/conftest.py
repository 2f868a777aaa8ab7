"""
Shared fixtures: temporary record store, Mods folder, archive builders and a fake HTTP session.
"""

import io
import tarfile
import zipfile

import pytest


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b''):
        self.status_code = status_code
        self._json = json_data
        self.content = content

    def json(self):
        if self._json is None:
            raise ValueError('No JSON body')
        return self._json


class FakeSession:
    """Answers GET requests from a url -> FakeResponse (or exception) table."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None, **kwargs):
        self.calls.append(url)
        answer = self.routes.get(url)
        if answer is None:
            return FakeResponse(404, {'message': 'Not Found'})
        if isinstance(answer, Exception):
            raise answer
        return answer


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / 'data'
    path.mkdir()
    return path


@pytest.fixture
def mods_dir(tmp_path):
    path = tmp_path / 'Mods'
    path.mkdir()
    return path


@pytest.fixture
def tracker(data_dir):
    from mod_tracker import ModTracker
    return ModTracker(data_dir)


@pytest.fixture
def cache(data_dir):
    from mod_cache import ModCache
    return ModCache(data_dir / 'cache')


@pytest.fixture
def zip_bytes():
    """Build a zip archive in memory from {entry name: bytes}."""
    def build(entries):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w') as archive:
            for name, data in entries.items():
                archive.writestr(name, data)
        return buffer.getvalue()
    return build


@pytest.fixture
def tar_bytes():
    """Build a tar (optionally gzipped) archive in memory from {entry name: bytes}."""
    def build(entries, compressed=False):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode='w:gz' if compressed else 'w') as archive:
            for name, data in entries.items():
                info = tarfile.TarInfo(name)
                info.size = len(data)
                archive.addfile(info, io.BytesIO(data))
        return buffer.getvalue()
    return build


@pytest.fixture
def make_mod(mods_dir):
    """Create a mod folder holding one Lua file and return its path."""
    def build(folder, lua_name='main.lua', body=b'-- mod\n'):
        path = mods_dir / folder
        path.mkdir(parents=True, exist_ok=True)
        (path / lua_name).write_bytes(body)
        return path
    return build


def releases_payload(*tags):
    """Release feed rows, newest first by published_at."""
    return [
        {'tag_name': tag, 'draft': False, 'published_at': f'2024-01-{len(tags) - i:02d}T00:00:00Z'}
        for i, tag in enumerate(tags)
    ]


@pytest.fixture
def releases():
    return releases_payload
