"""
Unit tests for mod_manager.py

The manager is exercised through its result dicts, the way the UI uses it.
"""

from unittest.mock import MagicMock

import pytest

from app_config import AppConfig
from conftest import FakeResponse, FakeSession
from framework_installer import STEAMODDED, download_url
from mod_cache import CachedMod
from mod_manager import DISABLE_MARKER, ModManager, is_mod_enabled_at
from mod_errors import NotFoundError


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def resolver():
    resolver = MagicMock()
    resolver.is_valid_installation.side_effect = lambda path: (path / 'Balatro.exe').is_file()
    resolver.find_installations.return_value = []
    return resolver


@pytest.fixture
def manager(data_dir, mods_dir, session, resolver):
    config = AppConfig(data_dir=data_dir, mods_dir=mods_dir, github_token='t0ken')
    return ModManager(config=config, session=session, path_resolver=resolver)


# ─────────────────────────────────────────────────────────────────────────────
# 1. Install and remove
# ─────────────────────────────────────────────────────────────────────────────

class TestInstallRemove:

    def test_install_mod_from_url(self, manager, session, mods_dir, zip_bytes):
        url = 'https://github.com/MathIsFun0/Cryptid/archive/refs/heads/main.zip'
        session.routes[url] = FakeResponse(200, content=zip_bytes({'Cryptid-main/Cryptid.lua': b'-- c'}))
        result = manager.install_mod(url, 'Cryptid', dependencies=['Steamodded', 'Talisman'], version='0.5.2')
        assert result['success'] is True
        assert (mods_dir / 'Cryptid' / 'Cryptid.lua').is_file()
        assert manager.get_installed_mods() == [{
            'name': 'Cryptid',
            'path': str(mods_dir / 'Cryptid'),
            'dependencies': ['Steamodded', 'Talisman'],
            'current_version': '0.5.2',
        }]

    def test_install_mod_download_failure(self, manager):
        result = manager.install_mod('https://example.com/missing.zip', 'Missing')
        assert result['success'] is False
        assert result['error_kind'] == 'not-found'
        assert manager.get_installed_mods() == []

    def test_install_framework_latest(self, manager, session, zip_bytes):
        session.routes['https://api.github.com/repos/Steamodded/smods/releases/latest'] = \
            FakeResponse(200, {'tag_name': '1.0.0'})
        session.routes[download_url(STEAMODDED, '1.0.0')] = \
            FakeResponse(200, content=zip_bytes({'smods-1.0.0/src/core.lua': b''}))
        result = manager.install_framework('steamodded')
        assert result['success'] is True
        assert result['version'] == '1.0.0'
        assert manager.check_mod_installation('Steamodded') is True

    def test_install_framework_with_html_release_page(self, manager, session):
        session.routes['https://api.github.com/repos/Steamodded/smods/releases/latest'] = \
            FakeResponse(200, None, b'<html>portal</html>')
        result = manager.install_framework('Steamodded')
        assert result['success'] is False
        assert result['error_kind'] == 'remote-failure'

    def test_uninstall_framework_reports_dependents(self, manager, make_mod):
        manager.add_installed_mod('Steamodded', make_mod('smods'), [], '1.0.0')
        manager.add_installed_mod('Cryptid', make_mod('Cryptid'), ['Steamodded'])
        result = manager.uninstall_mod('Steamodded')
        assert result['success'] is False
        assert result['requires_cascade'] is True
        assert result['dependents'] == ['Cryptid']
        assert result['error'] == 'Use cascade uninstall to remove Steamodded with 1 dependents'

        result = manager.cascade_uninstall('Steamodded')
        assert result['success'] is True
        assert result['removed'] == ['Steamodded', 'Cryptid']
        assert manager.get_installed_mods() == []

    def test_uninstall_unknown(self, manager):
        result = manager.uninstall_mod('Ghost')
        assert result['error_kind'] == 'not-found'

    def test_reindex(self, manager, make_mod):
        manager.add_installed_mod('A', make_mod('A'))
        manager.add_installed_mod('B', make_mod('B').parent / 'gone')
        result = manager.reindex_mods()
        assert result['cleaned'] == 1
        assert [m['name'] for m in manager.get_installed_mods()] == ['A']

    def test_refresh_removes_untracked(self, manager, mods_dir, make_mod):
        manager.add_installed_mod('A', make_mod('A'))
        make_mod('Stray')
        make_mod('lovely')
        (mods_dir / 'stray.lua').write_text('x')
        result = manager.refresh_mods_folder()
        assert sorted(result['removed']) == ['Stray', 'stray.lua']
        assert sorted(p.name for p in mods_dir.iterdir()) == ['A', 'lovely']

    def test_delete_manual_mod(self, manager, tmp_path, make_mod):
        folder = make_mod('Manual')
        assert manager.delete_manual_mod(folder)['success'] is True
        assert not folder.exists()
        outside = tmp_path / 'Outside'
        outside.mkdir()
        assert manager.delete_manual_mod(outside)['error_kind'] == 'invalid-input'
        assert outside.exists()


# ─────────────────────────────────────────────────────────────────────────────
# 2. Archive ingestion
# ─────────────────────────────────────────────────────────────────────────────

class TestIngestion:

    def test_dropped_archive(self, manager, tmp_path, mods_dir, zip_bytes):
        archive = tmp_path / 'Jokers.zip'
        archive.write_bytes(zip_bytes({'Jokers/jokers.lua': b'-- j'}))
        result = manager.process_dropped_file(archive)
        assert result['success'] is True
        assert (mods_dir / 'Jokers' / 'jokers.lua').is_file()

    def test_dropped_archive_without_lua(self, manager, tmp_path, mods_dir, zip_bytes):
        archive = tmp_path / 'Notes.zip'
        archive.write_bytes(zip_bytes({'notes.txt': b'hi'}))
        result = manager.process_dropped_file(archive)
        assert result['success'] is False
        assert result['error_kind'] == 'invalid-input'
        assert list(mods_dir.iterdir()) == []

    def test_unsupported_drop(self, manager, tmp_path):
        archive = tmp_path / 'Mod.rar'
        archive.write_bytes(b'rar')
        result = manager.process_dropped_file(archive)
        assert result['error'] == 'Unsupported file format. Only ZIP, TAR, and TAR.GZ are supported.'

    def test_buffer_is_not_validated_by_default(self, manager, mods_dir, tar_bytes):
        data = tar_bytes({'Pack/readme.txt': b'hi'}, compressed=True)
        assert manager.process_mod_archive('Pack.tar.gz', data)['success'] is True
        assert (mods_dir / 'Pack' / 'readme.txt').is_file()
        assert manager.process_mod_archive('Pack2.tar.gz', data, validate=True)['success'] is False


# ─────────────────────────────────────────────────────────────────────────────
# 3. Enable / disable
# ─────────────────────────────────────────────────────────────────────────────

class TestToggle:

    def test_round_trip(self, manager, make_mod):
        folder = make_mod('Cryptid')
        assert manager.is_mod_enabled('Cryptid') is True
        assert manager.toggle_mod_enabled('Cryptid', False)['success'] is True
        assert (folder / DISABLE_MARKER).exists()
        assert manager.is_mod_enabled_by_path(folder) is False
        manager.toggle_mod_enabled_by_path(folder, True)
        assert manager.is_mod_enabled('Cryptid') is True
        assert not (folder / DISABLE_MARKER).exists()

    def test_enabling_twice_is_harmless(self, manager, make_mod):
        make_mod('Cryptid')
        assert manager.toggle_mod_enabled('Cryptid', True)['success'] is True
        assert manager.is_mod_enabled('Cryptid') is True

    def test_missing_mod(self, manager, mods_dir):
        with pytest.raises(NotFoundError):
            is_mod_enabled_at(mods_dir / 'Ghost')
        assert manager.toggle_mod_enabled('Ghost', False)['error_kind'] == 'not-found'


# ─────────────────────────────────────────────────────────────────────────────
# 4. Updates, cache and settings
# ─────────────────────────────────────────────────────────────────────────────

class TestCacheAndSettings:

    def test_update_available(self, manager, make_mod):
        manager.add_installed_mod('Cryptid', make_mod('Cryptid'), [], '0.5.1')
        manager.add_installed_mod('Other', make_mod('Other'), [], '1.0')
        manager.save_mods_cache([
            CachedMod(title='Cryptid', version='0.5.2'),
            CachedMod(title='Other', version='1.0'),
        ])
        assert manager.mod_update_available('Cryptid') is True
        assert manager.mod_update_available('Other') is False
        assert manager.mod_update_available('Unknown') is False

    def test_clear_cache(self, manager):
        manager.save_mods_cache([CachedMod(title='Cryptid')])
        manager.installer.cache.save_versions('steamodded', ['1.0.0'])
        assert manager.clear_cache()['success'] is True
        assert manager.load_mods_cache() is None
        assert manager.load_versions_cache('Steamodded') is None

    def test_detected_local_mods(self, manager, make_mod):
        manager.add_installed_mod('A', make_mod('A'))
        make_mod('smods')
        detected = manager.get_detected_local_mods()
        assert [(m['name'], m['is_framework']) for m in detected] == [('Steamodded', True)]
        assert manager.check_mod_installation('Steamodded') is True
        assert manager.check_mod_installation('Talisman') is False

    def test_last_fetched(self, manager):
        assert manager.get_last_fetched() == 0
        manager.update_last_fetched()
        assert manager.get_last_fetched() > 0

    def test_installation_path(self, manager, tmp_path):
        game = tmp_path / 'Balatro'
        game.mkdir()
        assert manager.set_installation_path(game)['success'] is False
        (game / 'Balatro.exe').write_bytes(b'')
        assert manager.set_installation_path(game / 'Balatro.exe')['success'] is True
        assert manager.get_installation_path() == str(game)
        assert manager.check_existing_installation() == str(game)
        (game / 'Balatro.exe').unlink()
        assert manager.check_existing_installation() is None
        assert manager.get_installation_path() is None

    def test_backup_round_trip(self, manager, make_mod):
        folder = make_mod('Cryptid', body=b'-- good')
        assert manager.backup_local_mod(folder)['success'] is True
        (folder / 'main.lua').write_bytes(b'-- bad')
        assert manager.restore_from_backup(folder)['success'] is True
        assert (folder / 'main.lua').read_bytes() == b'-- good'
        assert manager.remove_backup(folder)['removed'] == 1
        assert manager.restore_from_backup(folder)['error_kind'] == 'not-found'
