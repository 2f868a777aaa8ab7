"""
Unit tests for dependency_graph.py

Covers dependent lookup, guarded single removal, cascade removal over
shared and cyclic dependencies, and reindexing after manual deletions.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from dependency_graph import DependencyGraph, remove_mod_path
from mod_errors import HasDependentsError, InvalidInputError, ModIOError, NotFoundError


@pytest.fixture
def graph(tracker, mods_dir):
    return DependencyGraph(tracker, mods_dir)


@pytest.fixture
def install(tracker, make_mod):
    """Create a mod folder and record it."""
    def build(name, dependencies=(), folder=None):
        path = make_mod(folder or name)
        tracker.add_installed_mod(name, path, list(dependencies), '1.0')
        return path
    return build


# ─────────────────────────────────────────────────────────────────────────────
# 1. Dependents
# ─────────────────────────────────────────────────────────────────────────────

class TestDependents:

    def test_self_loop_is_excluded(self, graph, install):
        install('Steamodded', ['Steamodded'], folder='smods')
        install('A', ['Steamodded'])
        assert graph.dependents_of('Steamodded') == {'A'}

    def test_empty_name_rejected(self, graph):
        with pytest.raises(InvalidInputError):
            graph.dependents_of('')

    def test_framework_names(self, graph):
        assert graph.is_framework('Steamodded')
        assert graph.is_framework('talisman')
        assert not graph.is_framework('Cryptid')


# ─────────────────────────────────────────────────────────────────────────────
# 2. Single removal
# ─────────────────────────────────────────────────────────────────────────────

class TestUninstallOne:

    def test_regular_mod(self, graph, install, tracker):
        path = install('A', ['Steamodded'])
        graph.uninstall_one('A')
        assert not path.exists()
        assert not tracker.mod_exists('A')

    def test_framework_with_dependents_is_refused(self, graph, install, tracker):
        smods = install('Steamodded', folder='smods')
        a = install('A', ['Steamodded'])
        b = install('B', ['Steamodded'])
        with pytest.raises(HasDependentsError) as exc_info:
            graph.uninstall_one('Steamodded')
        assert exc_info.value.dependents == ['A', 'B']
        assert exc_info.value.kind == 'conflict'
        assert smods.exists() and a.exists() and b.exists()
        assert len(tracker.get_installed_mods()) == 3

    def test_framework_with_only_self_loop(self, graph, install, tracker):
        smods = install('Steamodded', ['Steamodded'], folder='smods')
        graph.uninstall_one('Steamodded')
        assert not smods.exists()
        assert tracker.get_installed_mods() == []

    def test_non_framework_ignores_dependents(self, graph, install, tracker):
        install('Lib')
        install('A', ['Lib'])
        graph.uninstall_one('Lib')
        assert not tracker.mod_exists('Lib')
        assert tracker.mod_exists('A')

    def test_unknown_mod(self, graph):
        with pytest.raises(NotFoundError):
            graph.uninstall_one('Ghost')

    def test_force_uninstall_skips_guard(self, graph, install, tracker):
        smods = install('Steamodded', folder='smods')
        install('A', ['Steamodded'])
        graph.force_uninstall('Steamodded')
        assert not smods.exists()
        assert tracker.mod_exists('A')


# ─────────────────────────────────────────────────────────────────────────────
# 3. Cascade removal
# ─────────────────────────────────────────────────────────────────────────────

class TestCascade:

    def test_diamond(self, graph, install, tracker):
        install('Steamodded', folder='smods')
        install('A', ['Steamodded'])
        install('C', ['Steamodded'])
        install('B', ['A'])
        install('D', ['A', 'C'])
        install('Unrelated', ['Talisman'])

        removed = graph.cascade_uninstall('Steamodded')

        assert removed[0] == 'Steamodded'
        assert sorted(removed) == ['A', 'B', 'C', 'D', 'Steamodded']
        assert len(removed) == len(set(removed))
        assert [m.name for m in tracker.get_installed_mods()] == ['Unrelated']

    def test_second_cascade_is_noop(self, graph, install, tracker):
        install('Steamodded', folder='smods')
        install('A', ['Steamodded'])
        graph.cascade_uninstall('Steamodded')
        assert graph.cascade_uninstall('Steamodded') == []

    def test_rerun_finishes_interrupted_cascade(self, graph, install, tracker):
        install('Steamodded', folder='smods')
        a = install('A', ['Steamodded'])
        b = install('B', ['Steamodded'])

        def fail_on_b(path, mods_dir=None):
            if Path(path).name == 'B':
                raise ModIOError('B is locked', path=path)
            remove_mod_path(path, mods_dir)

        with patch('dependency_graph.remove_mod_path', side_effect=fail_on_b):
            with pytest.raises(ModIOError):
                graph.cascade_uninstall('Steamodded')
        assert not tracker.mod_exists('Steamodded')
        assert sorted(m.name for m in tracker.get_installed_mods()) == ['A', 'B']

        assert sorted(graph.cascade_uninstall('Steamodded')) == ['A', 'B']
        assert tracker.get_installed_mods() == []
        assert not a.exists() and not b.exists()

    def test_cycle_terminates(self, graph, install, tracker):
        install('A', ['B'])
        install('B', ['A'])
        assert sorted(graph.cascade_uninstall('A')) == ['A', 'B']
        assert tracker.get_installed_mods() == []

    def test_leaf(self, graph, install, tracker):
        install('Steamodded', folder='smods')
        install('A', ['Steamodded'])
        assert graph.cascade_uninstall('A') == ['A']
        assert tracker.mod_exists('Steamodded')


# ─────────────────────────────────────────────────────────────────────────────
# 4. Reindex and path removal
# ─────────────────────────────────────────────────────────────────────────────

class TestReindex:

    def test_removes_only_missing(self, graph, install, tracker):
        install('A')
        b = install('B')
        install('C')
        remove_mod_path(b)
        assert graph.reindex() == 1
        assert sorted(m.name for m in tracker.get_installed_mods()) == ['A', 'C']

    def test_nothing_to_clean(self, graph, install):
        install('A')
        assert graph.reindex() == 0


class TestRemoveModPath:

    def test_outside_mods_dir_rejected(self, tmp_path, mods_dir):
        outside = tmp_path / 'elsewhere'
        outside.mkdir()
        with pytest.raises(InvalidInputError):
            remove_mod_path(outside, mods_dir)
        assert outside.exists()

    def test_single_file(self, mods_dir):
        target = mods_dir / 'loose.lua'
        target.write_text('x')
        remove_mod_path(target, mods_dir)
        assert not target.exists()

    def test_missing_path_is_noop(self, mods_dir):
        remove_mod_path(mods_dir / 'gone', mods_dir)
