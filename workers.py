"""
Background Workers
QThread workers that run downloads, extraction and removals off the UI thread
"""

import logging

from PyQt6.QtCore import QThread, pyqtSignal

logger = logging.getLogger(__name__)


class FrameworkInstallWorker(QThread):
    """Thread worker for framework installation.

    Signals:
        finished(success, message) - Installation complete
        progress(message) - Installation progress update
    """
    finished = pyqtSignal(bool, str)
    progress = pyqtSignal(str)

    def __init__(self, mod_manager, framework, version=None):
        """Initialize framework installation worker.

        Args:
            mod_manager: ModManager - Mod manager instance
            framework: str - 'Steamodded' or 'Talisman'
            version: Optional str - Release tag, newest when omitted
        """
        super().__init__()
        self.mod_manager = mod_manager
        self.framework = framework
        self.version = version

    def run(self):
        try:
            label = f'{self.framework} {self.version}' if self.version else f'latest {self.framework}'
            self.progress.emit(f'Installing {label}...')
            result = self.mod_manager.install_framework(self.framework, self.version)
            if result['success']:
                self.finished.emit(True, result['message'])
            else:
                self.finished.emit(False, result['error'])
        except Exception as e:
            logger.exception('Framework install crashed')
            self.finished.emit(False, str(e))


class ModInstallWorker(QThread):
    finished = pyqtSignal(bool, str)
    progress = pyqtSignal(str)

    def __init__(self, mod_manager, url, name, folder_name=None, dependencies=(), version=None):
        """Initialize mod installation worker.

        Args:
            mod_manager: ModManager - Mod manager instance
            url: str - Archive download URL
            name: str - Mod name to record
            folder_name: Optional str - Target folder inside Mods
            dependencies: iterable - Required mod names
            version: Optional str - Version to record
        """
        super().__init__()
        self.mod_manager = mod_manager
        self.url = url
        self.name = name
        self.folder_name = folder_name
        self.dependencies = list(dependencies)
        self.version = version

    def run(self):
        try:
            self.progress.emit(f'Downloading {self.name}...')
            result = self.mod_manager.install_mod(
                self.url,
                self.name,
                folder_name=self.folder_name,
                dependencies=self.dependencies,
                version=self.version
            )
            if result['success']:
                self.finished.emit(True, result['message'])
            else:
                self.finished.emit(False, result['error'])
        except Exception as e:
            logger.exception('Mod install crashed')
            self.finished.emit(False, str(e))


class UninstallWorker(QThread):
    """Worker thread for single mod removal.

    Signals:
        finished(success, message) - Removal complete
        dependents_found(result) - Framework still has dependents; offer cascade
    """
    finished = pyqtSignal(bool, str)
    dependents_found = pyqtSignal(dict)

    def __init__(self, mod_manager, name):
        super().__init__()
        self.mod_manager = mod_manager
        self.name = name

    def run(self):
        try:
            result = self.mod_manager.uninstall_mod(self.name)
            if result['success']:
                self.finished.emit(True, result['message'])
            elif result.get('requires_cascade'):
                self.dependents_found.emit(result)
            else:
                self.finished.emit(False, result['error'])
        except Exception as e:
            logger.exception('Uninstall crashed')
            self.finished.emit(False, str(e))


class CascadeUninstallWorker(QThread):
    finished = pyqtSignal(bool, str)
    progress = pyqtSignal(str)

    def __init__(self, mod_manager, root_mod):
        super().__init__()
        self.mod_manager = mod_manager
        self.root_mod = root_mod

    def run(self):
        try:
            self.progress.emit(f'Removing {self.root_mod} and its dependents...')
            result = self.mod_manager.cascade_uninstall(self.root_mod)
            if result['success']:
                self.finished.emit(True, result['message'])
            else:
                self.finished.emit(False, result['error'])
        except Exception as e:
            logger.exception('Cascade uninstall crashed')
            self.finished.emit(False, str(e))


class VersionListWorker(QThread):
    """Worker thread that fetches installable framework versions"""
    finished = pyqtSignal(list)
    failed = pyqtSignal(str)

    def __init__(self, mod_manager, framework, refresh=False):
        super().__init__()
        self.mod_manager = mod_manager
        self.framework = framework
        self.refresh = refresh

    def run(self):
        try:
            result = self.mod_manager.get_framework_versions(self.framework, refresh=self.refresh)
            if result['success']:
                self.finished.emit(result['versions'])
            else:
                self.failed.emit(result['error'])
        except Exception as e:
            logger.exception('Version lookup crashed')
            self.failed.emit(str(e))


class ReindexWorker(QThread):
    finished = pyqtSignal(dict)

    def __init__(self, mod_manager):
        super().__init__()
        self.mod_manager = mod_manager

    def run(self):
        """Reindex tracked mods and report detected local mods.

        Emits: finished(results)
        """
        try:
            result = self.mod_manager.reindex_mods()
            if result['success']:
                result['detected'] = self.mod_manager.get_detected_local_mods()
            self.finished.emit(result)
        except Exception as e:
            logger.exception('Reindex crashed')
            self.finished.emit({'success': False, 'cleaned': 0, 'error': str(e)})
