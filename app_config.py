"""
App Config
Runtime configuration, data directories and logging setup
"""

import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import appdirs

APP_NAME = 'BalatroModManager'
LOG_FILENAME = 'bmm.log'

QUIET_LOGGERS = ['urllib3', 'urllib3.connectionpool', 'requests']


@dataclass
class AppConfig:
    data_dir: Path
    mods_dir: Optional[Path] = None
    github_token: Optional[str] = None
    request_timeout: float = 30.0
    lock_timeout: float = 30.0
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ=None):
        """Build configuration from BMM_* environment variables.

        Args:
            environ: Optional dict - Environment to read, defaults to os.environ

        Returns:
            AppConfig - Configuration with defaults filled in
        """
        env = os.environ if environ is None else environ
        data_dir = env.get('BMM_DATA_DIR') or appdirs.user_data_dir(APP_NAME, False)
        mods_dir = env.get('BMM_MODS_DIR')
        return cls(
            data_dir=Path(data_dir),
            mods_dir=Path(mods_dir) if mods_dir else None,
            github_token=env.get('GITHUB_TOKEN') or None,
            request_timeout=float(env.get('BMM_REQUEST_TIMEOUT', 30)),
            lock_timeout=float(env.get('BMM_LOCK_TIMEOUT', 30)),
            log_level=env.get('BMM_LOG_LEVEL', 'INFO').upper(),
        )

    @property
    def cache_dir(self):
        return self.data_dir / 'cache'

    @property
    def backup_dir(self):
        return self.data_dir / 'backups'

    @property
    def log_file(self):
        return self.data_dir / LOG_FILENAME


def configure_logging(config, console=True):
    """Install console and rotating file handlers on the root logger.

    Args:
        config: AppConfig - Supplies the level and log file location
        console: bool - Also log to stderr
    """
    level = getattr(logging, config.log_level, logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    config.data_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        config.log_file,
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
