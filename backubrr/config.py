"""
Configuration loading for Backubrr.

The configuration is a YAML document with these keys:
- source_dirs: directories to back up
- output_dir: where archives are written (default: ~/backups)
- retention_days: days to keep archives (default: 7)
- interval: run every X hours (default: 0, run once)
- encryption_key: passphrase used to encrypt archives (default: none)
- discord: Discord webhook URL for run notifications (default: none)
- reload_config: re-read this file before every run (default: false)
- log_file: optional rotating log file
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import yaml

from backubrr import __version__


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.yaml'
DEFAULT_RETENTION_DAYS = 7


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded or is invalid."""
    pass


@dataclass(frozen=True)
class Config:
    """Backup configuration, immutable for the duration of a run."""
    output_dir: str
    source_dirs: List[str] = field(default_factory=list)
    retention_days: int = DEFAULT_RETENTION_DAYS
    interval: int = 0
    encryption_key: str = ''
    discord: str = ''
    reload_config: bool = False
    log_file: str = ''


def default_output_dir() -> str:
    """Return $HOME/backups."""
    return os.path.join(os.path.expanduser('~'), 'backups')


def load_config(file_path: str) -> Config:
    """
    Load the backup configuration from a YAML file.

    Args:
        file_path: Path to the YAML configuration file

    Returns:
        Validated Config instance

    Raises:
        ConfigError: If the file is missing, unreadable, malformed or invalid
    """
    try:
        with open(file_path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {file_path}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file {file_path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file {file_path}: {e}")

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {file_path} must contain a mapping of options")

    return parse_config(data)


def parse_config(data: dict) -> Config:
    """
    Build a Config from an already parsed mapping.

    Raises:
        ConfigError: If any option has the wrong type or an invalid value
    """
    source_dirs = data.get('source_dirs') or []
    if isinstance(source_dirs, str):
        source_dirs = [source_dirs]
    if not isinstance(source_dirs, list) or not all(isinstance(s, str) for s in source_dirs):
        raise ConfigError("source_dirs must be a list of directory paths")

    output_dir = data.get('output_dir') or ''
    if not isinstance(output_dir, str):
        raise ConfigError("output_dir must be a directory path")
    if not output_dir:
        output_dir = default_output_dir()
        logger.info(f"output_dir not specified in configuration file, using default: {output_dir}")

    retention_days = _get_int(data, 'retention_days', 0)
    if retention_days < 0:
        raise ConfigError("retention_days must be zero or a positive number")
    if retention_days == 0:
        retention_days = DEFAULT_RETENTION_DAYS

    interval = _get_int(data, 'interval', 0)
    if interval < 0:
        raise ConfigError("interval must be a positive number")

    encryption_key = _get_str(data, 'encryption_key')
    discord = _get_str(data, 'discord')
    log_file = _get_str(data, 'log_file')

    reload_config = data.get('reload_config', False)
    if not isinstance(reload_config, bool):
        raise ConfigError("reload_config must be true or false")

    return Config(
        output_dir=os.path.expanduser(output_dir),
        source_dirs=[os.path.expanduser(s) for s in source_dirs],
        retention_days=retention_days,
        interval=interval,
        encryption_key=encryption_key,
        discord=discord,
        reload_config=reload_config,
        log_file=os.path.expanduser(log_file) if log_file else ''
    )


def _get_int(data: dict, key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass; "interval: yes" is a mistake, not 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be a whole number")
    return value


def _get_str(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


@dataclass(frozen=True)
class BuildInfo:
    """Version metadata printed by the version command."""
    version: str
    commit: str
    date: str

    @classmethod
    def from_environment(cls, environ: Optional[dict] = None) -> 'BuildInfo':
        """Build metadata, overridable through BACKUBRR_VERSION/COMMIT/DATE."""
        environ = os.environ if environ is None else environ
        return cls(
            version=environ.get('BACKUBRR_VERSION', '').strip() or __version__,
            commit=environ.get('BACKUBRR_COMMIT', '').strip() or 'unknown',
            date=environ.get('BACKUBRR_DATE', '').strip() or 'unknown'
        )

    def __str__(self):
        return f"Backubrr {self.version} {self.commit[:7]} {self.date}"
