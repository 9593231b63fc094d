"""
Backup module for Backubrr.

This module handles the core backup functionality including:
- Archive creation (tar.gz)
- Per-source execution
- Retention policy enforcement
"""

from .archive import create_archive, walk_source, ArchiveEntry, ArchiveError, BackupCancelled
from .executor import BackupExecutor, BackupResult
from .retention import RetentionManager, SweepResult, SweepError, sweep

__all__ = [
    'create_archive',
    'walk_source',
    'ArchiveEntry',
    'ArchiveError',
    'BackupCancelled',
    'BackupExecutor',
    'BackupResult',
    'RetentionManager',
    'SweepResult',
    'SweepError',
    'sweep'
]
