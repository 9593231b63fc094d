"""
Retention policy enforcement for backups.

Deletes archives older than the retention period from the output directory
and prunes directories left empty. No index is kept: the output directory
is re-scanned on every sweep.

Errors are fail-fast: the first file or directory that cannot be read or
removed aborts the sweep with SweepError.
"""

import os
import stat
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .archive import is_archive_file


logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7


class SweepError(Exception):
    """Raised when the retention sweep cannot complete."""
    pass


@dataclass
class SweepResult:
    """Paths removed by a sweep."""
    deleted_files: List[str] = field(default_factory=list)
    removed_dirs: List[str] = field(default_factory=list)

    @property
    def deleted_any(self) -> bool:
        return bool(self.deleted_files)


class RetentionManager:
    """
    Enforces the retention policy on an output directory.

    Usage::

        manager = RetentionManager('/backups', retention_days=7)
        result = manager.sweep()
    """

    def __init__(self, output_root: str, retention_days: Optional[int] = None):
        """
        Initialize retention manager.

        Args:
            output_root: Directory holding the archives
            retention_days: Maximum archive age; None or <= 0 means 7 days
        """
        if not retention_days or retention_days <= 0:
            retention_days = DEFAULT_RETENTION_DAYS

        self.output_root = output_root
        self.retention_days = retention_days

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        """Archives modified strictly before this moment are expired."""
        if now is None:
            now = datetime.now()
        return now - timedelta(days=self.retention_days)

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Delete expired archives, then remove empty directories.

        Args:
            now: Reference time (default: current time)

        Returns:
            SweepResult listing what was removed

        Raises:
            SweepError: If output_root is missing or any removal fails
        """
        if not os.path.isdir(self.output_root):
            raise SweepError(f"output_dir does not exist: {self.output_root}")

        result = SweepResult()

        self._delete_expired(self.list_expired(now), result)
        self._prune_empty_dirs(result)

        if result.deleted_any:
            logger.info("Old backups deleted successfully.")
        else:
            logger.info("No old backups found. Cleanup not needed.")

        return result

    def list_expired(self, now: Optional[datetime] = None) -> List[str]:
        """List archive paths that a sweep at `now` would delete."""
        cutoff = self.cutoff(now).timestamp()
        return [path for path, mtime in self._iter_archives() if mtime < cutoff]

    def _iter_archives(self):
        for dirpath, _dirnames, filenames in os.walk(self.output_root, onerror=_raise_walk_error):
            for filename in sorted(filenames):
                if not is_archive_file(filename):
                    continue

                path = os.path.join(dirpath, filename)
                try:
                    st = os.lstat(path)
                except OSError as e:
                    raise SweepError(f"Failed to stat {path}: {e}")

                if not stat.S_ISREG(st.st_mode):
                    continue

                yield path, st.st_mtime

    def _delete_expired(self, expired: List[str], result: SweepResult):
        for path in expired:
            try:
                os.remove(path)
            except OSError as e:
                raise SweepError(f"Failed to delete {path}: {e}")

            result.deleted_files.append(path)
            logger.info(f"Deleted backup file {path}")

    def _prune_empty_dirs(self, result: SweepResult):
        # Bottom-up, so parents emptied by removing children are seen as empty
        for dirpath, _dirnames, _filenames in os.walk(
            self.output_root, topdown=False, onerror=_raise_walk_error
        ):
            if dirpath == self.output_root:
                continue

            try:
                if os.listdir(dirpath):
                    continue
                os.rmdir(dirpath)
            except OSError as e:
                raise SweepError(f"Failed to remove empty directory {dirpath}: {e}")

            result.removed_dirs.append(dirpath)
            logger.debug(f"Removed empty directory {dirpath}")


def _raise_walk_error(error: OSError):
    raise SweepError(f"Failed to scan {error.filename}: {error}")


def sweep(output_root: str, retention_days: Optional[int] = None, now: Optional[datetime] = None) -> SweepResult:
    """
    Enforce the retention policy on output_root.

    Returns:
        SweepResult from RetentionManager.sweep()
    """
    manager = RetentionManager(output_root, retention_days)
    return manager.sweep(now)
