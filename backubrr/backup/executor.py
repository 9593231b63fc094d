"""
Backup executor - runs the backup of a single source directory.

Workflow:
1. Validate the source directory
2. Stream it into a compressed archive in the output directory
3. Encrypt the archive (if a passphrase is configured)
4. Record the result (status: success/failed)

Failures are recorded on the BackupResult instead of being raised, so one
broken source never stops the others. Cancellation is the exception: it is
re-raised so the run loop can stop.
"""

import os
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from backubrr.utils.crypto import EncryptionError
from .archive import create_archive, get_archive_size, ArchiveError, BackupCancelled


logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'


@dataclass
class BackupResult:
    """Outcome of backing up one source directory."""
    source_dir: str
    status: str = 'running'
    archive_path: Optional[str] = None
    encrypted: bool = False
    file_size_bytes: Optional[int] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    logs: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return os.path.basename(os.path.normpath(self.source_dir))

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS


class BackupExecutor:
    """
    Runs the complete backup workflow for one source directory.
    """

    def __init__(
        self,
        source_dir: str,
        output_dir: str,
        passphrase: Optional[str] = None,
        cancellation_check: Optional[Callable[[], None]] = None
    ):
        """
        Initialize backup executor.

        Args:
            source_dir: Directory tree to back up
            output_dir: Directory to write the archive into
            passphrase: Optional encryption passphrase
            cancellation_check: Called between files; raises BackupCancelled to abort
        """
        self.source_dir = source_dir
        self.output_dir = output_dir
        self.passphrase = passphrase
        self.cancellation_check = cancellation_check
        self.result = BackupResult(source_dir=source_dir)

    def execute(self) -> BackupResult:
        """
        Execute the backup.

        Returns:
            BackupResult with execution results

        Raises:
            BackupCancelled: If the backup was cancelled mid-archive
        """
        self.result.started_at = datetime.now()
        self._log(f"Starting backup of {self.source_dir}")

        try:
            archive_path = create_archive(
                self.source_dir,
                self.output_dir,
                passphrase=self.passphrase,
                cancellation_check=self.cancellation_check
            )

            self.result.archive_path = archive_path
            self.result.encrypted = bool(self.passphrase)
            self.result.file_size_bytes = get_archive_size(archive_path)
            self.result.status = STATUS_SUCCESS
            self._log(
                f"Archive created: {os.path.basename(archive_path)} "
                f"({self.result.file_size_bytes / 1024 / 1024:.2f} MB)"
            )

        except BackupCancelled:
            self.result.status = STATUS_FAILED
            self.result.error_message = 'cancelled'
            self._log("Backup cancelled")
            raise

        except (ArchiveError, EncryptionError, OSError) as e:
            self.result.status = STATUS_FAILED
            self.result.error_message = str(e)
            self._log(f"Backup failed: {e}", level=logging.ERROR)

        finally:
            self.result.completed_at = datetime.now()

        return self.result

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.result.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
