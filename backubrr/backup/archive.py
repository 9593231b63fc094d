"""
Archive writer for backup sources.

Walks a source directory and streams every non-hidden regular file into a
gzip compressed tar archive named {source}_{YYYY-MM-DD_HH-MM-SS}.tar.gz.

Notes:
- Directories are not stored as entries, so empty directories are absent
  from the archive.
- Entries whose name starts with '.' are skipped at any depth, together
  with everything below a hidden directory.
- The walk is fail-fast: a symlink, device, FIFO, socket or unreadable
  entry aborts the whole source instead of producing a partial archive.
"""

import os
import stat
import logging
import tarfile
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional

from backubrr.utils.crypto import ENCRYPTED_SUFFIX, encrypt_archive


logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = '.tar.gz'
TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


class BackupCancelled(Exception):
    """Raised by a cancellation check to abort an in-flight archive."""
    pass


@dataclass(frozen=True)
class ArchiveEntry:
    """A file discovered while walking a source directory."""
    path: str
    arcname: str
    size: int
    mtime: float
    mode: int


def generate_archive_filename(source_dir: str, now: Optional[datetime] = None) -> str:
    """
    Generate the archive filename for a source directory.

    Format: {basename}_{YYYY-MM-DD_HH-MM-SS}.tar.gz (local time)

    Args:
        source_dir: Source directory being archived
        now: Timestamp to use (default: current local time)

    Returns:
        Filename (without path)
    """
    if now is None:
        now = datetime.now()

    basename = os.path.basename(os.path.normpath(source_dir))
    return f"{basename}_{now.strftime(TIMESTAMP_FORMAT)}{ARCHIVE_EXTENSION}"


def walk_source(source_dir: str) -> Iterator[ArchiveEntry]:
    """
    Recursively enumerate the files to archive under source_dir.

    Entries are visited in name order within each directory.

    Raises:
        ArchiveError: On any unreadable or unsupported entry
    """
    root = os.path.normpath(source_dir)
    yield from _walk_directory(root, root)


def _walk_directory(root: str, directory: str) -> Iterator[ArchiveEntry]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        raise ArchiveError(f"Failed to read directory {directory}: {e}")

    for entry in entries:
        if entry.name.startswith('.'):
            continue

        try:
            st = entry.stat(follow_symlinks=False)
        except OSError as e:
            raise ArchiveError(f"Failed to stat {entry.path}: {e}")

        if stat.S_ISDIR(st.st_mode):
            yield from _walk_directory(root, entry.path)
        elif stat.S_ISREG(st.st_mode):
            yield ArchiveEntry(
                path=entry.path,
                arcname=os.path.relpath(entry.path, root).replace(os.sep, '/'),
                size=st.st_size,
                mtime=st.st_mtime,
                mode=stat.S_IMODE(st.st_mode)
            )
        else:
            raise ArchiveError(f"Unsupported file type: {entry.path}")


def write_archive(
    source_dir: str,
    archive_path: str,
    cancellation_check: Optional[Callable[[], None]] = None
) -> int:
    """
    Stream the files of source_dir into a tar.gz archive at archive_path.

    The archive is truncated if it already exists. On failure or
    cancellation the partial archive is removed.

    Args:
        source_dir: Directory to archive
        archive_path: Destination archive path
        cancellation_check: Called before each file; raises BackupCancelled to abort

    Returns:
        Number of files written

    Raises:
        ArchiveError: If any file cannot be read or written
        BackupCancelled: If cancellation_check requested an abort
    """
    count = 0
    own_path = os.path.abspath(archive_path)

    try:
        with tarfile.open(archive_path, 'w:gz', format=tarfile.PAX_FORMAT) as tar:
            for entry in walk_source(source_dir):
                if cancellation_check:
                    cancellation_check()

                # output_dir may live inside the source tree
                if os.path.abspath(entry.path) == own_path:
                    continue

                _add_entry(tar, entry)
                count += 1
    except (ArchiveError, BackupCancelled):
        _remove_partial(archive_path)
        raise
    except (OSError, tarfile.TarError) as e:
        _remove_partial(archive_path)
        raise ArchiveError(f"Failed to write archive {archive_path}: {e}")

    return count


def _add_entry(tar: tarfile.TarFile, entry: ArchiveEntry):
    """Write one file record, streaming its content from disk."""
    info = tarfile.TarInfo(name=entry.arcname)
    info.size = entry.size
    info.mtime = int(entry.mtime)
    info.mode = entry.mode
    info.type = tarfile.REGTYPE

    try:
        with open(entry.path, 'rb') as f:
            tar.addfile(info, f)
    except OSError as e:
        raise ArchiveError(f"Failed to archive {entry.path}: {e}")


def create_archive(
    source_dir: str,
    output_root: str,
    passphrase: Optional[str] = None,
    cancellation_check: Optional[Callable[[], None]] = None,
    now: Optional[datetime] = None
) -> str:
    """
    Archive a source directory into output_root, encrypting it if requested.

    Args:
        source_dir: Directory tree to back up
        output_root: Directory to write the archive into (created if absent)
        passphrase: If set, the archive is encrypted and the plaintext removed
        cancellation_check: Called before each file; raises BackupCancelled to abort
        now: Timestamp for the archive name (default: current local time)

    Returns:
        Path of the final archive (encrypted path when a passphrase is set)

    Raises:
        ArchiveError: If the source is invalid or archiving fails
        EncryptionError: If encryption fails (the plaintext archive is kept)
        BackupCancelled: If cancelled mid-archive
    """
    if not os.path.isdir(source_dir):
        raise ArchiveError(f"Source directory does not exist: {source_dir}")

    try:
        os.makedirs(output_root, exist_ok=True)
    except OSError as e:
        raise ArchiveError(f"Failed to create output directory {output_root}: {e}")

    archive_path = os.path.join(output_root, generate_archive_filename(source_dir, now))

    count = write_archive(source_dir, archive_path, cancellation_check)
    logger.info(f"Archived {count} files from {source_dir} to {archive_path}")

    if passphrase:
        archive_path = encrypt_archive(archive_path, passphrase)
        logger.info(f"Encrypted archive saved to {archive_path}")

    return archive_path


def is_archive_file(filename: str) -> bool:
    """Check whether a filename is a Backubrr archive (plain or encrypted)."""
    return (
        filename.endswith(ARCHIVE_EXTENSION)
        or filename.endswith(ARCHIVE_EXTENSION + ENCRYPTED_SUFFIX)
    )


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        ArchiveError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveError(f"Failed to get archive size: {e}")


def _remove_partial(archive_path: str):
    if os.path.exists(archive_path):
        try:
            os.remove(archive_path)
        except OSError as e:
            logger.warning(f"Failed to remove partial archive {archive_path}: {e}")
