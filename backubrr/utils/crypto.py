"""
Archive encryption utilities.

Archives are encrypted with Fernet symmetric encryption using a key derived
from the configured passphrase. Files are processed in chunks so archives of
any size can be encrypted without loading them into memory.

Encrypted file layout:
    MAGIC (8 bytes) | salt (16 bytes) | frame*
    frame = token length (4 bytes, big-endian) | Fernet token
"""

import os
import base64
import struct
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


logger = logging.getLogger(__name__)

ENCRYPTED_SUFFIX = '.enc'
MAGIC = b'BKBRENC1'
SALT_SIZE = 16
CHUNK_SIZE = 1024 * 1024  # 1MB of plaintext per token
KDF_ITERATIONS = 480000  # OWASP recommended iterations for 2023+

_FRAME_HEADER = struct.Struct('>I')


class EncryptionError(Exception):
    """Raised when an archive cannot be encrypted or decrypted."""
    pass


def derive_fernet(passphrase: str, salt: bytes) -> Fernet:
    """
    Derive a Fernet instance from a passphrase.

    Args:
        passphrase: User supplied passphrase
        salt: Random salt stored in the encrypted file header

    Returns:
        Fernet instance keyed from PBKDF2-HMAC-SHA256
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    key = base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))
    return Fernet(key)


def encrypt_file(source_path: str, passphrase: str, output_path: str = None) -> str:
    """
    Encrypt a file under a passphrase.

    The source file is left untouched. If encryption fails, any partial
    output is removed.

    Args:
        source_path: File to encrypt
        passphrase: Passphrase to derive the key from
        output_path: Destination (default: source_path + '.enc')

    Returns:
        Path of the encrypted file

    Raises:
        EncryptionError: If the passphrase is empty or any I/O fails
    """
    if not passphrase:
        raise EncryptionError("Encryption passphrase is empty")

    if output_path is None:
        output_path = source_path + ENCRYPTED_SUFFIX

    salt = os.urandom(SALT_SIZE)
    fernet = derive_fernet(passphrase, salt)

    try:
        src = open(source_path, 'rb')
    except OSError as e:
        raise EncryptionError(f"Failed to open {source_path}: {e}")

    try:
        with src, open(output_path, 'wb') as dst:
            dst.write(MAGIC)
            dst.write(salt)

            while True:
                chunk = src.read(CHUNK_SIZE)
                token = fernet.encrypt(chunk)
                dst.write(_FRAME_HEADER.pack(len(token)))
                dst.write(token)
                if len(chunk) < CHUNK_SIZE:
                    break
    except OSError as e:
        _remove_partial(output_path)
        raise EncryptionError(f"Failed to encrypt {source_path}: {e}")

    logger.debug(f"Encrypted {source_path} -> {output_path}")
    return output_path


def decrypt_file(encrypted_path: str, passphrase: str, output_path: str = None) -> str:
    """
    Decrypt a file produced by encrypt_file.

    Args:
        encrypted_path: Encrypted file
        passphrase: Passphrase used for encryption
        output_path: Destination (default: encrypted_path without '.enc')

    Returns:
        Path of the decrypted file

    Raises:
        EncryptionError: On wrong passphrase, corrupted or truncated input
    """
    if output_path is None:
        if encrypted_path.endswith(ENCRYPTED_SUFFIX):
            output_path = encrypted_path[:-len(ENCRYPTED_SUFFIX)]
        else:
            output_path = encrypted_path + '.dec'

    if not passphrase:
        raise EncryptionError("Decryption passphrase is empty")

    try:
        with open(encrypted_path, 'rb') as src:
            if src.read(len(MAGIC)) != MAGIC:
                raise EncryptionError(f"Not a Backubrr encrypted file: {encrypted_path}")

            salt = src.read(SALT_SIZE)
            if len(salt) != SALT_SIZE:
                raise EncryptionError(f"Truncated encrypted file: {encrypted_path}")

            fernet = derive_fernet(passphrase, salt)
    except OSError as e:
        raise EncryptionError(f"Failed to read {encrypted_path}: {e}")

    try:
        with open(encrypted_path, 'rb') as src, open(output_path, 'wb') as dst:
            src.seek(len(MAGIC) + SALT_SIZE)
            frames = 0
            while True:
                header = src.read(_FRAME_HEADER.size)
                if not header:
                    break
                if len(header) != _FRAME_HEADER.size:
                    raise EncryptionError(f"Truncated encrypted file: {encrypted_path}")

                (length,) = _FRAME_HEADER.unpack(header)
                token = src.read(length)
                if len(token) != length:
                    raise EncryptionError(f"Truncated encrypted file: {encrypted_path}")

                dst.write(fernet.decrypt(token))
                frames += 1

            if frames == 0:
                raise EncryptionError(f"Truncated encrypted file: {encrypted_path}")

    except InvalidToken:
        _remove_partial(output_path)
        raise EncryptionError(f"Wrong passphrase or corrupted file: {encrypted_path}")
    except EncryptionError:
        _remove_partial(output_path)
        raise
    except OSError as e:
        _remove_partial(output_path)
        raise EncryptionError(f"Failed to decrypt {encrypted_path}: {e}")

    return output_path


def encrypt_archive(archive_path: str, passphrase: str) -> str:
    """
    Encrypt a finished archive and delete the plaintext.

    Exactly one of the two files is left behind: the encrypted archive on
    success, the plaintext on failure. If the plaintext cannot be removed the
    new encrypted file is discarded and the error propagates.

    Returns:
        Path of the encrypted archive
    """
    encrypted_path = encrypt_file(archive_path, passphrase)

    try:
        os.remove(archive_path)
    except OSError as e:
        _remove_partial(encrypted_path)
        raise EncryptionError(f"Failed to remove plaintext {archive_path} after encryption: {e}")

    return encrypted_path


def _remove_partial(path: str):
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to remove partial file {path}: {e}")
