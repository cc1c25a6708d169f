"""File encryption for synced artifacts.

Files are encrypted with AES in a streaming mode. The output layout is a
16-byte random IV followed by the ciphertext, so encrypting the same file
twice yields different bytes.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Union

from cryptography.hazmat.primitives.ciphers import Cipher, CipherContext, algorithms, modes

from .exceptions import EncryptionError
from .utils import DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)

IV_SIZE = 16

_KEY_SIZES = {"aes-128": 16, "aes-192": 24, "aes-256": 32}
_MODES = {"ctr": modes.CTR, "cfb": modes.CFB, "ofb": modes.OFB}


def list_methods() -> list[str]:
    """Return all supported encryption method names.

    Examples:
        >>> "aes-256-ctr" in list_methods()
        True
    """
    return [f"{cipher}-{mode}" for cipher in _KEY_SIZES for mode in _MODES]


def _parse_method(method: str) -> tuple[int, type]:
    """Split a method name into key size and cipher mode class."""
    name = (method or "").strip().lower()
    cipher, _, mode = name.rpartition("-")
    if cipher not in _KEY_SIZES or mode not in _MODES:
        raise EncryptionError(
            f"Unknown encryption method: {method!r} "
            f"(supported: {', '.join(list_methods())})"
        )
    return _KEY_SIZES[cipher], _MODES[mode]


def _derive_key(key: str, size: int) -> bytes:
    """Derive a fixed-size AES key from a passphrase using SHA-256."""
    return hashlib.sha256(key.encode("utf-8")).digest()[:size]


def _make_cipher(key: str, method: str, iv: bytes) -> Cipher:
    key_size, mode_cls = _parse_method(method)
    return Cipher(algorithms.AES(_derive_key(key, key_size)), mode_cls(iv))


def _stream(context: CipherContext, src, dst) -> None:
    for chunk in iter(lambda: src.read(DEFAULT_CHUNK_SIZE), b""):
        dst.write(context.update(chunk))
    dst.write(context.finalize())


def encrypt_file(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    key: str,
    method: str,
) -> None:
    """Encrypt a file into a new output file.

    Args:
        input_path: File to encrypt (left untouched)
        output_path: Destination of the encrypted copy
        key: Passphrase
        method: Method name, e.g. ``aes-128-ctr``

    Raises:
        EncryptionError: If the method is unknown, the key is empty or I/O fails
    """
    if not key:
        raise EncryptionError("Encryption key must not be empty")

    iv = os.urandom(IV_SIZE)
    encryptor = _make_cipher(key, method, iv).encryptor()

    output_path = Path(output_path)
    try:
        with open(input_path, "rb") as src, open(output_path, "wb") as dst:
            dst.write(iv)
            _stream(encryptor, src, dst)
    except OSError as e:
        output_path.unlink(missing_ok=True)
        raise EncryptionError(f"Failed to encrypt {input_path}: {e}") from e

    logger.debug(f"Encrypted {input_path} -> {output_path} ({method})")


def decrypt_file(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    key: str,
    method: str,
) -> None:
    """Decrypt a file produced by :func:`encrypt_file`.

    Raises:
        EncryptionError: If the method is unknown, the input is truncated or
            I/O fails
    """
    output_path = Path(output_path)
    try:
        with open(input_path, "rb") as src:
            iv = src.read(IV_SIZE)
            if len(iv) != IV_SIZE:
                raise EncryptionError(f"Encrypted file is truncated: {input_path}")
            decryptor = _make_cipher(key, method, iv).decryptor()
            with open(output_path, "wb") as dst:
                _stream(decryptor, src, dst)
    except OSError as e:
        output_path.unlink(missing_ok=True)
        raise EncryptionError(f"Failed to decrypt {input_path}: {e}") from e
