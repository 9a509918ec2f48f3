"""
Passphrase encryption compatible with ``openssl enc``.

Archives written here decrypt with

    openssl enc -d -aes-256-cbc -salt -pbkdf2 -iter 100000 -in FILE

and vice versa. Container layout:

    b"Salted__" | salt (8 bytes) | AES-256-CBC ciphertext (PKCS#7 padded)

Key and IV come from a single PBKDF2-HMAC-SHA256 derivation of 48
bytes: the first 32 are the key, the last 16 the IV.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger("vpsdev.crypto")

MAGIC = b"Salted__"
SALT_SIZE = 8
KEY_SIZE = 32
IV_SIZE = 16
ITERATIONS = 100_000


def _derive(passphrase: str, salt: bytes, iterations: int) -> tuple[bytes, bytes]:
    """Derive (key, iv) the way ``openssl enc -pbkdf2`` does."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE + IV_SIZE,
        salt=salt,
        iterations=iterations,
    )
    material = kdf.derive(passphrase.encode("utf-8"))
    return material[:KEY_SIZE], material[KEY_SIZE:]


def encrypt(data: bytes, passphrase: str, iterations: int = ITERATIONS) -> bytes:
    """Encrypt bytes into an OpenSSL salted container.

    Args:
        data: Plaintext.
        passphrase: Encryption password.
        iterations: PBKDF2 iteration count.

    Returns:
        bytes: Container bytes.

    Raises:
        ValueError: If the passphrase is empty.
    """
    if not passphrase:
        raise ValueError("Passphrase must not be empty")

    salt = os.urandom(SALT_SIZE)
    key, iv = _derive(passphrase, salt, iterations)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(data) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return MAGIC + salt + encryptor.update(padded) + encryptor.finalize()


def decrypt(blob: bytes, passphrase: str, iterations: int = ITERATIONS) -> bytes:
    """Decrypt an OpenSSL salted container.

    Args:
        blob: Container bytes.
        passphrase: Encryption password.
        iterations: PBKDF2 iteration count used at encryption time.

    Returns:
        bytes: Plaintext.

    Raises:
        ValueError: On a wrong passphrase or a malformed container
            (reported as "bad decrypt", like openssl).
    """
    if not blob.startswith(MAGIC):
        raise ValueError("bad magic number: not an OpenSSL salted container")

    header = len(MAGIC) + SALT_SIZE
    ciphertext = blob[header:]
    if len(blob) < header or not ciphertext or len(ciphertext) % IV_SIZE:
        raise ValueError("bad decrypt: truncated ciphertext")

    salt = blob[len(MAGIC):header]
    key, iv = _derive(passphrase, salt, iterations)

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise ValueError("bad decrypt: wrong passphrase or corrupted archive") from None


def encrypt_file(src: Path, dest: Path, passphrase: str) -> Path:
    """Encrypt a file to ``dest``."""
    dest.write_bytes(encrypt(src.read_bytes(), passphrase))
    logger.info("Encrypted %s -> %s", src, dest)
    return dest


def decrypt_file(src: Path, dest: Path, passphrase: str) -> Path:
    """Decrypt a file to ``dest``; nothing is written on failure."""
    plaintext = decrypt(src.read_bytes(), passphrase)
    dest.write_bytes(plaintext)
    logger.info("Decrypted %s -> %s", src, dest)
    return dest
