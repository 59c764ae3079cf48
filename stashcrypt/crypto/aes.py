"""AES-256(CBC, or ECB when no IV is given)+PKCS#7 helpers (use library)."""

import logging
from typing import Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives import padding

from stashcrypt.errors import CryptoError

logger = logging.getLogger(__name__)

# AES-256 uses 32-byte keys
AES_KEY_SIZE = 32
# AES block size is 128 bits (16 bytes)
AES_BLOCK_SIZE_BITS = 128
AES_BLOCK_SIZE = AES_BLOCK_SIZE_BITS // 8


def _cipher(key: bytes, iv: Optional[bytes]) -> Cipher:
    if len(key) != AES_KEY_SIZE:
        raise CryptoError(f"Key must be {AES_KEY_SIZE} bytes (AES-256), got {len(key)}")
    if iv is None:
        # fields without an IV were encrypted in a mode that takes none
        mode = modes.ECB()
    elif len(iv) != AES_BLOCK_SIZE:
        raise CryptoError(f"IV must be {AES_BLOCK_SIZE} bytes, got {len(iv)}")
    else:
        mode = modes.CBC(iv)
    return Cipher(algorithms.AES(key), mode)


def encrypt(key: bytes, iv: Optional[bytes], plaintext: bytes) -> bytes:
    """
    Encrypts plaintext using AES-256-CBC with PKCS#7 padding.

    key: 32-byte AES key
    iv: 16-byte IV, or None to encrypt without one
    plaintext: The data to encrypt
    Returns: The encrypted ciphertext
    """
    cipher = _cipher(key, iv)

    padder = padding.PKCS7(AES_BLOCK_SIZE_BITS).padder()
    padded_data = padder.update(plaintext) + padder.finalize()

    encryptor = cipher.encryptor()
    return encryptor.update(padded_data) + encryptor.finalize()


def decrypt(key: bytes, iv: Optional[bytes], ciphertext: bytes) -> bytes:
    """
    Decrypts ciphertext using AES-256-CBC with PKCS#7 padding.

    key: 32-byte AES key
    iv: 16-byte IV, or None when the sender used none
    ciphertext: The data to decrypt
    Returns: The original plaintext
    Raises: CryptoError on key/IV length, truncation or bad padding
    """
    cipher = _cipher(key, iv)

    if not ciphertext or len(ciphertext) % AES_BLOCK_SIZE:
        raise CryptoError(f"Ciphertext length {len(ciphertext)} is not a positive multiple of {AES_BLOCK_SIZE}")

    # 1. Decrypt the ciphertext
    decryptor = cipher.decryptor()
    padded_plaintext = decryptor.update(ciphertext) + decryptor.finalize()

    # 2. Remove the padding
    unpadder = padding.PKCS7(AES_BLOCK_SIZE_BITS).unpadder()
    try:
        return unpadder.update(padded_plaintext) + unpadder.finalize()
    except ValueError as e:
        # This will fail if the padding is incorrect (e.g., bad key, corrupt data)
        logger.debug("Failed to unpad data; key may be incorrect or data corrupted")
        raise CryptoError("Invalid padding: wrong key or corrupted ciphertext") from e
