import hashlib
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from gitsmith.domain.exceptions import DecryptionFailedException

# Mixed into the password hash so vault keys are not plain SHA-256(password).
KEY_DERIVATION_CONTEXT = b"gitsmith-account-encryption"
NONCE_SIZE = 12


def derive_key(password: str) -> bytes:
    digest = hashlib.sha256()
    digest.update(password.encode("utf-8"))
    digest.update(KEY_DERIVATION_CONTEXT)
    return digest.digest()


def encrypt_secret(secret: bytes, password: str) -> Tuple[bytes, bytes]:
    """
    Encrypts raw secret key bytes under a password.

    Returns:
        Tuple of (ciphertext, nonce). A fresh random nonce is drawn on every call.
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = ChaCha20Poly1305(derive_key(password)).encrypt(nonce, secret, None)
    return ciphertext, nonce


def decrypt_secret(ciphertext: bytes, nonce: bytes, password: str) -> bytes:
    """
    Raises:
        DecryptionFailedException: on a wrong password or tampered data.
    """
    try:
        return ChaCha20Poly1305(derive_key(password)).decrypt(nonce, ciphertext, None)
    except (InvalidTag, ValueError) as e:
        raise DecryptionFailedException() from e
