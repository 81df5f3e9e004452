"""
At-rest encryption for values of the sensitive class.
AES-256-GCM with a PBKDF2-derived key; ciphertext is stored hex-encoded.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import StoreError

NONCE_SIZE = 12
TAG_SIZE = 16
ENCRYPTED_PREFIX = "enc:v1:"


def _derive_key(password: str, salt: bytes) -> bytes:
    """Derive encryption key from password using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100000,
    )
    return kdf.derive(password.encode())


class SecretCipher:
    """Encrypts and decrypts single string values."""

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError("SecretCipher requires a 256-bit key")
        self._key = key

    @classmethod
    def from_password(cls, password: str, salt: bytes) -> "SecretCipher":
        return cls(_derive_key(password, salt))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        encryptor = Cipher(algorithms.AES(self._key), modes.GCM(nonce)).encryptor()
        ciphertext = encryptor.update(plaintext.encode()) + encryptor.finalize()

        # nonce + tag + ciphertext
        return ENCRYPTED_PREFIX + (nonce + encryptor.tag + ciphertext).hex()

    def decrypt(self, stored: str) -> str:
        if not stored.startswith(ENCRYPTED_PREFIX):
            raise StoreError("Stored secret is not encrypted")

        try:
            data = bytes.fromhex(stored[len(ENCRYPTED_PREFIX):])
        except ValueError as e:
            raise StoreError(f"Malformed encrypted value: {e}") from e
        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise StoreError("Encrypted value too short")

        nonce = data[:NONCE_SIZE]
        tag = data[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = data[NONCE_SIZE + TAG_SIZE:]

        decryptor = Cipher(algorithms.AES(self._key), modes.GCM(nonce, tag)).decryptor()
        try:
            return (decryptor.update(ciphertext) + decryptor.finalize()).decode()
        except InvalidTag as e:
            raise StoreError("Secret failed authentication; wrong master password?") from e
