"""
Ownership-locked store client.

Wraps a KV backend behind the single-writer contract: a key is held by at most
one owner, only that owner may overwrite or release it, and a write onto an
unowned key claims it. A refused write or release returns False immediately;
nothing here retries.
"""

from typing import Optional

from util.logging import logger
from . import config
from .crypto import SecretCipher
from .errors import StoreError
from .kv import KVBackend
from .schema import Owner, StoreKey, owner_from_token


class OwnershipLockedStore:
    """Conditional get/set/delete keyed by owner."""

    def __init__(self, backend: KVBackend, cipher: SecretCipher = None, reveal_sensitive: bool = None):
        self.backend = backend
        self.cipher = cipher
        # None follows LOG_REVEAL_SENSITIVE at write time
        self.reveal_sensitive = reveal_sensitive

    def read(self, key: StoreKey) -> Optional[str]:
        """Return the stored value, or None when absent. No ownership check."""
        try:
            record = self.backend.get(key.encode())
        except Exception as e:
            raise StoreError(f"Error reading {key}: {e}") from e

        if record is None:
            return None
        return self._decode(key, record.value)

    def write(self, key: StoreKey, value: str, owner: Owner) -> bool:
        """Store value and claim ownership; False if another owner holds the key."""
        stored = self._encode(key, value)
        try:
            success = self.backend.compare_and_set(key.encode(), stored, owner.token)
        except Exception as e:
            raise StoreError(f"Error setting {key}: {e}") from e

        logger.log_kv_operation(
            "write", key.encode(), owner=str(owner), value=value,
            status="success" if success else "conflict",
            sensitive=self._redact(key)
        )
        return success

    def release(self, key: StoreKey, owner: Owner) -> bool:
        """Delete the value and clear ownership; False unless owner holds the key."""
        try:
            success = self.backend.compare_and_delete(key.encode(), owner.token)
        except Exception as e:
            raise StoreError(f"Error deleting {key}: {e}") from e

        logger.log_kv_operation(
            "release", key.encode(), owner=str(owner),
            status="success" if success else "not_owned"
        )
        return success

    def owner_of(self, key: StoreKey) -> Optional[Owner]:
        """Current holder of the key, or None if absent or unowned."""
        try:
            record = self.backend.get(key.encode())
        except Exception as e:
            raise StoreError(f"Error reading {key}: {e}") from e

        if record is None or record.lock_id is None:
            return None
        return owner_from_token(record.lock_id)

    def _redact(self, key: StoreKey) -> bool:
        reveal = config.LOG_REVEAL_SENSITIVE if self.reveal_sensitive is None else self.reveal_sensitive
        return key.declaration_class.sensitive and not reveal

    def _encode(self, key: StoreKey, value: str) -> str:
        if self.cipher is not None and key.declaration_class.sensitive:
            return self.cipher.encrypt(value)
        return value

    def _decode(self, key: StoreKey, stored: str) -> str:
        if self.cipher is not None and key.declaration_class.sensitive:
            return self.cipher.decrypt(stored)
        return stored
