"""
Voluntary release of a key by its owner.
"""

from util.logging import logger
from .errors import StoreError
from .schema import Owner, StoreKey
from .store import OwnershipLockedStore


class DrainCoordinator:
    """Releases keys on behalf of departing owners. Safe to call repeatedly."""

    def __init__(self, store: OwnershipLockedStore):
        self.store = store

    def drain(self, key: StoreKey, owner: Owner) -> bool:
        """Release key if owner still holds it.

        Returns True only when this call removed the value. False means the
        key was already drained or has changed hands, which is not an error.
        """
        try:
            released = self.store.release(key, owner)
        except StoreError as e:
            logger.error(f"Error draining {key} for {owner}: {e}")
            return False

        if not released:
            logger.info(f"{key} already drained or not held by {owner}")
        return released
