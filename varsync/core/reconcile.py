"""
Project-level reconciliation of declared snapshots against the store.

The reconciler diffs the previously declared snapshot of one declaration class
against the current one and applies only the deltas, as the project owner:

* names whose value is new or different are written;
* names that disappeared are released;
* names with an unchanged value are left alone (no write, no notification).

A refused or faulting key is recorded in ``failed_keys`` and the remaining
keys are still attempted. Invalid names abort the whole pass before anything
is written.
"""

from typing import Mapping, Optional

from util.logging import logger
from .config import SyncConfig
from .errors import StoreError
from .keys import validate_batch
from .schema import ReconcileResult, StoreKey
from .store import OwnershipLockedStore


class Reconciler:
    """Applies snapshot deltas for one declaration class."""

    def __init__(self, store: OwnershipLockedStore, config: SyncConfig):
        self.store = store
        self.config = config

    def reconcile(self, previous: Optional[Mapping[str, str]], current: Optional[Mapping[str, str]]) -> ReconcileResult:
        """
        Diff and apply.

        Args:
            previous: Snapshot applied by the last pass (None on first run)
            current: Snapshot the project now declares

        Returns:
            ReconcileResult with changed and failed names

        Raises:
            InvalidKeyError: if any name in either snapshot is invalid
        """
        previous = dict(previous or {})
        current = dict(current or {})

        validate_batch(list(current) + list(previous))

        result = ReconcileResult()

        for name, value in current.items():
            if name in previous and previous[name] == value:
                continue

            result.changed_keys.add(name)
            if not self._apply(name, value):
                result.failed_keys.add(name)

        for name in previous:
            if name in current:
                continue

            result.changed_keys.add(name)
            if not self._apply(name, None):
                result.failed_keys.add(name)

        logger.log_reconcile(self.config.declaration_class.value, result.changed_keys, result.failed_keys)
        return result

    def _apply(self, name: str, value: Optional[str]) -> bool:
        key = StoreKey(self.config.declaration_class, name)
        owner = self.config.project_owner

        try:
            if value is None:
                success = self.store.release(key, owner)
                if not success:
                    logger.error(f"Failed to delete {key} - owned by an instance?")
            else:
                success = self.store.write(key, value, owner)
                if not success:
                    logger.error(f"Failed to set {key} - already exists?")
        except StoreError as e:
            logger.error(f"Error applying {key}: {e}")
            success = False

        return success
