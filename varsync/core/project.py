"""
Project-level orchestration: the "app" owner.

Runs reconciliation for both declaration classes when the project
configuration changes, and handles drain requests and sync notices sent by
instances.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from util.logging import logger
from .config import sync_config_for
from .drain import DrainCoordinator
from .errors import InvalidKeyError, StoreError
from .messaging import DrainRequest, Messenger, parse_project_message
from .notify import NotificationRouter
from .reconcile import Reconciler
from .registry import InstanceRegistry
from .schema import DeclarationClass, InstanceStatus, ReconcileResult
from .snapshots import SnapshotStore
from .store import OwnershipLockedStore


@dataclass
class ProjectSyncResult:
    status: InstanceStatus
    results: Dict[DeclarationClass, ReconcileResult] = field(default_factory=dict)
    description: Optional[str] = None


class ProjectCoordinator:
    """Reconciles project declarations and routes change notifications."""

    def __init__(self, store: OwnershipLockedStore, registry: InstanceRegistry,
                 messenger: Messenger, snapshots: SnapshotStore):
        self.store = store
        self.snapshots = snapshots
        self.reconcilers = {
            declaration_class: Reconciler(store, sync_config_for(declaration_class))
            for declaration_class in DeclarationClass
        }
        self.router = NotificationRouter(registry, messenger)
        self.drainer = DrainCoordinator(store)
        self.status: Optional[InstanceStatus] = None
        self.description: Optional[str] = None

    def on_config_change(self, variables: Optional[Mapping[str, str]],
                         secrets: Optional[Mapping[str, str]]) -> ProjectSyncResult:
        """Apply a new project configuration.

        Each class is reconciled against its own previous snapshot and the
        snapshot is then replaced, even if some keys failed.
        """
        declared = {
            DeclarationClass.PLAIN: dict(variables or {}),
            DeclarationClass.SENSITIVE: dict(secrets or {}),
        }
        problems = []
        previous = self._load_snapshots(problems)
        return self._apply(previous, declared, persist=True, problems=problems)

    def retrigger(self) -> ProjectSyncResult:
        """Re-apply the persisted snapshots as if nothing had been applied.

        Used to retry keys that failed earlier without a declaration change.
        """
        problems = []
        current = self._load_snapshots(problems)
        previous = {declaration_class: {} for declaration_class in current}
        return self._apply(previous, current, persist=False, problems=problems)

    def _load_snapshots(self, problems: List[str]) -> Dict[DeclarationClass, Dict[str, str]]:
        """Load every class's snapshot; a class that cannot be loaded is left out."""
        loaded = {}
        for declaration_class in DeclarationClass:
            try:
                loaded[declaration_class] = self.snapshots.load(declaration_class)
            except StoreError as e:
                logger.error(f"Skipped {declaration_class.value} reconciliation: {e}")
                problems.append(f"Could not load {declaration_class.value} snapshot")
        return loaded

    def _apply(self, previous: Dict[DeclarationClass, Dict[str, str]],
               current: Dict[DeclarationClass, Dict[str, str]], persist: bool,
               problems: List[str]) -> ProjectSyncResult:
        outcome = ProjectSyncResult(status=InstanceStatus.READY)

        for declaration_class in DeclarationClass:
            if declaration_class not in previous or declaration_class not in current:
                outcome.results[declaration_class] = ReconcileResult()
                continue

            try:
                result = self.reconcilers[declaration_class].reconcile(
                    previous[declaration_class], current[declaration_class]
                )
            except InvalidKeyError as e:
                # Nothing was written for this class; keep its old snapshot
                logger.error(f"Aborted {declaration_class.value} reconciliation: {e}")
                outcome.results[declaration_class] = ReconcileResult()
                problems.append(str(e))
                continue

            outcome.results[declaration_class] = result
            if persist:
                try:
                    self.snapshots.save(declaration_class, current[declaration_class])
                except StoreError as e:
                    logger.error(f"Error saving {declaration_class.value} snapshot: {e}")
                    problems.append(f"Could not save {declaration_class.value} snapshot")
            if result.failed_keys:
                problems.append(
                    f"Failed {declaration_class.value} keys: {', '.join(sorted(result.failed_keys))}"
                )

            self.router.notify(declaration_class, result.changed_keys)

        if problems:
            outcome.status = InstanceStatus.FAILED
            outcome.description = "; ".join(problems)

        self.status = outcome.status
        self.description = outcome.description
        return outcome

    def on_message(self, body: Any) -> bool:
        """Handle a drain request or sync notice.

        Returns True when consumers were notified. Malformed bodies and drains
        that released nothing return False without raising.
        """
        request = parse_project_message(body)
        if request is None:
            return False

        if isinstance(request, DrainRequest):
            released = self.drainer.drain(request.key, request.owner_ref)
            if not released:
                return False

        self.router.notify(request.var_type, {request.name})
        return True
