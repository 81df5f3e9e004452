"""
Wires the store, registry, messenger and project coordinator together and
plays the host's role of invoking lifecycle handlers.
"""

from typing import Any, Dict, Optional

from util.logging import logger
from . import config
from .errors import ConfigurationError
from .kv import KVBackend
from .lifecycle import (
    BaseInstance,
    ConsumingInstance,
    DeclaringInstance,
    FlowInstance,
    LifecycleContext,
)
from .messaging import EventSink, InProcessMessenger
from .project import ProjectCoordinator
from .registry import InstanceRegistry
from .schema import DeclarationClass, InstanceKind, LifecycleResult
from .snapshots import SnapshotStore
from .store import OwnershipLockedStore


class SyncRuntime:
    """Single-process host for a project and its instances."""

    def __init__(self, backend: KVBackend, snapshots: SnapshotStore, cipher=None):
        self.store = OwnershipLockedStore(backend, cipher=cipher)
        self.registry = InstanceRegistry()
        self.messenger = InProcessMessenger()
        self.events = EventSink()
        self.context = LifecycleContext(store=self.store, messenger=self.messenger, events=self.events)
        self.project = ProjectCoordinator(self.store, self.registry, self.messenger, snapshots)
        self.messenger.bind(self.project.on_message, self.deliver_to_instance)

    @classmethod
    def from_config(cls, db_path: str = None) -> "SyncRuntime":
        """Build a runtime from environment configuration."""
        issues = config.validate_config()
        if issues:
            raise ConfigurationError(f"Configuration invalid: {issues}")

        return cls(
            backend=config.get_kv_backend(db_path),
            snapshots=config.get_snapshot_store(db_path),
            cipher=config.get_secret_cipher(),
        )

    def create_instance(self, kind: InstanceKind, instance_id: str, declaration_class: DeclarationClass,
                        name: Optional[str] = None, value: Optional[str] = None) -> BaseInstance:
        """Create and register an instance. Raises ValueError on bad arguments."""
        if kind is InstanceKind.FLOW:
            if value is None:
                raise ValueError("flow instances require a value")
            instance = FlowInstance(instance_id, declaration_class, value, self.context)
        elif kind is InstanceKind.DECLARE:
            if name is None or value is None:
                raise ValueError("declaring instances require a name and a value")
            instance = DeclaringInstance(instance_id, declaration_class, name, value, self.context)
        elif kind is InstanceKind.CONSUME:
            if name is None:
                raise ValueError("consuming instances require a name")
            instance = ConsumingInstance(instance_id, declaration_class, name, self.context)
        else:
            raise ValueError(f"Unknown instance kind: {kind}")

        self.registry.register(instance)
        return instance

    def remove_instance(self, instance_id: str) -> Optional[LifecycleResult]:
        """Drain an instance and drop it from the registry."""
        instance = self.registry.get(instance_id)
        if instance is None:
            return None
        result = instance.drain()
        self.registry.unregister(instance_id)
        return result

    def deliver_to_instance(self, instance_id: str, body: Dict[str, Any]):
        instance = self.registry.get(instance_id)
        if instance is None:
            # Instance went away between send and delivery
            logger.info(f"Dropping message for unknown instance {instance_id}")
            return None
        return instance.on_message(body)

    def dispatch(self) -> int:
        """Deliver every pending message."""
        return self.messenger.dispatch_pending()
