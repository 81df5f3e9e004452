"""
Per-instance lifecycle handlers.

Three kinds of instance run these handlers when the host invokes them:

FlowInstance
    Holds a value locally. ``sync`` emits ``{value, previousValue?}`` when the
    configured value differs from the remembered signal. Never touches the
    store and is always ``ready``.

DeclaringInstance
    Owns one key under its own token. ``sync`` writes the key (a refused write
    means someone else holds it: ``failed``), emits ``{name, value,
    previousValue?}`` on change and sends the project a sync notice so
    consumers refresh. ``drain`` asks the project to release the key.

ConsumingInstance
    Reads one key. ``sync`` emits ``{name, previousValue?, newValue}`` on
    change; an absent key is ``failed`` / "Not found" and clears the signal.
    Any inbound message is a wake and re-runs ``sync``.

Change detection compares against the remembered signal, so every handler is
safe to run again on redelivery.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from util.logging import logger
from .errors import DeliveryError, StoreError
from .keys import make_key
from .messaging import DrainRequest, EventSink, Messenger, SyncNotice
from .schema import (
    ChangeEvent,
    DeclarationClass,
    DeclaredValueChanged,
    FlowValueChanged,
    InstanceKind,
    InstanceOwner,
    InstanceStatus,
    LifecycleResult,
    ObservedValueChanged,
)
from .store import OwnershipLockedStore

SEE_LOGS = "See logs for details"
LOCK_CONFLICT = "Failed to set, already exists?"
NOT_FOUND = "Not found"


@dataclass
class LifecycleContext:
    """Collaborators shared by instance handlers."""
    store: OwnershipLockedStore
    messenger: Messenger
    events: EventSink


class BaseInstance:
    kind: InstanceKind

    def __init__(self, instance_id: str, declaration_class: DeclarationClass, context: LifecycleContext):
        self.instance_id = instance_id
        self.declaration_class = declaration_class
        self.context = context
        self.status: Optional[InstanceStatus] = None
        self.description: Optional[str] = None
        self.signal: Optional[str] = None

    @property
    def sensitive(self) -> bool:
        return self.declaration_class.sensitive

    def sync(self) -> LifecycleResult:
        raise NotImplementedError

    def drain(self) -> LifecycleResult:
        return self._finish("drain", InstanceStatus.DRAINED)

    def on_message(self, body: Dict[str, Any]) -> Optional[LifecycleResult]:
        """Inbound messages are ignored unless the kind reacts to them."""
        return None

    def _emit(self, event: ChangeEvent):
        self.context.events.emit(self.instance_id, event)

    def _finish(self, handler: str, status: InstanceStatus, description: str = None,
                event: ChangeEvent = None) -> LifecycleResult:
        self.status = status
        self.description = description
        logger.log_lifecycle_transition(self.instance_id, handler, status.value, description)
        return LifecycleResult(status=status, description=description, event=event)


class FlowInstance(BaseInstance):
    kind = InstanceKind.FLOW

    def __init__(self, instance_id: str, declaration_class: DeclarationClass, value: str, context: LifecycleContext):
        super().__init__(instance_id, declaration_class, context)
        self.value = value

    def reconfigure(self, value: str):
        self.value = value

    def sync(self) -> LifecycleResult:
        event = None
        if self.signal != self.value:
            event = FlowValueChanged(value=self.value, previous_value=self.signal)
            self._emit(event)
        self.signal = self.value
        return self._finish("sync", InstanceStatus.READY, event=event)

    def drain(self) -> LifecycleResult:
        # Nothing is held outside the instance
        return self._finish("drain", InstanceStatus.READY)


class DeclaringInstance(BaseInstance):
    kind = InstanceKind.DECLARE

    def __init__(self, instance_id: str, declaration_class: DeclarationClass, name: str, value: str,
                 context: LifecycleContext):
        super().__init__(instance_id, declaration_class, context)
        self.key = make_key(declaration_class, name)
        self.owner = InstanceOwner(instance_id)
        self.value = value

    @property
    def name(self) -> str:
        return self.key.name

    def reconfigure(self, value: str):
        self.value = value

    def sync(self) -> LifecycleResult:
        try:
            written = self.context.store.write(self.key, self.value, self.owner)
        except StoreError as e:
            logger.error(f"Error setting {self.key}: {e}")
            return self._finish("sync", InstanceStatus.FAILED, SEE_LOGS)

        if not written:
            return self._finish("sync", InstanceStatus.FAILED, LOCK_CONFLICT)

        event = None
        if self.signal != self.value:
            event = DeclaredValueChanged(name=self.name, value=self.value, previous_value=self.signal)
            self._emit(event)
        self.signal = self.value

        notice = SyncNotice(var_type=self.declaration_class, name=self.name, owner=self.owner.token)
        try:
            self.context.messenger.send_to_project(notice.to_body())
        except DeliveryError as e:
            # The write already landed; consumers catch up on the next notice
            logger.error(f"Error sending sync notice for {self.key}: {e}")

        return self._finish("sync", InstanceStatus.READY, event=event)

    def drain(self) -> LifecycleResult:
        self.status = InstanceStatus.DRAINING

        # Nothing was ever written, so there is nothing to release
        if self.signal is None:
            return self._finish("drain", InstanceStatus.DRAINED)

        request = DrainRequest(var_type=self.declaration_class, name=self.name, owner=self.owner.token)
        try:
            accepted = self.context.messenger.send_to_project(request.to_body())
            if not accepted:
                raise DeliveryError("transport refused drain request")
        except DeliveryError as e:
            logger.error(f"Error draining {self.key}: {e}")
            return self._finish("drain", InstanceStatus.DRAINING_FAILED, SEE_LOGS)

        return self._finish("drain", InstanceStatus.DRAINED)


class ConsumingInstance(BaseInstance):
    kind = InstanceKind.CONSUME

    def __init__(self, instance_id: str, declaration_class: DeclarationClass, name: str, context: LifecycleContext):
        super().__init__(instance_id, declaration_class, context)
        self.key = make_key(declaration_class, name)

    @property
    def name(self) -> str:
        return self.key.name

    def sync(self) -> LifecycleResult:
        try:
            value = self.context.store.read(self.key)
        except StoreError as e:
            logger.error(f"Error reading {self.key}: {e}")
            return self._finish("sync", InstanceStatus.FAILED, SEE_LOGS)

        if value is None:
            self.signal = None
            return self._finish("sync", InstanceStatus.FAILED, NOT_FOUND)

        event = None
        if self.signal != value:
            event = ObservedValueChanged(name=self.name, new_value=value, previous_value=self.signal)
            self._emit(event)
        self.signal = value
        return self._finish("sync", InstanceStatus.READY, event=event)

    def on_message(self, body: Dict[str, Any]) -> Optional[LifecycleResult]:
        """Any delivery is a wake."""
        return self.sync()
