"""
Inbound request types, one-way messaging and change-event emission.

Project-level requests arrive as loosely-typed JSON bodies and are validated
into `DrainRequest` / `SyncNotice` before any field is used. Malformed bodies
are logged and dropped; they never raise into the caller.

Sends are one-way: a send returns only whether the transport accepted the
message. The receiver handles it later, as an independent invocation.
"""

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Deque, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from util.logging import logger
from .errors import DeliveryError
from .keys import accept_name
from .schema import ChangeEvent, DeclarationClass, Owner, StoreKey, owner_from_token

PROJECT_TARGET = "__project__"


class _ProjectMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    var_type: DeclarationClass = Field(alias="varType")
    name: str

    @property
    def key(self) -> StoreKey:
        return StoreKey(self.var_type, self.name)

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class DrainRequest(_ProjectMessage):
    """An owner asks the project to release a key it held."""
    action: Literal["drain"] = "drain"
    owner: str = Field(min_length=1)

    @property
    def owner_ref(self) -> Owner:
        return owner_from_token(self.owner)


class SyncNotice(_ProjectMessage):
    """A declaring instance changed a key; refresh its consumers."""
    action: Literal["sync"] = "sync"
    owner: Optional[str] = None


ProjectRequest = Annotated[Union[DrainRequest, SyncNotice], Field(discriminator="action")]

_request_adapter = TypeAdapter(ProjectRequest)


def parse_project_message(body: Any) -> Optional[Union[DrainRequest, SyncNotice]]:
    """Validate an inbound project message. Returns None if it must be dropped."""
    if not isinstance(body, dict):
        logger.log_message_dropped(f"Invalid message body type: {type(body).__name__}")
        return None

    try:
        request = _request_adapter.validate_python(body)
    except ValidationError as e:
        fields = sorted({".".join(str(loc) for loc in err["loc"]) for err in e.errors()})
        logger.log_message_dropped(f"Invalid message fields: {fields}", body)
        return None

    if not accept_name(request.name):
        return None

    if isinstance(request, DrainRequest):
        try:
            owner_from_token(request.owner)
        except ValueError as e:
            logger.log_message_dropped(f"Invalid owner: {e}", body)
            return None

    return request


class Messenger(ABC):
    """One-way transport between instances and the project."""

    @abstractmethod
    def send_to_project(self, body: Dict[str, Any]) -> bool:
        """Hand a message to the project. Raises DeliveryError on transport failure."""
        pass

    @abstractmethod
    def send_to_instances(self, instance_ids: Iterable[str], body: Dict[str, Any]) -> bool:
        """Hand one message per instance to the transport."""
        pass


@dataclass
class Envelope:
    target: str
    body: Dict[str, Any]


class InProcessMessenger(Messenger):
    """Queues messages and delivers them when `dispatch_pending` runs.

    Delivery is at-least-once from the receiver's point of view: handlers may
    see the same envelope again through `redeliver`.
    """

    def __init__(self, max_queue: int = 10000, history: int = 1000):
        self.max_queue = max_queue
        self.pending: Deque[Envelope] = deque()
        # Most recent deliveries only, for redelivery
        self.delivered: Deque[Envelope] = deque(maxlen=history)
        self._project_handler: Optional[Callable[[Dict[str, Any]], Any]] = None
        self._instance_handler: Optional[Callable[[str, Dict[str, Any]], Any]] = None

    def bind(self, project_handler: Callable[[Dict[str, Any]], Any],
             instance_handler: Callable[[str, Dict[str, Any]], Any]):
        self._project_handler = project_handler
        self._instance_handler = instance_handler

    def send_to_project(self, body: Dict[str, Any]) -> bool:
        self._enqueue(Envelope(PROJECT_TARGET, dict(body)))
        return True

    def send_to_instances(self, instance_ids: Iterable[str], body: Dict[str, Any]) -> bool:
        for instance_id in instance_ids:
            self._enqueue(Envelope(instance_id, dict(body)))
        return True

    def _enqueue(self, envelope: Envelope):
        if len(self.pending) >= self.max_queue:
            raise DeliveryError(f"Message queue full ({self.max_queue}); dropping message for {envelope.target}")
        self.pending.append(envelope)

    def dispatch_pending(self) -> int:
        """Deliver queued messages, including any queued while delivering."""
        if self._project_handler is None or self._instance_handler is None:
            raise DeliveryError("Messenger is not bound to any receivers")

        count = 0
        while True:
            # Another dispatcher may have taken the last envelope
            try:
                envelope = self.pending.popleft()
            except IndexError:
                break
            self.delivered.append(envelope)
            count += 1
            try:
                if envelope.target == PROJECT_TARGET:
                    self._project_handler(envelope.body)
                else:
                    self._instance_handler(envelope.target, envelope.body)
            except Exception as e:
                # One failing receiver must not stall the rest of the queue
                logger.error(f"Error delivering message to {envelope.target}: {e}")
        return count

    def redeliver(self, envelopes: Iterable[Envelope]):
        """Queue already-delivered envelopes again."""
        for envelope in envelopes:
            self._enqueue(Envelope(envelope.target, dict(envelope.body)))


class EventSink:
    """Collects the most recent change events emitted by instances."""

    def __init__(self, max_events: int = 10000):
        self.events: Deque[Tuple[str, Dict[str, Any]]] = deque(maxlen=max_events)

    def emit(self, instance_id: str, event: ChangeEvent):
        self.events.append((instance_id, event.to_payload()))

    def events_for(self, instance_id: str) -> List[Dict[str, Any]]:
        return [payload for source, payload in list(self.events) if source == instance_id]
