"""
Core data types shared by the store client, reconciler, router and lifecycles.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Set, Union

PROJECT_TOKEN = "app"
KEY_SEPARATOR = "::"


class DeclarationClass(str, Enum):
    """The two parallel namespaces. Values are the boundary encoding."""
    PLAIN = "variable"
    SENSITIVE = "secret"

    @property
    def sensitive(self) -> bool:
        return self is DeclarationClass.SENSITIVE


@dataclass(frozen=True)
class ProjectOwner:
    """The singleton project-level owner."""

    @property
    def token(self) -> str:
        return PROJECT_TOKEN

    def __str__(self):
        return "project"


@dataclass(frozen=True)
class InstanceOwner:
    """An owner identified by the id of the instance that declares the key."""
    instance_id: str

    def __post_init__(self):
        if not self.instance_id or not self.instance_id.strip():
            raise ValueError("instance_id cannot be empty")
        if self.instance_id == PROJECT_TOKEN:
            raise ValueError(f"instance_id '{PROJECT_TOKEN}' is reserved for the project owner")

    @property
    def token(self) -> str:
        return self.instance_id

    def __str__(self):
        return f"instance:{self.instance_id}"


Owner = Union[ProjectOwner, InstanceOwner]


def owner_from_token(token: str) -> Owner:
    """Decode a boundary owner token."""
    if token == PROJECT_TOKEN:
        return ProjectOwner()
    return InstanceOwner(token)


@dataclass(frozen=True)
class StoreKey:
    declaration_class: DeclarationClass
    name: str

    def encode(self) -> str:
        return f"{self.declaration_class.value}{KEY_SEPARATOR}{self.name}"

    def __str__(self):
        return self.encode()


@dataclass
class KVRecord:
    """A raw record as held by a KV backend."""
    key: str
    value: str
    lock_id: Optional[str]
    updated_at: datetime


@dataclass
class ReconcileResult:
    changed_keys: Set[str] = field(default_factory=set)
    failed_keys: Set[str] = field(default_factory=set)


class InstanceStatus(str, Enum):
    READY = "ready"
    FAILED = "failed"
    DRAINING = "draining"
    DRAINED = "drained"
    DRAINING_FAILED = "draining_failed"


class InstanceKind(str, Enum):
    FLOW = "flow"
    DECLARE = "declare"
    CONSUME = "consume"


# Change events. previousValue is only present when a prior value existed.

@dataclass(frozen=True)
class DeclaredValueChanged:
    name: str
    value: str
    previous_value: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {"name": self.name, "value": self.value}
        if self.previous_value is not None:
            payload["previousValue"] = self.previous_value
        return payload


@dataclass(frozen=True)
class FlowValueChanged:
    value: str
    previous_value: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {"value": self.value}
        if self.previous_value is not None:
            payload["previousValue"] = self.previous_value
        return payload


@dataclass(frozen=True)
class ObservedValueChanged:
    name: str
    new_value: str
    previous_value: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {"name": self.name}
        if self.previous_value is not None:
            payload["previousValue"] = self.previous_value
        payload["newValue"] = self.new_value
        return payload


ChangeEvent = Union[DeclaredValueChanged, FlowValueChanged, ObservedValueChanged]


@dataclass
class LifecycleResult:
    """Outcome of one lifecycle invocation."""
    status: InstanceStatus
    description: Optional[str] = None
    event: Optional[ChangeEvent] = None
