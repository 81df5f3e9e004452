"""
Registry of live instances.
Provides lookup by id and consumer discovery for the notification router.
"""

from typing import Any, Dict, List, Optional

from util.logging import audit_event
from .keys import validate_name
from .schema import PROJECT_TOKEN, DeclarationClass, InstanceKind


class InstanceRegistry:
    """
    Holds the instances the host currently runs.

    Instances are any objects exposing ``instance_id``, ``kind`` and
    ``declaration_class``; consumers additionally expose ``name``.
    """

    def __init__(self):
        self.instances: Dict[str, Any] = {}

    def register(self, instance) -> None:
        instance_id = instance.instance_id
        if instance_id in self.instances:
            raise ValueError(f"Instance with ID '{instance_id}' already exists")

        # Same character rules as key names
        if not validate_name(instance_id):
            raise ValueError(f"Instance ID '{instance_id}' contains invalid characters")
        if instance_id == PROJECT_TOKEN:
            raise ValueError(f"Instance ID '{PROJECT_TOKEN}' is reserved")

        self.instances[instance_id] = instance

        audit_event(
            event_type="instance.registered",
            identifiers={
                "instance_id": instance_id,
                "kind": instance.kind.value,
                "class": instance.declaration_class.value,
                "name": getattr(instance, "name", None),
            }
        )

    def unregister(self, instance_id: str) -> bool:
        if instance_id not in self.instances:
            return False
        del self.instances[instance_id]
        audit_event(event_type="instance.unregistered", identifiers={"instance_id": instance_id})
        return True

    def get(self, instance_id: str) -> Optional[Any]:
        return self.instances.get(instance_id)

    def list_instances(self) -> List[Any]:
        return list(self.instances.values())

    def list_consumers(self, declaration_class: DeclarationClass) -> List[Any]:
        """All consuming instances bound to the given class."""
        return [
            instance for instance in self.instances.values()
            if instance.kind is InstanceKind.CONSUME and instance.declaration_class is declaration_class
        ]
