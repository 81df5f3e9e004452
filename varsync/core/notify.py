"""
Change-notification fan-out to consuming instances.
"""

from typing import Iterable, List

from util.logging import logger
from .errors import DeliveryError
from .messaging import Messenger
from .registry import InstanceRegistry
from .schema import DeclarationClass

WAKE_BODY = {}


class NotificationRouter:
    """Wakes exactly the consumers bound to a changed key.

    The wake carries no content; consumers re-read the store on their own
    sync path. Delivery faults are logged and never undo store changes.
    """

    def __init__(self, registry: InstanceRegistry, messenger: Messenger):
        self.registry = registry
        self.messenger = messenger

    def targets(self, declaration_class: DeclarationClass, changed_keys: Iterable[str]) -> List[str]:
        changed = set(changed_keys)
        return [
            consumer.instance_id
            for consumer in self.registry.list_consumers(declaration_class)
            if consumer.name in changed
        ]

    def notify(self, declaration_class: DeclarationClass, changed_keys: Iterable[str]) -> List[str]:
        """Send a wake to every consumer bound to one of changed_keys.

        Returns the ids the transport accepted wakes for.
        """
        changed = set(changed_keys)
        if not changed:
            return []

        instance_ids = self.targets(declaration_class, changed)
        if not instance_ids:
            return []

        try:
            accepted = self.messenger.send_to_instances(instance_ids, dict(WAKE_BODY))
        except DeliveryError as e:
            logger.error(f"Error notifying {declaration_class.value} consumers: {e}")
            logger.log_notification(declaration_class.value, changed, instance_ids, status="failed")
            return []

        if not accepted:
            logger.log_notification(declaration_class.value, changed, instance_ids, status="rejected")
            return []

        logger.log_notification(declaration_class.value, changed, instance_ids)
        return instance_ids
