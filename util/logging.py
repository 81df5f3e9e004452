"""
Structured logging for store, reconciliation, lifecycle and messaging operations.
Values of the sensitive class never reach the log output.
"""

import logging
from typing import Any, Dict, Iterable, List

REDACTED = "[REDACTED]"
DEFAULT_SENSITIVE_FIELDS = ['value', 'newValue', 'previousValue', 'secret', 'password']


def _truncate(value: str, limit: int = 50) -> str:
    return value[:limit] + "..." if len(value) > limit else value


class StructuredLogger:
    """Structured logger for KV, reconciliation and lifecycle operations."""

    def __init__(self, name: str = "varsync"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_kv_operation(self, operation: str, key: str, owner: str = None, value: str = None,
                         status: str = "success", sensitive: bool = False):
        """Log a KV-specific operation. Sensitive values are redacted."""
        details = {"key": key}
        if owner is not None:
            details["owner"] = owner
        if value is not None:
            details["value"] = REDACTED if sensitive else _truncate(value)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"KV.{operation}", status, details, level)

    def log_reconcile(self, declaration_class: str, changed: Iterable[str], failed: Iterable[str]):
        """Log the outcome of one reconciliation pass."""
        changed = sorted(changed)
        failed = sorted(failed)
        details = {
            "class": declaration_class,
            "changed": changed,
            "failed": failed,
        }
        status = "failed" if failed else "success"
        level = logging.WARNING if failed else logging.INFO
        self.log_operation("reconcile", status, details, level)

    def log_lifecycle_transition(self, instance_id: str, handler: str, status: str, description: str = None):
        """Log the status an instance handler settled on."""
        details = {"instance_id": instance_id, "handler": handler}
        if description:
            details["description"] = description
        self.log_operation(f"lifecycle.{handler}", status, details)

    def log_notification(self, declaration_class: str, keys: Iterable[str], instance_ids: List[str], status: str = "sent"):
        """Log a wake fan-out."""
        details = {
            "class": declaration_class,
            "keys": sorted(keys),
            "instances": len(instance_ids),
        }
        level = logging.INFO if status == "sent" else logging.ERROR
        self.log_operation("notify.wake", status, details, level)

    def log_message_dropped(self, reason: str, body: Any = None):
        """Log an inbound message that failed validation."""
        details = {"reason": _truncate(reason, 200)}
        if body is not None:
            details["body"] = sanitize_payload(body)
        self.log_operation("message.dropped", "rejected", details, logging.ERROR)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = REDACTED
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
