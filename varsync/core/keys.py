"""
Key validation and encoding.

Two policies are built on `validate_name`:

* batch: every name in a set must be valid or the whole operation is refused
  (`validate_batch` raises `InvalidKeyError`);
* single key: an invalid name in an inbound request is logged and the request
  dropped (`accept_name` returns False, never raises).
"""

import re
from typing import Iterable

from util.logging import logger
from .config import KEY_PATTERN
from .errors import InvalidKeyError
from .schema import DeclarationClass, StoreKey

_NAME_RE = re.compile(KEY_PATTERN)


def validate_name(name) -> bool:
    """Check a name against the allowed character class."""
    return isinstance(name, str) and _NAME_RE.fullmatch(name) is not None


def validate_batch(names: Iterable[str]) -> None:
    """Raise InvalidKeyError for the first invalid name."""
    for name in names:
        if not validate_name(name):
            raise InvalidKeyError(name)


def accept_name(name) -> bool:
    """Single-key policy: log and report False on an invalid name."""
    if validate_name(name):
        return True
    logger.log_message_dropped(
        f"Invalid key format: {name!r}. Only alphanumeric, underscore, and hyphen allowed"
    )
    return False


def make_key(declaration_class: DeclarationClass, name: str) -> StoreKey:
    """Build a store key, refusing invalid names."""
    if not validate_name(name):
        raise InvalidKeyError(name)
    return StoreKey(declaration_class, name)
