"""
Runtime configuration for the variable synchronization service.
All settings are read from environment variables with safe defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from .schema import DeclarationClass, Owner, ProjectOwner

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/varsync.db")

DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# KV backend configuration
STORE_BACKEND = os.getenv("STORE_BACKEND", "sqlite")  # sqlite|memory

# Sensitive values at rest (default disabled)
SECRET_ENCRYPTION_ENABLED = os.getenv("SECRET_ENCRYPTION_ENABLED", "false").lower() == "true"
DEFAULT_MASTER_PASSWORD = "default_master_key_change_in_production"
SECRET_MASTER_PASSWORD = os.getenv("SECRET_MASTER_PASSWORD", DEFAULT_MASTER_PASSWORD)
SECRET_KEY_SALT = os.getenv("SECRET_KEY_SALT", "varsync-secret-salt")

# Never enable outside local debugging
LOG_REVEAL_SENSITIVE = os.getenv("LOG_REVEAL_SENSITIVE", "false").lower() == "true"


# Name syntax shared by every key in both namespaces
KEY_PATTERN = r"^[A-Za-z0-9_-]+$"

VERSION = "1.0.0"


@dataclass(frozen=True)
class SyncConfig:
    """Per-component configuration passed in at construction time."""
    declaration_class: DeclarationClass
    project_owner: Owner = ProjectOwner()


def sync_config_for(declaration_class: DeclarationClass) -> SyncConfig:
    """Build the component configuration for one declaration class."""
    return SyncConfig(declaration_class=declaration_class)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def get_kv_backend(db_path: str = None):
    """Get configured KV backend implementation."""
    from .kv import InMemoryKVBackend, SQLiteKVBackend

    if STORE_BACKEND == "memory":
        return InMemoryKVBackend()
    return SQLiteKVBackend(db_path or DB_PATH)


def get_snapshot_store(db_path: str = None):
    """Get the snapshot store matching the configured backend."""
    from .snapshots import InMemorySnapshotStore, SQLiteSnapshotStore

    if STORE_BACKEND == "memory":
        return InMemorySnapshotStore()
    return SQLiteSnapshotStore(db_path or DB_PATH, cipher=get_secret_cipher())


def get_secret_cipher():
    """Get the at-rest cipher for sensitive values. Returns None if encryption disabled."""
    if not SECRET_ENCRYPTION_ENABLED:
        return None

    from .crypto import SecretCipher
    return SecretCipher.from_password(SECRET_MASTER_PASSWORD, SECRET_KEY_SALT.encode())


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if STORE_BACKEND not in ["sqlite", "memory"]:
        issues.append(f"Invalid STORE_BACKEND: {STORE_BACKEND}")

    if SECRET_ENCRYPTION_ENABLED and SECRET_MASTER_PASSWORD == DEFAULT_MASTER_PASSWORD and not debug_enabled():
        issues.append("SECRET_ENCRYPTION_ENABLED requires SECRET_MASTER_PASSWORD outside debug mode")

    return issues
