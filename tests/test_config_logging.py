"""
Configuration, structured logging redaction and snapshot store tests.
"""

import logging

import pytest
from unittest.mock import patch

from util.logging import REDACTED, audit_event, logger, sanitize_payload
from varsync.core import config
from varsync.core.crypto import SecretCipher
from varsync.core.errors import StoreError
from varsync.core.kv import InMemoryKVBackend, SQLiteKVBackend
from varsync.core.reconcile import Reconciler
from varsync.core.schema import DeclarationClass, ProjectOwner, StoreKey
from varsync.core.snapshots import InMemorySnapshotStore, SQLiteSnapshotStore
from varsync.core.store import OwnershipLockedStore


class TestConfig:

    def test_defaults_are_valid(self):
        with patch.object(config, "STORE_BACKEND", "sqlite"), \
             patch.object(config, "SECRET_ENCRYPTION_ENABLED", False):
            assert config.validate_config() == []

    def test_unknown_backend_reported(self):
        with patch.object(config, "STORE_BACKEND", "etcd"):
            assert "Invalid STORE_BACKEND: etcd" in config.validate_config()

    def test_default_password_rejected_outside_debug(self, monkeypatch):
        monkeypatch.setenv("DEBUG", "false")
        with patch.object(config, "SECRET_ENCRYPTION_ENABLED", True), \
             patch.object(config, "SECRET_MASTER_PASSWORD", config.DEFAULT_MASTER_PASSWORD):
            issues = config.validate_config()
        assert any("SECRET_MASTER_PASSWORD" in issue for issue in issues)

    def test_backend_factory(self, tmp_path):
        with patch.object(config, "STORE_BACKEND", "memory"):
            assert isinstance(config.get_kv_backend(), InMemoryKVBackend)
            assert isinstance(config.get_snapshot_store(), InMemorySnapshotStore)
        with patch.object(config, "STORE_BACKEND", "sqlite"):
            assert isinstance(config.get_kv_backend(str(tmp_path / "a.db")), SQLiteKVBackend)

    def test_cipher_only_when_enabled(self):
        with patch.object(config, "SECRET_ENCRYPTION_ENABLED", False):
            assert config.get_secret_cipher() is None
        with patch.object(config, "SECRET_ENCRYPTION_ENABLED", True):
            assert isinstance(config.get_secret_cipher(), SecretCipher)

    def test_sync_config_defaults_to_project_owner(self):
        sync_config = config.sync_config_for(DeclarationClass.SENSITIVE)

        assert sync_config.declaration_class is DeclarationClass.SENSITIVE
        assert sync_config.project_owner == ProjectOwner()


class TestLoggingRedaction:

    def test_sensitive_write_never_logged(self, caplog):
        store = OwnershipLockedStore(InMemoryKVBackend())

        with caplog.at_level(logging.INFO, logger="varsync"):
            store.write(StoreKey(DeclarationClass.SENSITIVE, "token"), "hunter2", ProjectOwner())
            store.write(StoreKey(DeclarationClass.PLAIN, "region"), "eu-west", ProjectOwner())

        assert "hunter2" not in caplog.text
        assert REDACTED in caplog.text
        assert "eu-west" in caplog.text

    @pytest.mark.parametrize("reveal, visible", [(False, False), (True, True)])
    def test_reveal_setting_controls_reconciled_secrets(self, caplog, reveal, visible):
        store = OwnershipLockedStore(InMemoryKVBackend())
        reconciler = Reconciler(store, config.sync_config_for(DeclarationClass.SENSITIVE))

        with patch.object(config, "LOG_REVEAL_SENSITIVE", reveal), \
             caplog.at_level(logging.INFO, logger="varsync"):
            reconciler.reconcile({}, {"tok": "s3cret"})

        assert ("s3cret" in caplog.text) is visible
        assert (REDACTED in caplog.text) is not visible

    def test_explicit_reveal_overrides_setting(self, caplog):
        store = OwnershipLockedStore(InMemoryKVBackend(), reveal_sensitive=False)

        with patch.object(config, "LOG_REVEAL_SENSITIVE", True), \
             caplog.at_level(logging.INFO, logger="varsync"):
            store.write(StoreKey(DeclarationClass.SENSITIVE, "tok"), "s3cret", ProjectOwner())

        assert "s3cret" not in caplog.text

    def test_dropped_message_body_sanitized(self, caplog):
        with caplog.at_level(logging.ERROR, logger="varsync"):
            logger.log_message_dropped("bad", {"name": "x", "value": "secret-value"})

        assert "secret-value" not in caplog.text
        assert "message.dropped" in caplog.text

    def test_sanitize_payload_nested(self):
        payload = {"name": "n", "newValue": "v", "items": [{"previousValue": "p"}]}

        assert sanitize_payload(payload) == {
            "name": "n", "newValue": REDACTED, "items": [{"previousValue": REDACTED}]
        }
        assert sanitize_payload(payload, reveal_sensitive=True) == payload

    def test_audit_event_redacts_payload(self, caplog):
        with caplog.at_level(logging.INFO, logger="varsync"):
            audit_event("instance.registered", {"instance_id": "i1"}, payload={"value": "v1"})

        assert "instance_registered" in caplog.text
        assert "v1" not in caplog.text


class TestSQLiteSnapshotStore:

    def test_round_trip_and_overwrite(self, tmp_path):
        snapshots = SQLiteSnapshotStore(str(tmp_path / "s.db"))

        assert snapshots.load(DeclarationClass.PLAIN) == {}
        snapshots.save(DeclarationClass.PLAIN, {"a": "1"})
        snapshots.save(DeclarationClass.PLAIN, {"b": "2"})

        assert snapshots.load(DeclarationClass.PLAIN) == {"b": "2"}
        assert snapshots.load(DeclarationClass.SENSITIVE) == {}

    def test_sensitive_snapshot_encrypted(self, tmp_path):
        path = str(tmp_path / "s.db")
        cipher = SecretCipher.from_password("pw", b"salt")
        snapshots = SQLiteSnapshotStore(path, cipher=cipher)

        snapshots.save(DeclarationClass.SENSITIVE, {"token": "hunter2"})
        snapshots.save(DeclarationClass.PLAIN, {"region": "eu"})

        plain_view = SQLiteSnapshotStore(path)
        assert plain_view.load(DeclarationClass.PLAIN) == {"region": "eu"}
        with pytest.raises(StoreError):
            plain_view.load(DeclarationClass.SENSITIVE)
        assert snapshots.load(DeclarationClass.SENSITIVE) == {"token": "hunter2"}
