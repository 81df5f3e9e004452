"""
Project orchestration and end-to-end runtime tests.
"""

import pytest
from unittest.mock import patch

from varsync.core.crypto import SecretCipher
from varsync.core.errors import DeliveryError, StoreError
from varsync.core.kv import InMemoryKVBackend, SQLiteKVBackend
from varsync.core.runtime import SyncRuntime
from varsync.core.schema import (
    DeclarationClass,
    InstanceKind,
    InstanceOwner,
    InstanceStatus,
    StoreKey,
)
from varsync.core.snapshots import InMemorySnapshotStore, SQLiteSnapshotStore

PLAIN = DeclarationClass.PLAIN
SENSITIVE = DeclarationClass.SENSITIVE


@pytest.fixture
def runtime():
    return SyncRuntime(backend=InMemoryKVBackend(), snapshots=InMemorySnapshotStore())


def consumer(runtime, instance_id, name, declaration_class=PLAIN):
    return runtime.create_instance(InstanceKind.CONSUME, instance_id, declaration_class, name=name)


class TestProjectConfigChange:

    def test_both_classes_reconciled_independently(self, runtime):
        outcome = runtime.project.on_config_change({"region": "eu"}, {"token": "s1"})

        assert outcome.status is InstanceStatus.READY
        assert outcome.results[PLAIN].changed_keys == {"region"}
        assert outcome.results[SENSITIVE].changed_keys == {"token"}
        assert runtime.store.read(StoreKey(PLAIN, "region")) == "eu"
        assert runtime.store.read(StoreKey(SENSITIVE, "token")) == "s1"

    def test_only_consumers_of_changed_keys_woken(self, runtime):
        runtime.project.on_config_change({"a": "1", "x": "9"}, {})
        use_a = consumer(runtime, "use-a", "a")
        use_x = consumer(runtime, "use-x", "x")
        use_a.sync()
        use_x.sync()

        runtime.project.on_config_change({"a": "2", "x": "9"}, {})

        assert [e.target for e in runtime.messenger.pending] == ["use-a"]
        runtime.dispatch()
        assert use_a.signal == "2"
        assert runtime.events.events_for("use-a")[-1] == {"name": "a", "previousValue": "1", "newValue": "2"}
        assert len(runtime.events.events_for("use-x")) == 1

    def test_unchanged_config_wakes_nobody(self, runtime):
        consumer(runtime, "use-a", "a")
        runtime.project.on_config_change({"a": "1"}, {})
        runtime.dispatch()

        outcome = runtime.project.on_config_change({"a": "1"}, {})

        assert outcome.results[PLAIN].changed_keys == set()
        assert len(runtime.messenger.pending) == 0

    def test_same_name_different_class_not_woken(self, runtime):
        secret_user = consumer(runtime, "use-secret", "a", SENSITIVE)

        runtime.project.on_config_change({"a": "1"}, {})

        assert [e.target for e in runtime.messenger.pending] == []
        assert secret_user.status is None

    def test_removed_key_surfaces_not_found(self, runtime):
        runtime.project.on_config_change({"a": "1"}, {})
        use_a = consumer(runtime, "use-a", "a")
        use_a.sync()

        runtime.project.on_config_change({}, {})
        runtime.dispatch()

        assert use_a.status is InstanceStatus.FAILED
        assert use_a.description == "Not found"
        assert use_a.signal is None

    def test_failed_key_marks_project_failed_but_snapshot_persisted(self, runtime):
        runtime.store.write(StoreKey(PLAIN, "b"), "held", InstanceOwner("define-1"))

        outcome = runtime.project.on_config_change({"a": "1", "b": "2"}, {})

        assert outcome.status is InstanceStatus.FAILED
        assert outcome.results[PLAIN].failed_keys == {"b"}
        assert "b" in outcome.description
        assert runtime.project.snapshots.load(PLAIN) == {"a": "1", "b": "2"}

        # Unchanged desired value is not retried on the next pass
        outcome = runtime.project.on_config_change({"a": "1", "b": "2"}, {})
        assert outcome.status is InstanceStatus.READY
        assert outcome.results[PLAIN].changed_keys == set()

    def test_invalid_name_aborts_class_only(self, runtime):
        outcome = runtime.project.on_config_change({"bad name": "1", "ok": "2"}, {"token": "s"})

        assert outcome.status is InstanceStatus.FAILED
        assert "bad name" in outcome.description
        assert runtime.store.read(StoreKey(PLAIN, "ok")) is None
        assert runtime.store.read(StoreKey(SENSITIVE, "token")) == "s"
        assert runtime.project.snapshots.load(PLAIN) == {}
        assert runtime.project.snapshots.load(SENSITIVE) == {"token": "s"}

    def test_retrigger_retries_failed_keys(self, runtime):
        define = runtime.create_instance(InstanceKind.DECLARE, "define-1", PLAIN, name="b", value="mine")
        define.sync()
        outcome = runtime.project.on_config_change({"b": "project"}, {})
        assert outcome.results[PLAIN].failed_keys == {"b"}

        runtime.store.release(StoreKey(PLAIN, "b"), InstanceOwner("define-1"))
        outcome = runtime.project.retrigger()

        assert outcome.status is InstanceStatus.READY
        assert runtime.store.read(StoreKey(PLAIN, "b")) == "project"

    def test_unreadable_snapshot_fails_that_class_only(self, runtime):
        load = runtime.project.snapshots.load

        def failing_load(declaration_class):
            if declaration_class is SENSITIVE:
                raise StoreError("Decryption failed")
            return load(declaration_class)

        with patch.object(runtime.project.snapshots, "load", side_effect=failing_load):
            outcome = runtime.project.on_config_change({"a": "1"}, {"t": "s"})

        assert outcome.status is InstanceStatus.FAILED
        assert "Could not load secret snapshot" in outcome.description
        assert runtime.store.read(StoreKey(PLAIN, "a")) == "1"
        assert runtime.store.read(StoreKey(SENSITIVE, "t")) is None
        assert runtime.project.snapshots.load(SENSITIVE) == {}

    def test_snapshot_save_fault_reported(self, runtime):
        with patch.object(runtime.project.snapshots, "save", side_effect=StoreError("disk full")):
            outcome = runtime.project.on_config_change({"a": "1"}, {})

        assert outcome.status is InstanceStatus.FAILED
        assert "Could not save variable snapshot" in outcome.description
        assert runtime.store.read(StoreKey(PLAIN, "a")) == "1"

    def test_notification_fault_does_not_revert_writes(self, runtime):
        consumer(runtime, "use-a", "a")

        with patch.object(runtime.messenger, "send_to_instances", side_effect=DeliveryError("bus down")):
            outcome = runtime.project.on_config_change({"a": "1"}, {})

        assert outcome.status is InstanceStatus.READY
        assert runtime.store.read(StoreKey(PLAIN, "a")) == "1"


class TestProjectMessages:

    def test_sync_notice_refreshes_consumers(self, runtime):
        use = consumer(runtime, "use-region", "region")
        define = runtime.create_instance(InstanceKind.DECLARE, "define-1", PLAIN, name="region", value="eu")

        define.sync()
        runtime.dispatch()

        assert use.status is InstanceStatus.READY
        assert use.signal == "eu"
        assert runtime.events.events_for("use-region") == [{"name": "region", "newValue": "eu"}]

    def test_drain_releases_and_notifies_once(self, runtime):
        use = consumer(runtime, "use-region", "region")
        define = runtime.create_instance(InstanceKind.DECLARE, "define-1", PLAIN, name="region", value="eu")
        define.sync()
        runtime.dispatch()

        drain_body = {"action": "drain", "varType": "variable", "name": "region", "owner": "define-1"}
        assert runtime.project.on_message(drain_body) is True
        assert [e.target for e in runtime.messenger.pending] == ["use-region"]
        runtime.dispatch()
        assert use.description == "Not found"

        # Redelivered drain: already drained, no second notification
        assert runtime.project.on_message(drain_body) is False
        assert len(runtime.messenger.pending) == 0

    def test_drain_from_non_owner_is_ignored(self, runtime):
        runtime.project.on_config_change({"region": "eu"}, {})
        consumer(runtime, "use-region", "region")

        accepted = runtime.project.on_message(
            {"action": "drain", "varType": "variable", "name": "region", "owner": "intruder"}
        )

        assert accepted is False
        assert runtime.store.read(StoreKey(PLAIN, "region")) == "eu"
        assert len(runtime.messenger.pending) == 0

    def test_malformed_message_dropped(self, runtime):
        consumer(runtime, "use-region", "region")

        assert runtime.project.on_message({"action": "sync", "varType": "variable", "name": "re gion"}) is False
        assert runtime.project.on_message("not a dict") is False
        assert len(runtime.messenger.pending) == 0


class TestRuntime:

    def test_full_declaring_lifecycle(self, runtime):
        use = consumer(runtime, "use-region", "region")
        define = runtime.create_instance(InstanceKind.DECLARE, "define-1", PLAIN, name="region", value="eu")
        define.sync()
        runtime.dispatch()

        define.reconfigure("us")
        define.sync()
        runtime.dispatch()
        assert use.signal == "us"

        result = runtime.remove_instance("define-1")
        assert result.status is InstanceStatus.DRAINED
        runtime.dispatch()

        assert runtime.registry.get("define-1") is None
        assert runtime.store.read(StoreKey(PLAIN, "region")) is None
        assert use.status is InstanceStatus.FAILED
        assert runtime.events.events_for("use-region") == [
            {"name": "region", "newValue": "eu"},
            {"name": "region", "previousValue": "eu", "newValue": "us"},
        ]

    def test_redelivery_of_everything_is_harmless(self, runtime):
        use = consumer(runtime, "use-region", "region")
        define = runtime.create_instance(InstanceKind.DECLARE, "define-1", PLAIN, name="region", value="eu")
        define.sync()
        runtime.dispatch()

        runtime.messenger.redeliver(list(runtime.messenger.delivered))
        runtime.dispatch()

        assert use.signal == "eu"
        assert len(runtime.events.events_for("use-region")) == 1
        assert len(runtime.events.events_for("define-1")) == 1

    def test_message_for_removed_instance_dropped(self, runtime):
        consumer(runtime, "use-region", "region")
        runtime.project.on_config_change({"region": "eu"}, {})
        runtime.registry.unregister("use-region")

        assert runtime.dispatch() == 1

    def test_duplicate_instance_id_rejected(self, runtime):
        consumer(runtime, "use-1", "a")
        with pytest.raises(ValueError):
            consumer(runtime, "use-1", "b")

    def test_reserved_instance_id_rejected(self, runtime):
        with pytest.raises(ValueError):
            consumer(runtime, "app", "a")

    @pytest.mark.parametrize("instance_id", ["caf\u00e9", "use\u00b2", "use 1", "use.1"])
    def test_instance_id_uses_key_name_rules(self, runtime, instance_id):
        with pytest.raises(ValueError):
            consumer(runtime, instance_id, "a")
        assert runtime.registry.list_instances() == []

    def test_missing_arguments_rejected(self, runtime):
        with pytest.raises(ValueError):
            runtime.create_instance(InstanceKind.DECLARE, "d1", PLAIN, name="a")
        with pytest.raises(ValueError):
            runtime.create_instance(InstanceKind.FLOW, "f1", PLAIN)


class TestPersistence:

    def test_snapshots_survive_restart(self, tmp_path):
        path = str(tmp_path / "varsync.db")
        first = SyncRuntime(backend=SQLiteKVBackend(path), snapshots=SQLiteSnapshotStore(path))
        first.project.on_config_change({"a": "1", "b": "2"}, {"t": "s"})

        second = SyncRuntime(backend=SQLiteKVBackend(path), snapshots=SQLiteSnapshotStore(path))
        outcome = second.project.on_config_change({"a": "1"}, {"t": "s"})

        assert outcome.results[PLAIN].changed_keys == {"b"}
        assert outcome.results[SENSITIVE].changed_keys == set()
        assert second.store.read(StoreKey(PLAIN, "b")) is None

    def test_wrong_master_password_fails_secrets_without_raising(self, tmp_path):
        path = str(tmp_path / "varsync.db")
        right = SecretCipher.from_password("right", b"salt")
        first = SyncRuntime(backend=SQLiteKVBackend(path), snapshots=SQLiteSnapshotStore(path, cipher=right),
                            cipher=right)
        first.project.on_config_change({"a": "1"}, {"t": "s"})

        wrong = SecretCipher.from_password("wrong", b"salt")
        second = SyncRuntime(backend=SQLiteKVBackend(path), snapshots=SQLiteSnapshotStore(path, cipher=wrong),
                             cipher=wrong)
        outcome = second.project.on_config_change({"a": "2"}, {"t": "s"})

        assert outcome.status is InstanceStatus.FAILED
        assert outcome.results[PLAIN].changed_keys == {"a"}
        assert outcome.results[SENSITIVE].changed_keys == set()
