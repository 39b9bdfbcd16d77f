"""Tests for credential store backends."""

import threading
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from vendorvault.errors import ConfigurationError
from vendorvault.vault.models import ConnectionStatus, Scope
from vendorvault.vault.store import (
    MemoryCredentialStore,
    PostgresCredentialStore,
    get_store,
    reset_store,
)

TENANT = Scope.tenant("T")


def _mock_conn(fetchone_side_effect=None, fetchall_return=None, rowcount=1):
    """Create a mock connection with cursor."""
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value = cursor
    if fetchone_side_effect is not None:
        cursor.fetchone.side_effect = fetchone_side_effect
    if fetchall_return is not None:
        cursor.fetchall.return_value = fetchall_return
    cursor.rowcount = rowcount
    return conn, cursor


def _patch_connection(conn):
    cm = MagicMock()
    cm.return_value.__enter__.return_value = conn
    cm.return_value.__exit__.return_value = False
    return patch("vendorvault.vault.store.get_connection", cm)


def _row(fields, scope_kind="tenant", tenant_id="T"):
    now = datetime(2026, 3, 1, 9, 30)
    return {
        "vendor_id": "bill-hicks",
        "scope_kind": scope_kind,
        "tenant_id": tenant_id,
        "fields": fields,
        "connection_status": "pending_test",
        "last_tested_at": None,
        "last_test_message": None,
        "created_at": now,
        "updated_at": now,
    }


class TestMemoryStore:
    def test_update_creates_row(self, store):
        row = store.update("bill-hicks", TENANT, lambda current: {"ftp_server": "h"})
        assert row.fields == {"ftp_server": "h"}
        assert row.connection_status == ConnectionStatus.PENDING_TEST
        assert row.created_at is not None

    def test_update_merges(self, store):
        store.update("bill-hicks", TENANT, lambda c: {"ftp_server": "h", "ftp_username": "u"})
        row = store.update("bill-hicks", TENANT, lambda c: {"ftp_username": "u2"})
        assert row.fields == {"ftp_server": "h", "ftp_username": "u2"}

    def test_patch_builder_sees_current(self, store):
        store.update("bill-hicks", TENANT, lambda c: {"ftp_server": "h"})
        seen = {}

        def build(current):
            seen.update(current)
            return {}

        store.update("bill-hicks", TENANT, build)
        assert seen == {"ftp_server": "h"}

    def test_failed_patch_writes_nothing(self, store):
        def build(current):
            raise RuntimeError("rejected")

        with pytest.raises(RuntimeError):
            store.update("bill-hicks", TENANT, build)
        assert store.get("bill-hicks", TENANT) is None

    def test_update_resets_status(self, store):
        store.update("bill-hicks", TENANT, lambda c: {"ftp_server": "h"})
        store.set_status("bill-hicks", TENANT, ConnectionStatus.ONLINE, "ok")
        row = store.update("bill-hicks", TENANT, lambda c: {"ftp_server": "h2"})
        assert row.connection_status == ConnectionStatus.PENDING_TEST
        assert row.last_test_message == "ok"

    def test_returned_rows_are_copies(self, store):
        row = store.update("bill-hicks", TENANT, lambda c: {"ftp_server": "h"})
        row.fields["ftp_server"] = "mutated"
        assert store.get("bill-hicks", TENANT).fields["ftp_server"] == "h"

    def test_scopes_isolated(self, store):
        store.update("bill-hicks", Scope.tenant("A"), lambda c: {"ftp_server": "a"})
        store.update("bill-hicks", Scope.tenant("B"), lambda c: {"ftp_server": "b"})
        store.update("bill-hicks", Scope.admin(), lambda c: {"ftp_server": "admin"})
        assert store.get("bill-hicks", Scope.tenant("A")).fields == {"ftp_server": "a"}
        assert store.get("bill-hicks", Scope.admin()).fields == {"ftp_server": "admin"}

    def test_delete(self, store):
        store.update("bill-hicks", TENANT, lambda c: {"ftp_server": "h"})
        assert store.delete("bill-hicks", TENANT) is True
        assert store.delete("bill-hicks", TENANT) is False
        assert store.get("bill-hicks", TENANT) is None

    def test_set_status_missing_row(self, store):
        assert store.set_status("bill-hicks", TENANT, ConnectionStatus.ONLINE) is False

    def test_lookups_of_unknown_keys_allocate_no_locks(self, store):
        for n in range(50):
            scope = Scope.tenant(f"unknown-{n}")
            assert store.get("bill-hicks", scope) is None
            assert store.delete("bill-hicks", scope) is False
            assert store.set_status("bill-hicks", scope, ConnectionStatus.ONLINE) is False
        assert store._locks == {}

        store.update("bill-hicks", TENANT, lambda c: {"ftp_server": "h"})
        assert list(store._locks) == [("bill-hicks", "tenant", "T")]

    def test_list_for_tenant(self, store):
        store.update("lipseys", TENANT, lambda c: {"email": "e"})
        store.update("bill-hicks", TENANT, lambda c: {"ftp_server": "h"})
        store.update("bill-hicks", Scope.tenant("other"), lambda c: {"ftp_server": "x"})
        store.update("gunbroker", Scope.admin(), lambda c: {"dev_key": "k"})
        assert [r.vendor_id for r in store.list_for_tenant("T")] == ["bill-hicks", "lipseys"]

    def test_summary(self, store):
        store.update("gunbroker", Scope.admin(), lambda c: {"dev_key": "k"})
        store.set_status("gunbroker", Scope.admin(), ConnectionStatus.ONLINE)
        store.update("lipseys", Scope.tenant("A"), lambda c: {"email": "e"})
        store.update("lipseys", Scope.tenant("B"), lambda c: {"email": "e"})

        summary = {s.vendor_id: s for s in store.summary()}
        assert summary["gunbroker"].has_admin
        assert summary["gunbroker"].admin_status == "online"
        assert summary["lipseys"].tenant_count == 2
        assert not summary["lipseys"].has_admin

    def test_concurrent_disjoint_updates_both_land(self, store):
        barrier = threading.Barrier(2)

        def writer(name, value):
            barrier.wait()
            for _ in range(50):
                store.update("bill-hicks", TENANT, lambda c: {name: value})

        threads = [
            threading.Thread(target=writer, args=("ftp_server", "h")),
            threading.Thread(target=writer, args=("ftp_username", "u")),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get("bill-hicks", TENANT).fields == {"ftp_server": "h", "ftp_username": "u"}


class TestPostgresStore:
    def test_get(self):
        conn, cursor = _mock_conn(fetchone_side_effect=[_row({"ftp_server": "h"})])
        with _patch_connection(conn):
            row = PostgresCredentialStore().get("bill-hicks", TENANT)
        assert row.fields == {"ftp_server": "h"}
        assert row.scope == TENANT
        assert cursor.execute.call_args[0][1] == ("bill-hicks", "tenant", "T")

    def test_get_missing(self):
        conn, _ = _mock_conn(fetchone_side_effect=[None])
        with _patch_connection(conn):
            assert PostgresCredentialStore().get("bill-hicks", TENANT) is None

    def test_update_locks_then_merges(self):
        conn, cursor = _mock_conn(
            fetchone_side_effect=[
                {"fields": {"ftp_server": "h"}},
                _row({"ftp_server": "h", "ftp_password": "enc:v1:x:y:z"}),
            ]
        )
        seen = {}

        def build(current):
            seen.update(current)
            return {"ftp_password": "enc:v1:x:y:z"}

        with _patch_connection(conn):
            row = PostgresCredentialStore().update("bill-hicks", TENANT, build)

        assert seen == {"ftp_server": "h"}
        assert row.fields["ftp_password"] == "enc:v1:x:y:z"
        statements = [c[0][0] for c in cursor.execute.call_args_list]
        assert "ON CONFLICT" in statements[0]
        assert "FOR UPDATE" in statements[1]
        assert "fields || %s::jsonb" in statements[2]
        params = cursor.execute.call_args_list[2][0][1]
        assert params[0].adapted == {"ftp_password": "enc:v1:x:y:z"}
        assert params[1] == "pending_test"

    def test_update_admin_scope_uses_empty_tenant(self):
        conn, cursor = _mock_conn(
            fetchone_side_effect=[{"fields": {}}, _row({"dev_key": "k"}, "admin", "")]
        )
        with _patch_connection(conn):
            row = PostgresCredentialStore().update(
                "gunbroker", Scope.admin(), lambda c: {"dev_key": "k"}
            )
        assert cursor.execute.call_args_list[0][0][1] == ("gunbroker", "admin", "")
        assert row.scope.is_admin

    def test_update_builder_error_stops_write(self):
        conn, cursor = _mock_conn(fetchone_side_effect=[{"fields": {}}])

        def build(current):
            raise ValueError("nope")

        with _patch_connection(conn), pytest.raises(ValueError):
            PostgresCredentialStore().update("bill-hicks", TENANT, build)
        assert cursor.execute.call_count == 2

    def test_delete(self):
        conn, _ = _mock_conn(rowcount=1)
        with _patch_connection(conn):
            assert PostgresCredentialStore().delete("bill-hicks", TENANT) is True

    def test_delete_missing(self):
        conn, _ = _mock_conn(rowcount=0)
        with _patch_connection(conn):
            assert PostgresCredentialStore().delete("bill-hicks", TENANT) is False

    def test_set_status(self):
        conn, cursor = _mock_conn(rowcount=1)
        with _patch_connection(conn):
            assert PostgresCredentialStore().set_status(
                "bill-hicks", TENANT, ConnectionStatus.ERROR, "bad"
            )
        params = cursor.execute.call_args[0][1]
        assert params[:2] == ("error", "bad")

    def test_summary(self):
        conn, _ = _mock_conn(fetchall_return=[("gunbroker", True, "online", 0), ("lipseys", False, None, 3)])
        with _patch_connection(conn):
            summary = PostgresCredentialStore().summary()
        assert summary[0].to_dict() == {
            "vendorId": "gunbroker",
            "hasAdminCredentials": True,
            "adminConnectionStatus": "online",
            "tenantCount": 0,
        }
        assert summary[1].tenant_count == 3


class TestGetStore:
    def test_memory_backend(self, clean_env, monkeypatch):
        monkeypatch.setenv("VENDORVAULT_STORE", "memory")
        assert isinstance(get_store(), MemoryCredentialStore)
        assert get_store() is get_store()

    def test_postgres_default(self, clean_env):
        assert isinstance(get_store(), PostgresCredentialStore)

    def test_unknown_backend(self, clean_env, monkeypatch):
        monkeypatch.setenv("VENDORVAULT_STORE", "redis")
        with pytest.raises(ConfigurationError):
            get_store()

    def test_reset(self, clean_env, monkeypatch):
        monkeypatch.setenv("VENDORVAULT_STORE", "memory")
        first = get_store()
        reset_store()
        assert get_store() is not first
