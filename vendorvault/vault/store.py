"""
Credential storage backends.

Both backends store values exactly as handed to them (sensitive values
already sealed) and offer one atomic primitive, ``update``: the caller's
``build_patch`` callback sees the current fields while the key is locked and
returns only the fields to set. Keys not in the patch are never touched.

  - PostgresCredentialStore — ``vendor_credentials`` table, row lock via
    ``SELECT ... FOR UPDATE`` and a JSONB ``||`` merge
  - MemoryCredentialStore  — dict plus one ``threading.Lock`` per key
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from psycopg2.extras import Json, RealDictCursor

from vendorvault.db.connection import get_connection
from vendorvault.vault.models import ConnectionStatus, Scope, ScopeKind

logger = logging.getLogger(__name__)

PatchBuilder = Callable[[dict[str, str]], dict[str, str]]


@dataclass
class StoredCredential:
    """A credential row as persisted (sensitive values still sealed)."""

    vendor_id: str
    scope: Scope
    fields: dict[str, str] = field(default_factory=dict)
    connection_status: str = ConnectionStatus.PENDING_TEST
    last_tested_at: datetime | None = None
    last_test_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class VendorSummary:
    """Per-vendor configuration counts for health reporting."""

    vendor_id: str
    has_admin: bool = False
    admin_status: str | None = None
    tenant_count: int = 0

    def to_dict(self) -> dict:
        return {
            "vendorId": self.vendor_id,
            "hasAdminCredentials": self.has_admin,
            "adminConnectionStatus": self.admin_status,
            "tenantCount": self.tenant_count,
        }


def _scope_from_row(scope_kind: str, tenant_id: str) -> Scope:
    if scope_kind == ScopeKind.ADMIN:
        return Scope.admin()
    return Scope.tenant(tenant_id)


class CredentialStore(ABC):
    """Persistence contract for credential records."""

    @abstractmethod
    def get(self, vendor_id: str, scope: Scope) -> StoredCredential | None:
        """Return the row for (vendor, scope), or None."""

    @abstractmethod
    def update(self, vendor_id: str, scope: Scope, build_patch: PatchBuilder) -> StoredCredential:
        """Atomically merge ``build_patch(current_fields)`` into the row.

        Creates the row if absent. Resets the connection status to
        ``pending_test``. If ``build_patch`` raises, nothing is written.
        Returns the row as persisted after the merge.
        """

    @abstractmethod
    def delete(self, vendor_id: str, scope: Scope) -> bool:
        """Remove the row. Returns True if one existed."""

    @abstractmethod
    def set_status(
        self, vendor_id: str, scope: Scope, status: str, message: str | None = None
    ) -> bool:
        """Record a connection test outcome. Returns False if the row is gone."""

    @abstractmethod
    def list_for_tenant(self, tenant_id: str) -> list[StoredCredential]:
        """All rows of one tenant, ordered by vendor id."""

    @abstractmethod
    def summary(self) -> list[VendorSummary]:
        """Per-vendor admin presence, admin status and tenant row count."""


# ─── PostgreSQL ──────────────────────────────────────────────────────


_COLUMNS = (
    "vendor_id, scope_kind, tenant_id, fields, connection_status, "
    "last_tested_at, last_test_message, created_at, updated_at"
)


def _row_to_stored(row: dict) -> StoredCredential:
    return StoredCredential(
        vendor_id=row["vendor_id"],
        scope=_scope_from_row(row["scope_kind"], row["tenant_id"]),
        fields=dict(row["fields"] or {}),
        connection_status=row["connection_status"],
        last_tested_at=row["last_tested_at"],
        last_test_message=row["last_test_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresCredentialStore(CredentialStore):
    """``vendor_credentials`` table via the pooled psycopg2 connection."""

    def get(self, vendor_id: str, scope: Scope) -> StoredCredential | None:
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM vendor_credentials
                WHERE vendor_id = %s AND scope_kind = %s AND tenant_id = %s
                """,
                (vendor_id, scope.kind.value, scope.storage_tenant),
            )
            row = cur.fetchone()
        return _row_to_stored(row) if row else None

    def update(self, vendor_id: str, scope: Scope, build_patch: PatchBuilder) -> StoredCredential:
        key = (vendor_id, scope.kind.value, scope.storage_tenant)
        with get_connection(locking=True) as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            # Seed the row so there is always something to lock
            cur.execute(
                """
                INSERT INTO vendor_credentials (vendor_id, scope_kind, tenant_id)
                VALUES (%s, %s, %s)
                ON CONFLICT (vendor_id, scope_kind, tenant_id) DO NOTHING
                """,
                key,
            )
            cur.execute(
                """
                SELECT fields FROM vendor_credentials
                WHERE vendor_id = %s AND scope_kind = %s AND tenant_id = %s
                FOR UPDATE
                """,
                key,
            )
            current = dict(cur.fetchone()["fields"] or {})
            patch = build_patch(current)
            cur.execute(
                f"""
                UPDATE vendor_credentials
                SET fields = fields || %s::jsonb,
                    connection_status = %s,
                    updated_at = NOW()
                WHERE vendor_id = %s AND scope_kind = %s AND tenant_id = %s
                RETURNING {_COLUMNS}
                """,
                (Json(patch), ConnectionStatus.PENDING_TEST.value, *key),
            )
            row = cur.fetchone()
        logger.debug("Stored %d field(s) for %s/%s", len(patch), vendor_id, scope)
        return _row_to_stored(row)

    def delete(self, vendor_id: str, scope: Scope) -> bool:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                DELETE FROM vendor_credentials
                WHERE vendor_id = %s AND scope_kind = %s AND tenant_id = %s
                """,
                (vendor_id, scope.kind.value, scope.storage_tenant),
            )
            return cur.rowcount > 0

    def set_status(
        self, vendor_id: str, scope: Scope, status: str, message: str | None = None
    ) -> bool:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE vendor_credentials
                SET connection_status = %s, last_tested_at = NOW(), last_test_message = %s
                WHERE vendor_id = %s AND scope_kind = %s AND tenant_id = %s
                """,
                (str(status), message, vendor_id, scope.kind.value, scope.storage_tenant),
            )
            return cur.rowcount > 0

    def list_for_tenant(self, tenant_id: str) -> list[StoredCredential]:
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM vendor_credentials
                WHERE scope_kind = 'tenant' AND tenant_id = %s
                ORDER BY vendor_id
                """,
                (tenant_id,),
            )
            return [_row_to_stored(r) for r in cur.fetchall()]

    def summary(self) -> list[VendorSummary]:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute("""
                SELECT vendor_id,
                       BOOL_OR(scope_kind = 'admin'),
                       MAX(connection_status) FILTER (WHERE scope_kind = 'admin'),
                       COUNT(*) FILTER (WHERE scope_kind = 'tenant')
                FROM vendor_credentials
                GROUP BY vendor_id
                ORDER BY vendor_id
            """)
            rows = cur.fetchall()
        return [
            VendorSummary(vendor_id=r[0], has_admin=bool(r[1]), admin_status=r[2], tenant_count=r[3])
            for r in rows
        ]


# ─── In-memory ───────────────────────────────────────────────────────


class MemoryCredentialStore(CredentialStore):
    """Process-local store with the same per-key atomicity as the SQL backend."""

    def __init__(self):
        self._rows: dict[tuple[str, str, str], StoredCredential] = {}
        self._locks: dict[tuple[str, str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    @staticmethod
    def _key(vendor_id: str, scope: Scope) -> tuple[str, str, str]:
        return (vendor_id, scope.kind.value, scope.storage_tenant)

    def _lock_for(
        self, key: tuple[str, str, str], *, create: bool = False
    ) -> threading.Lock | None:
        # Locks exist only for keys that have been written
        with self._guard:
            lock = self._locks.get(key)
            if lock is None and create:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get(self, vendor_id: str, scope: Scope) -> StoredCredential | None:
        with self._guard:
            row = self._rows.get(self._key(vendor_id, scope))
            return copy.deepcopy(row) if row else None

    def update(self, vendor_id: str, scope: Scope, build_patch: PatchBuilder) -> StoredCredential:
        key = self._key(vendor_id, scope)
        with self._lock_for(key, create=True):
            row = self._rows.get(key)
            patch = build_patch(dict(row.fields) if row else {})
            now = datetime.now(UTC)
            if row is None:
                row = StoredCredential(vendor_id=vendor_id, scope=scope, created_at=now)
            updated = replace(
                row,
                fields={**row.fields, **patch},
                connection_status=ConnectionStatus.PENDING_TEST,
                updated_at=now,
            )
            with self._guard:
                self._rows[key] = updated
            return copy.deepcopy(updated)

    def delete(self, vendor_id: str, scope: Scope) -> bool:
        key = self._key(vendor_id, scope)
        lock = self._lock_for(key)
        if lock is None:
            return False
        with lock, self._guard:
            return self._rows.pop(key, None) is not None

    def set_status(
        self, vendor_id: str, scope: Scope, status: str, message: str | None = None
    ) -> bool:
        key = self._key(vendor_id, scope)
        lock = self._lock_for(key)
        if lock is None:
            return False
        with lock, self._guard:
            row = self._rows.get(key)
            if row is None:
                return False
            self._rows[key] = replace(
                row,
                connection_status=str(status),
                last_tested_at=datetime.now(UTC),
                last_test_message=message,
            )
            return True

    def list_for_tenant(self, tenant_id: str) -> list[StoredCredential]:
        with self._guard:
            rows = [
                copy.deepcopy(r)
                for (_, kind, tenant), r in self._rows.items()
                if kind == ScopeKind.TENANT and tenant == tenant_id
            ]
        return sorted(rows, key=lambda r: r.vendor_id)

    def summary(self) -> list[VendorSummary]:
        by_vendor: dict[str, VendorSummary] = {}
        with self._guard:
            rows = list(self._rows.values())
        for row in rows:
            entry = by_vendor.setdefault(row.vendor_id, VendorSummary(vendor_id=row.vendor_id))
            if row.scope.is_admin:
                entry.has_admin = True
                entry.admin_status = str(row.connection_status)
            else:
                entry.tenant_count += 1
        return [by_vendor[v] for v in sorted(by_vendor)]


# Singleton
_store: CredentialStore | None = None


def get_store() -> CredentialStore:
    """Get the configured store backend (VENDORVAULT_STORE)."""
    global _store
    if _store is not None:
        return _store

    from vendorvault.config import get_config

    backend = get_config().store_backend
    if backend == "memory":
        logger.warning("Using in-memory credential store; records are lost on exit")
        _store = MemoryCredentialStore()
    elif backend == "postgres":
        _store = PostgresCredentialStore()
    else:
        from vendorvault.errors import ConfigurationError

        raise ConfigurationError(f"Unknown VENDORVAULT_STORE backend: {backend!r}")
    return _store


def reset_store() -> None:
    """Drop the cached store (for testing)."""
    global _store
    _store = None
