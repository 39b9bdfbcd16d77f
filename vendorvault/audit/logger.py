"""
Credential Audit Log — append-only record of credential access and mutation.

Actions:
  - read    — credential loaded (plain or redacted)
  - write   — credential saved (partial upsert)
  - delete  — credential removed (tenant/vendor disconnection)
  - test    — connection test executed against the vendor

Entries record who, which vendor, which scope, and the outcome. They never
carry credential values; ``detail`` holds field names and messages only.

Usage:
    from vendorvault.audit.logger import record_event, query_log
    record_event("write", "bill-hicks", "tenant", tenant_id="store-7",
                 actor="user:42", outcome="ok", detail={"fields": ["ftp_password"]})
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from psycopg2.extras import Json

logger = logging.getLogger(__name__)

ACTIONS = ("read", "write", "delete", "test")

# Resolved lazily; set_connection_factory swaps it
_conn_factory = None

_ENTRY_COLUMNS = (
    "id",
    "timestamp",
    "actor",
    "vendor_id",
    "scope_kind",
    "tenant_id",
    "action",
    "outcome",
    "detail",
)


@dataclass(frozen=True)
class AuditLogEntry:
    """One row of the credential audit log."""

    timestamp: datetime
    actor: str
    vendor_id: str
    scope_kind: str
    action: str
    outcome: str
    tenant_id: str = ""
    detail: dict = field(default_factory=dict)
    id: int | None = None

    @classmethod
    def from_row(cls, row) -> AuditLogEntry:
        values = dict(zip(_ENTRY_COLUMNS, row))
        values["tenant_id"] = values["tenant_id"] or ""
        values["detail"] = values["detail"] or {}
        return cls(**values)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
            "vendorId": self.vendor_id,
            "scope": self.scope_kind,
            "tenantId": self.tenant_id or None,
            "action": self.action,
            "outcome": self.outcome,
            "detail": self.detail,
        }


@contextmanager
def _audit_connection() -> Iterator:
    """Borrow a connection from the injected factory, else the shared pool."""
    if _conn_factory is not None:
        yield _conn_factory()
        return

    from vendorvault.db.connection import get_pool

    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        pool.putconn(conn)


def set_connection_factory(factory) -> None:
    """Route audit reads and writes through ``factory()`` instead of the pool."""
    global _conn_factory
    _conn_factory = factory


def reset_connection_factory() -> None:
    global _conn_factory
    _conn_factory = None


def record_event(
    action: str,
    vendor_id: str,
    scope_kind: str,
    *,
    actor: str,
    outcome: str = "ok",
    tenant_id: str | None = None,
    detail: dict | None = None,
) -> dict | None:
    """Append an audit entry and return its id and timestamp.

    Storage faults are logged at WARNING and give None. A credential
    operation never fails because its audit row could not be written.
    """
    if action not in ACTIONS:
        logger.warning("Audit: unknown action %r for vendor %s", action, vendor_id)
    params = (
        actor,
        vendor_id,
        scope_kind,
        tenant_id or "",
        action,
        outcome,
        Json(detail) if detail else None,
    )
    try:
        with _audit_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO credential_audit_log
                    (actor, vendor_id, scope_kind, tenant_id, action, outcome, detail)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING id, timestamp
                """,
                params,
            )
            entry_id, logged_at = cur.fetchone()
            conn.commit()
    except Exception as e:
        logger.warning("Audit write for %s/%s failed: %s", vendor_id, action, e)
        return None
    return {"id": entry_id, "timestamp": logged_at.isoformat()}


def query_log(
    limit: int = 50,
    vendor_id: str | None = None,
    tenant_id: str | None = None,
    actor: str | None = None,
    action: str | None = None,
    outcome: str | None = None,
    since: str | None = None,
) -> list[AuditLogEntry]:
    """Entries matching every given filter, newest first. [] if the log is unreadable."""
    conditions = [
        ("vendor_id = %s", vendor_id),
        ("tenant_id = %s", tenant_id),
        ("actor = %s", actor),
        ("action = %s", action),
        ("outcome = %s", outcome),
        ("timestamp >= %s", since),
    ]
    active = [(clause, value) for clause, value in conditions if value]
    where = " AND ".join(clause for clause, _ in active) or "TRUE"
    params: list = [value for _, value in active]
    params.append(limit)

    sql = (
        f"SELECT {', '.join(_ENTRY_COLUMNS)} FROM credential_audit_log "
        f"WHERE {where} ORDER BY timestamp DESC LIMIT %s"
    )
    try:
        with _audit_connection() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            rows = cur.fetchall()
    except Exception as e:
        logger.warning("Audit query failed: %s", e)
        return []
    return [AuditLogEntry.from_row(row) for row in rows]


def stats() -> dict:
    """Totals, time span and a count per ``action:outcome`` pair."""
    try:
        with _audit_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT COUNT(*), MIN(timestamp), MAX(timestamp) FROM credential_audit_log"
            )
            total, earliest, latest = cur.fetchone()
            cur.execute(
                "SELECT action, outcome, COUNT(*) FROM credential_audit_log "
                "GROUP BY action, outcome ORDER BY COUNT(*) DESC"
            )
            grouped = cur.fetchall()
    except Exception as e:
        logger.warning("Audit stats failed: %s", e)
        return {"total_events": 0, "error": str(e)}
    return {
        "total_events": total,
        "earliest": earliest.isoformat() if earliest else None,
        "latest": latest.isoformat() if latest else None,
        "by_action": {f"{act}:{result}": count for act, result, count in grouped},
    }
