"""
Schema migrations for the credential tables.

Files in ``migrations/`` are named ``NNN_description.sql`` and applied in
version order, one transaction each. Every applied file is recorded in
``schema_migrations`` with its SHA-256, so a file edited after it was
applied shows up as DRIFT in ``status``.

Usage:
    vendorvault migrate status
    vendorvault migrate apply [VERSION] [--dry-run]
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from psycopg2.extras import RealDictCursor

from vendorvault.db.connection import get_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"

_FILENAME_RE = re.compile(r"^(?P<version>\d{3}[a-z]?)_[\w\-]+\.sql$")

_LEDGER_DDL = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version     TEXT PRIMARY KEY,
        filename    TEXT NOT NULL,
        checksum    TEXT NOT NULL,
        applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()

    @property
    def sql(self) -> str:
        return self.path.read_text()


def discover(migrations_dir: Path | None = None) -> list[Migration]:
    """Migration files in version order. Files not matching NNN_name.sql are ignored."""
    found = []
    for path in (migrations_dir or MIGRATIONS_DIR).glob("*.sql"):
        m = _FILENAME_RE.match(path.name)
        if m:
            found.append(Migration(m.group("version"), path))
    return sorted(found, key=lambda mig: mig.version)


def _ledger(conn) -> dict[str, dict]:
    cur = conn.cursor(cursor_factory=RealDictCursor)
    cur.execute(_LEDGER_DDL)
    cur.execute("SELECT version, filename, checksum, applied_at FROM schema_migrations")
    return {row["version"]: dict(row) for row in cur.fetchall()}


def status(migrations_dir: Path | None = None) -> list[dict]:
    """One row per migration file: version, filename, status, applied_at."""
    with get_connection() as conn:
        ledger = _ledger(conn)

    rows = []
    for mig in discover(migrations_dir):
        entry = ledger.get(mig.version)
        if entry is None:
            state, applied_at = "pending", None
        else:
            applied_at = entry["applied_at"]
            state = "DRIFT" if entry.get("checksum") not in (None, mig.checksum) else "applied"
        rows.append(
            {
                "version": mig.version,
                "filename": mig.filename,
                "status": state,
                "applied_at": applied_at,
            }
        )
    return rows


def apply(
    version: str | None = None,
    dry_run: bool = False,
    migrations_dir: Path | None = None,
) -> list[str]:
    """Apply pending migrations (or only ``version``). Returns the versions applied.

    A failing file is rolled back and re-raised; files before it stay applied.
    """
    with get_connection() as conn:
        ledger = _ledger(conn)
        conn.commit()

        pending = [
            mig
            for mig in discover(migrations_dir)
            if mig.version not in ledger and version in (None, mig.version)
        ]
        if not pending:
            logger.info("Credential schema is up to date")
            return []

        done: list[str] = []
        for mig in pending:
            if dry_run:
                logger.info("[dry-run] would apply %s", mig.filename)
                done.append(mig.version)
                continue

            cur = conn.cursor()
            try:
                cur.execute(mig.sql)
                cur.execute(
                    "INSERT INTO schema_migrations (version, filename, checksum) "
                    "VALUES (%s, %s, %s)",
                    (mig.version, mig.filename, mig.checksum),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                logger.exception("Migration %s failed and was rolled back", mig.filename)
                raise
            logger.info("Applied migration %s", mig.filename)
            done.append(mig.version)
        return done
