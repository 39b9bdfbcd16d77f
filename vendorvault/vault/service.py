"""
Credential Vault — save, load, redact and delete vendor credentials per scope.

Save pipeline:
  normalize names → drop unsupplied (empty/masked) values → value rules →
  seal sensitive fields → locked partial merge with required-field check →
  read-back verification → audit

Every public operation appends an audit entry (success or failure) with the
actor, vendor and scope. Values never reach the audit log or the logger.

Usage:
    from vendorvault.vault import get_vault, Scope
    vault = get_vault()
    vault.save("bill-hicks", Scope.tenant("store-7"), {"ftpHost": "ftp.example.com"},
               actor="user:42")
    record = vault.load("bill-hicks", Scope.tenant("store-7"))
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from vendorvault.audit.logger import record_event
from vendorvault.errors import (
    DecryptError,
    MissingRequiredFieldError,
    PersistenceVerificationFailed,
    ValidationError,
)
from vendorvault.vault.crypto import Cipher, get_cipher, is_envelope
from vendorvault.vault.models import (
    MASK_TOKEN,
    ConnectionStatus,
    CredentialRecord,
    Scope,
    VendorDefinition,
    is_masked,
    is_placeholder,
)
from vendorvault.vault.normalizer import FieldNormalizer
from vendorvault.vault.schema import SchemaRegistry, get_schema_registry
from vendorvault.vault.store import CredentialStore, StoredCredential, get_store

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class SaveResult:
    """Outcome of a successful save. Lists field names only."""

    vendor_id: str
    scope: Scope
    saved_fields: list[str] = field(default_factory=list)
    preserved_fields: list[str] = field(default_factory=list)
    connection_status: str = ConnectionStatus.PENDING_TEST

    def to_dict(self) -> dict:
        return {
            "success": True,
            "vendorId": self.vendor_id,
            "scope": self.scope.label,
            "savedFields": self.saved_fields,
            "preservedFields": self.preserved_fields,
            "connectionStatus": str(self.connection_status),
        }


def _unsupplied(value) -> bool:
    return value is None or not str(value).strip() or is_masked(str(value))


class CredentialVault:
    """CRUD over admin and tenant credential scopes."""

    def __init__(
        self,
        schemas: SchemaRegistry | None = None,
        store: CredentialStore | None = None,
        cipher: Cipher | None = None,
        audit: Callable[..., dict | None] | None = None,
    ):
        self.schemas = schemas or get_schema_registry()
        self.store = store or get_store()
        self.normalizer = FieldNormalizer(self.schemas)
        self._cipher = cipher
        self._audit = audit or record_event

    @property
    def cipher(self) -> Cipher:
        # Key derivation is slow and needs the master secret; defer until a
        # sensitive value is actually touched.
        if self._cipher is None:
            self._cipher = get_cipher()
        return self._cipher

    def check_ready(self) -> None:
        """Fail fast if any vendor has sensitive fields but no key is available.

        Raises ConfigurationError when the master secret is missing.
        """
        if any(d.sensitive_fields for d in self.schemas.all()):
            _ = self.cipher

    # ─── Audit plumbing ──────────────────────────────────────────────

    @contextmanager
    def _audited(
        self, action: str, vendor_id: str, scope: Scope, actor: str
    ) -> Iterator[dict]:
        detail: dict = {}
        try:
            yield detail
        except ValidationError as e:
            detail.update(error=type(e).__name__, problems=e.problems)
            self._record(action, vendor_id, scope, actor, "rejected", detail)
            raise
        except Exception as e:
            detail["error"] = type(e).__name__
            self._record(action, vendor_id, scope, actor, "error", detail)
            raise
        else:
            outcome = detail.pop("outcome", "ok")
            self._record(action, vendor_id, scope, actor, outcome, detail)

    def _record(
        self, action: str, vendor_id: str, scope: Scope, actor: str, outcome: str, detail: dict
    ) -> None:
        self._audit(
            action,
            vendor_id,
            scope.kind.value,
            actor=actor,
            outcome=outcome,
            tenant_id=scope.tenant_id,
            detail=detail or None,
        )

    # ─── Save ────────────────────────────────────────────────────────

    def save(
        self, vendor_id: str, scope: Scope, fields: dict[str, str], actor: str
    ) -> SaveResult:
        """Partially upsert credential fields for one (vendor, scope).

        Fields absent from ``fields``, empty, or still showing the mask are left
        as stored. Raises ValidationError (unknown field, bad value, missing
        required field) or PersistenceVerificationFailed.
        """
        with self._audited("write", vendor_id, scope, actor) as detail:
            definition = self.schemas.require(vendor_id)
            normalized = self.normalizer.normalize(definition, fields, scope.kind)

            supplied: dict[str, str] = {}
            preserved: list[str] = []
            for name, value in normalized.items():
                if _unsupplied(value):
                    preserved.append(name)
                else:
                    supplied[name] = str(value)

            problems: list[str] = []
            for name, value in supplied.items():
                problems.extend(definition.get_field(name).check_value(value))
            if problems:
                raise ValidationError(f"Invalid credential values for {vendor_id}", problems)

            patch = {
                name: self._seal_if_sensitive(definition, name, value)
                for name, value in supplied.items()
            }
            detail["fields"] = sorted(supplied)

            def build_patch(current: dict[str, str]) -> dict[str, str]:
                full = dict(patch)
                full.update(self._reseal_legacy(definition, current, skip=patch))
                merged = {**self.normalizer.canonicalize_stored(definition, current), **full}
                missing = [
                    spec.name
                    for spec in definition.fields
                    if spec.is_required(scope.kind) and not merged.get(spec.name)
                ]
                if missing:
                    raise MissingRequiredFieldError(
                        f"Missing required field(s) for {vendor_id}: {', '.join(missing)}",
                        problems=[f"{name} is required" for name in missing],
                    )
                return full

            persisted = self.store.update(vendor_id, scope, build_patch)
            self._verify(definition, persisted, supplied)

            logger.info(
                "Saved %d field(s) for %s/%s (preserved %d)",
                len(supplied),
                vendor_id,
                scope,
                len(preserved),
            )
            return SaveResult(
                vendor_id=vendor_id,
                scope=scope,
                saved_fields=sorted(supplied),
                preserved_fields=sorted(preserved),
                connection_status=persisted.connection_status,
            )

    def _seal_if_sensitive(self, definition: VendorDefinition, name: str, value: str) -> str:
        spec = definition.get_field(name)
        if spec is not None and spec.sensitive:
            return self.cipher.seal(value)
        return value

    def _reseal_legacy(
        self, definition: VendorDefinition, current: dict[str, str], skip: dict[str, str]
    ) -> dict[str, str]:
        """Sealed copies of sensitive values still stored as legacy plaintext."""
        resealed: dict[str, str] = {}
        for name in definition.sensitive_fields:
            value = current.get(name)
            if name in skip or not value or is_envelope(value):
                continue
            resealed[name] = self.cipher.seal(value)
        if resealed:
            logger.info(
                "Re-encrypting %d legacy plaintext field(s) for %s",
                len(resealed),
                definition.vendor_id,
            )
        return resealed

    def _verify(
        self, definition: VendorDefinition, persisted: StoredCredential, supplied: dict[str, str]
    ) -> None:
        failed: list[str] = []
        for name, expected in supplied.items():
            stored = persisted.fields.get(name)
            try:
                actual = self._reveal(definition, name, stored) if stored else None
            except DecryptError:
                actual = None
            if not actual or actual != expected:
                failed.append(name)
        if failed:
            logger.error(
                "Post-write verification failed for %s/%s: %s",
                definition.vendor_id,
                persisted.scope,
                ", ".join(sorted(failed)),
            )
            raise PersistenceVerificationFailed(
                f"Credential fields did not persist for {definition.vendor_id}: "
                f"{', '.join(sorted(failed))}"
            )

    # ─── Load ────────────────────────────────────────────────────────

    def _resolve(
        self, definition: VendorDefinition, scope: Scope
    ) -> StoredCredential | None:
        stored = self.store.get(definition.vendor_id, scope)
        if stored is None and definition.shared and not scope.is_admin:
            stored = self.store.get(definition.vendor_id, Scope.admin())
        return stored

    def _reveal(self, definition: VendorDefinition, name: str, value: str) -> str:
        spec = definition.get_field(name)
        if spec is not None and spec.sensitive:
            return self.cipher.unseal(value)
        return value

    def _to_record(
        self, definition: VendorDefinition, scope: Scope, stored: StoredCredential, fields: dict
    ) -> CredentialRecord:
        return CredentialRecord(
            vendor_id=definition.vendor_id,
            scope=scope,
            fields=fields,
            source_scope=stored.scope,
            connection_status=stored.connection_status,
            last_tested_at=stored.last_tested_at,
            last_test_message=stored.last_test_message,
            created_at=stored.created_at,
            updated_at=stored.updated_at,
            placeholder_fields=sorted(n for n, v in fields.items() if is_placeholder(v)),
        )

    def load(
        self, vendor_id: str, scope: Scope, *, actor: str = SYSTEM_ACTOR
    ) -> CredentialRecord | None:
        """Decrypted credentials for (vendor, scope), or None if not configured.

        Tenant lookups fall back to the admin record only for shared vendors.
        Raises DecryptError when a record exists but cannot be read.
        """
        with self._audited("read", vendor_id, scope, actor) as detail:
            definition = self.schemas.require(vendor_id)
            stored = self._resolve(definition, scope)
            if stored is None:
                detail["outcome"] = "not_found"
                return None
            if stored.scope != scope:
                detail["source"] = stored.scope.label

            canonical = self.normalizer.canonicalize_stored(definition, stored.fields)
            fields = {name: self._reveal(definition, name, v) for name, v in canonical.items()}
            record = self._to_record(definition, scope, stored, fields)
            if record.has_placeholders:
                detail["placeholders"] = record.placeholder_fields
            return record

    def load_redacted_record(
        self, vendor_id: str, scope: Scope, *, actor: str = SYSTEM_ACTOR
    ) -> CredentialRecord | None:
        """Like ``load`` but sensitive values are replaced by the mask. No decryption."""
        with self._audited("read", vendor_id, scope, actor) as detail:
            detail["redacted"] = True
            definition = self.schemas.require(vendor_id)
            stored = self._resolve(definition, scope)
            if stored is None:
                detail["outcome"] = "not_found"
                return None
            if stored.scope != scope:
                detail["source"] = stored.scope.label

            sensitive = definition.sensitive_fields
            fields = {
                name: MASK_TOKEN if name in sensitive else value
                for name, value in self.normalizer.canonicalize_stored(
                    definition, stored.fields
                ).items()
            }
            return self._to_record(definition, scope, stored, fields)

    def load_redacted(
        self, vendor_id: str, scope: Scope, *, actor: str = SYSTEM_ACTOR
    ) -> dict[str, str] | None:
        """Display-only field map with sensitive values masked, or None."""
        record = self.load_redacted_record(vendor_id, scope, actor=actor)
        return record.fields if record else None

    # ─── Delete / status ─────────────────────────────────────────────

    def delete(self, vendor_id: str, scope: Scope, actor: str) -> bool:
        """Remove the credential for exactly this scope. Returns False if none existed."""
        with self._audited("delete", vendor_id, scope, actor) as detail:
            deleted = self.store.delete(vendor_id, scope)
            if not deleted:
                detail["outcome"] = "not_found"
            else:
                logger.info("Deleted credentials for %s/%s", vendor_id, scope)
            return deleted

    def record_test_result(
        self, vendor_id: str, scope: Scope, success: bool, message: str
    ) -> bool:
        """Persist a connection test outcome on the scope's own record."""
        status = ConnectionStatus.ONLINE if success else ConnectionStatus.ERROR
        return self.store.set_status(vendor_id, scope, status, message)

    # ─── Listings ────────────────────────────────────────────────────

    def list_configured(self, tenant_id: str) -> list[dict]:
        """Vendors usable by a tenant: its own records plus shared admin records."""
        own = {r.vendor_id: r for r in self.store.list_for_tenant(tenant_id)}
        result = []
        for definition in self.schemas.all():
            stored = own.get(definition.vendor_id)
            if stored is None and definition.shared:
                stored = self.store.get(definition.vendor_id, Scope.admin())
            if stored is None:
                continue
            result.append(
                {
                    "vendorId": definition.vendor_id,
                    "displayName": definition.display_name,
                    "sourceScope": stored.scope.label,
                    "connectionStatus": str(stored.connection_status),
                    "lastTestedAt": stored.last_tested_at.isoformat()
                    if stored.last_tested_at
                    else None,
                }
            )
        return result

    def health_summary(self) -> list[dict]:
        """Per registered vendor: admin presence and status, tenant record count."""
        counts = {s.vendor_id: s for s in self.store.summary()}
        summary = []
        for definition in self.schemas.all():
            entry = counts.get(definition.vendor_id)
            summary.append(
                {
                    "vendorId": definition.vendor_id,
                    "displayName": definition.display_name,
                    "shared": definition.shared,
                    "hasAdminCredentials": entry.has_admin if entry else False,
                    "adminConnectionStatus": entry.admin_status if entry else None,
                    "tenantCount": entry.tenant_count if entry else 0,
                }
            )
        return summary


# Singleton
_vault: CredentialVault | None = None


def get_vault() -> CredentialVault:
    """Get the process-wide vault wired to the configured store and cipher."""
    global _vault
    if _vault is None:
        _vault = CredentialVault()
    return _vault


def reset_vault() -> None:
    """Drop the cached vault (for testing)."""
    global _vault
    _vault = None
