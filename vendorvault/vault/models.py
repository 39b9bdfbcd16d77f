"""Vault data models: scopes, vendor credential schemas, and credential records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

MASK_TOKEN = "••••••••"
MASK_GLYPH = "•"

# Values the legacy admin screens wrote into unconfigured slots
PLACEHOLDER_VALUES = frozenset({"PLACEHOLDER", "CONFIGURE_IN_ADMIN"})
PLACEHOLDER_MARKER = "NEEDS_UPDATE"

_VENDOR_ID_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


class ScopeKind(StrEnum):
    ADMIN = "admin"
    TENANT = "tenant"


class FieldKind(StrEnum):
    TEXT = "text"
    SECRET = "secret"
    CHOICE = "choice"


class Capability(StrEnum):
    CONNECTION_TEST = "connection-test"
    CATALOG_FETCH = "catalog-fetch"
    PRODUCT_SEARCH = "product-search"
    INVENTORY_FETCH = "inventory-fetch"
    ORDER_SUBMIT = "order-submit"


class ConnectionStatus(StrEnum):
    PENDING_TEST = "pending_test"
    ONLINE = "online"
    ERROR = "error"


@dataclass(frozen=True)
class Scope:
    """Where a credential lives: the shared admin slot or one tenant's slot."""

    kind: ScopeKind
    tenant_id: str | None = None

    def __post_init__(self) -> None:
        if self.kind == ScopeKind.ADMIN and self.tenant_id:
            raise ValueError("Admin scope does not take a tenant id")
        if self.kind == ScopeKind.TENANT and not self.tenant_id:
            raise ValueError("Tenant scope requires a tenant id")

    @classmethod
    def admin(cls) -> Scope:
        return cls(ScopeKind.ADMIN)

    @classmethod
    def tenant(cls, tenant_id: str) -> Scope:
        return cls(ScopeKind.TENANT, tenant_id)

    @property
    def is_admin(self) -> bool:
        return self.kind == ScopeKind.ADMIN

    @property
    def storage_tenant(self) -> str:
        """Tenant column value; '' for admin."""
        return self.tenant_id or ""

    @property
    def label(self) -> str:
        return "admin" if self.is_admin else f"tenant:{self.tenant_id}"

    def __str__(self) -> str:
        return self.label


_BOTH_SCOPES = frozenset({ScopeKind.ADMIN, ScopeKind.TENANT})


class CredentialFieldSpec(BaseModel):
    """One expected credential field of a vendor."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str = ""
    kind: FieldKind = FieldKind.TEXT
    sensitive: bool = False
    required: bool = False
    # Scopes where ``required`` applies, and scopes where the field is accepted at all
    required_scopes: frozenset[ScopeKind] = _BOTH_SCOPES
    scopes: frozenset[ScopeKind] = _BOTH_SCOPES
    aliases: frozenset[str] = frozenset()
    choices: tuple[str, ...] = ()
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _secret_defaults_sensitive(cls, data):
        if isinstance(data, dict) and "sensitive" not in data:
            data = {**data, "sensitive": data.get("kind") in (FieldKind.SECRET, "secret")}
        return data

    @model_validator(mode="after")
    def _check_consistency(self) -> CredentialFieldSpec:
        if self.kind == FieldKind.CHOICE and not self.choices:
            raise ValueError(f"Field {self.name} is a choice field without choices")
        if self.name in self.aliases:
            raise ValueError(f"Field {self.name} lists itself as an alias")
        if self.pattern:
            re.compile(self.pattern)
        return self

    @property
    def display_label(self) -> str:
        return self.label or self.name.replace("_", " ").title()

    def accepted_in(self, scope_kind: ScopeKind) -> bool:
        return scope_kind in self.scopes

    def is_required(self, scope_kind: ScopeKind) -> bool:
        return self.required and scope_kind in self.required_scopes and scope_kind in self.scopes

    def check_value(self, value: str) -> list[str]:
        """Return the rule violations for a candidate plaintext value."""
        problems: list[str] = []
        label = self.display_label
        if self.min_length is not None and len(value) < self.min_length:
            problems.append(f"{label} must be at least {self.min_length} characters")
        if self.max_length is not None and len(value) > self.max_length:
            problems.append(f"{label} must be no more than {self.max_length} characters")
        if self.pattern and not re.fullmatch(self.pattern, value):
            problems.append(f"{label} format is invalid")
        if self.kind == FieldKind.CHOICE and value not in self.choices:
            problems.append(f"{label} must be one of: {', '.join(self.choices)}")
        return problems


class VendorDefinition(BaseModel):
    """Static credential schema for one vendor.

    ``vendor_id`` is the only routing and storage key. ``display_name`` is for
    people and may change at any time.
    """

    model_config = ConfigDict(frozen=True)

    vendor_id: str
    display_name: str
    fields: tuple[CredentialFieldSpec, ...] = ()
    capabilities: frozenset[Capability] = frozenset({Capability.CONNECTION_TEST})
    shared: bool = False
    api_type: str = "rest_api"
    description: str = ""

    @field_validator("vendor_id")
    @classmethod
    def _canonical_id(cls, v: str) -> str:
        if not _VENDOR_ID_RE.match(v):
            raise ValueError(f"vendor_id must be lowercase kebab-case, got {v!r}")
        return v

    @model_validator(mode="after")
    def _unique_names(self) -> VendorDefinition:
        seen: set[str] = set()
        for spec in self.fields:
            for name in (spec.name, *spec.aliases):
                if name in seen:
                    raise ValueError(f"{self.vendor_id}: field name {name!r} declared twice")
                seen.add(name)
        return self

    def get_field(self, name: str) -> CredentialFieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def fields_for(self, scope_kind: ScopeKind) -> list[CredentialFieldSpec]:
        return [f for f in self.fields if f.accepted_in(scope_kind)]

    @property
    def sensitive_fields(self) -> frozenset[str]:
        return frozenset(f.name for f in self.fields if f.sensitive)

    @property
    def auth_method(self) -> str:
        """Best guess at how the vendor authenticates, from canonical field names."""
        names = {f.name.lower().replace("_", "") for f in self.fields}
        if names & {"apikey", "devkey"}:
            return "api_key"
        if {"clientid", "clientsecret"} <= names:
            return "oauth2"
        if names & {"username", "email"} and names & {"password"}:
            return "basic"
        return "custom"

    def schema_view(self, scope_kind: ScopeKind) -> dict:
        """Public description of the fields a scope accepts."""
        return {
            "vendorId": self.vendor_id,
            "displayName": self.display_name,
            "shared": self.shared,
            "authenticationMethod": self.auth_method,
            "capabilities": sorted(c.value for c in self.capabilities),
            "fields": [
                {
                    "name": f.name,
                    "label": f.display_label,
                    "kind": f.kind.value,
                    "sensitive": f.sensitive,
                    "required": f.is_required(scope_kind),
                    "aliases": sorted(f.aliases),
                    "choices": list(f.choices),
                    "description": f.description,
                }
                for f in self.fields_for(scope_kind)
            ],
        }


@dataclass
class CredentialRecord:
    """A decrypted credential set as returned by ``CredentialVault.load``.

    ``scope`` is the scope the caller asked for; ``source_scope`` is where the
    values actually came from (admin, for shared vendors without a tenant row).
    """

    vendor_id: str
    scope: Scope
    fields: dict[str, str]
    source_scope: Scope | None = None
    connection_status: str = ConnectionStatus.PENDING_TEST
    last_tested_at: datetime | None = None
    last_test_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    placeholder_fields: list[str] = field(default_factory=list)

    @property
    def inherited(self) -> bool:
        return self.source_scope is not None and self.source_scope != self.scope

    @property
    def has_placeholders(self) -> bool:
        return bool(self.placeholder_fields)

    def to_dict(self) -> dict:
        return {
            "vendorId": self.vendor_id,
            "scope": self.scope.label,
            "sourceScope": (self.source_scope or self.scope).label,
            "fields": dict(self.fields),
            "connectionStatus": str(self.connection_status),
            "lastTestedAt": self.last_tested_at.isoformat() if self.last_tested_at else None,
            "lastTestMessage": self.last_test_message,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def is_placeholder(value: str) -> bool:
    return value in PLACEHOLDER_VALUES or PLACEHOLDER_MARKER in value


def is_masked(value: str) -> bool:
    """True for values a redacted form echoed back instead of a real secret."""
    stripped = value.strip()
    return stripped == MASK_TOKEN or stripped.startswith(MASK_GLYPH)
