"""
Credential Schema Registry — static per-vendor description of expected fields.

Ships with a built-in catalog of the bundled vendors. Operators add or
override vendors with a YAML manifest (VENDORVAULT_VENDOR_MANIFEST):

    vendors:
      - vendor_id: acme-supply
        display_name: Acme Supply Co.
        capabilities: [connection-test, catalog-fetch]
        fields:
          - {name: api_key, kind: secret, required: true, aliases: [apiKey]}
          - {name: account, required: true}

``vendor_id`` is immutable once registered. Display names and field specs
may be edited later; neither changes where credentials are stored.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError as PydanticValidationError

from vendorvault.errors import UnknownVendorError
from vendorvault.vault.models import (
    Capability,
    CredentialFieldSpec,
    FieldKind,
    ScopeKind,
    VendorDefinition,
)
from vendorvault.vault.normalizer import build_resolution_table

logger = logging.getLogger(__name__)

_ADMIN_ONLY = frozenset({ScopeKind.ADMIN})


# ─── Built-in catalog ────────────────────────────────────────────────


def builtin_definitions() -> list[VendorDefinition]:
    """Definitions for the vendors with bundled handlers."""
    return [
        VendorDefinition(
            vendor_id="bill-hicks",
            display_name="Bill Hicks & Co.",
            api_type="ftp",
            capabilities=frozenset({Capability.CONNECTION_TEST, Capability.CATALOG_FETCH}),
            fields=(
                CredentialFieldSpec(
                    name="ftp_server",
                    label="FTP Server",
                    required=True,
                    aliases=frozenset({"ftpServer", "ftpHost", "ftp_host", "host"}),
                ),
                CredentialFieldSpec(
                    name="ftp_username",
                    label="FTP Username",
                    required=True,
                    aliases=frozenset({"ftpUsername", "ftpUser", "ftp_user"}),
                ),
                CredentialFieldSpec(
                    name="ftp_password",
                    label="FTP Password",
                    kind=FieldKind.SECRET,
                    required=True,
                    aliases=frozenset({"ftpPassword"}),
                ),
                CredentialFieldSpec(
                    name="ftp_port",
                    label="FTP Port",
                    pattern=r"\d{1,5}",
                    aliases=frozenset({"ftpPort", "port"}),
                    description="Defaults to 21",
                ),
                CredentialFieldSpec(
                    name="ftp_base_path",
                    label="FTP Base Path",
                    aliases=frozenset({"ftpBasePath", "ftp_path", "basePath"}),
                    description="Directory holding the catalog files",
                ),
            ),
        ),
        VendorDefinition(
            vendor_id="lipseys",
            display_name="Lipsey's",
            fields=(
                CredentialFieldSpec(
                    name="email",
                    label="Email",
                    required=True,
                    max_length=254,
                    aliases=frozenset({"userName", "user_name", "username"}),
                ),
                CredentialFieldSpec(
                    name="password",
                    label="Password",
                    kind=FieldKind.SECRET,
                    required=True,
                ),
            ),
        ),
        VendorDefinition(
            vendor_id="sports-south",
            display_name="Sports South",
            fields=(
                CredentialFieldSpec(
                    name="user_name",
                    label="User Name",
                    required=True,
                    aliases=frozenset({"username", "user"}),
                ),
                CredentialFieldSpec(
                    name="customer_number",
                    label="Customer Number",
                    required=True,
                    pattern=r"\d+",
                    aliases=frozenset({"customerNo", "customer_no", "customer"}),
                ),
                CredentialFieldSpec(
                    name="password",
                    label="Password",
                    kind=FieldKind.SECRET,
                    required=True,
                ),
                CredentialFieldSpec(
                    name="source",
                    label="Source",
                    required=True,
                    description="Source identifier issued by Sports South",
                ),
            ),
        ),
        VendorDefinition(
            vendor_id="chattanooga",
            display_name="Chattanooga Shooting Supplies",
            fields=(
                CredentialFieldSpec(
                    name="sid",
                    label="API SID",
                    required=True,
                    aliases=frozenset({"apiSid", "api_sid"}),
                ),
                CredentialFieldSpec(
                    name="token",
                    label="API Token",
                    kind=FieldKind.SECRET,
                    required=True,
                    aliases=frozenset({"apiToken", "api_token"}),
                ),
                CredentialFieldSpec(
                    name="account_number",
                    label="Account Number",
                    scopes=_ADMIN_ONLY,
                    aliases=frozenset({"accountNo"}),
                ),
                CredentialFieldSpec(
                    name="username",
                    label="Dealer Portal Username",
                    scopes=_ADMIN_ONLY,
                    aliases=frozenset({"chattanoogaUsername", "chattanooga_username"}),
                ),
                CredentialFieldSpec(
                    name="password",
                    label="Dealer Portal Password",
                    kind=FieldKind.SECRET,
                    scopes=_ADMIN_ONLY,
                    aliases=frozenset({"chattanoogaPassword", "chattanooga_password"}),
                ),
            ),
        ),
        VendorDefinition(
            vendor_id="gunbroker",
            display_name="GunBroker",
            shared=True,
            description="Marketplace vendor; the admin credential serves every tenant",
            fields=(
                CredentialFieldSpec(
                    name="dev_key",
                    label="Developer Key",
                    kind=FieldKind.SECRET,
                    required=True,
                    aliases=frozenset({"devkey", "developerKey", "developer_key"}),
                ),
                CredentialFieldSpec(
                    name="username",
                    label="Username",
                    aliases=frozenset({"userName"}),
                ),
                CredentialFieldSpec(
                    name="password",
                    label="Password",
                    kind=FieldKind.SECRET,
                ),
                CredentialFieldSpec(
                    name="environment",
                    label="Environment",
                    kind=FieldKind.CHOICE,
                    choices=("sandbox", "production"),
                    aliases=frozenset({"env"}),
                ),
            ),
        ),
    ]


# ─── Registry ────────────────────────────────────────────────────────


class SchemaRegistry:
    """Holds one VendorDefinition per canonical vendor id."""

    def __init__(self, definitions: list[VendorDefinition] | None = None):
        self._vendors: dict[str, VendorDefinition] = {}
        self._lock = threading.Lock()
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: VendorDefinition, *, replace: bool = False) -> None:
        """Add a vendor. Raises ValueError on duplicate ids or ambiguous field names."""
        build_resolution_table(definition)
        with self._lock:
            if definition.vendor_id in self._vendors and not replace:
                raise ValueError(f"Vendor {definition.vendor_id} is already registered")
            self._vendors[definition.vendor_id] = definition
        logger.debug("Registered schema for %s (%d fields)", definition.vendor_id, len(definition.fields))

    def get(self, vendor_id: str) -> VendorDefinition | None:
        return self._vendors.get(vendor_id)

    def require(self, vendor_id: str) -> VendorDefinition:
        definition = self._vendors.get(vendor_id)
        if definition is None:
            raise UnknownVendorError(f"Unknown vendor: {vendor_id}")
        return definition

    def __contains__(self, vendor_id: str) -> bool:
        return vendor_id in self._vendors

    def vendor_ids(self) -> list[str]:
        return sorted(self._vendors)

    def all(self) -> list[VendorDefinition]:
        return [self._vendors[v] for v in self.vendor_ids()]

    def update_display_name(self, vendor_id: str, display_name: str) -> VendorDefinition:
        """Rename a vendor for people. The vendor id and stored credentials are untouched."""
        with self._lock:
            current = self.require(vendor_id)
            updated = current.model_copy(update={"display_name": display_name})
            self._vendors[vendor_id] = updated
        logger.info("Vendor %s display name changed to %r", vendor_id, display_name)
        return updated

    def update_fields(
        self, vendor_id: str, fields: list[CredentialFieldSpec]
    ) -> VendorDefinition:
        """Replace a vendor's field specs, re-running all definition checks."""
        current = self.require(vendor_id)
        data = current.model_dump()
        data["fields"] = [f.model_dump() for f in fields]
        updated = VendorDefinition.model_validate(data)
        self.register(updated, replace=True)
        return updated

    def load_manifest(self, path: Path) -> int:
        """Register every valid vendor in a YAML manifest. Returns how many loaded.

        Entries replace built-in definitions with the same vendor id. Invalid
        entries are logged and skipped.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        entries = data.get("vendors", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            logger.error("Vendor manifest %s has no 'vendors' list", path)
            return 0

        loaded = 0
        for entry in entries:
            try:
                definition = VendorDefinition.model_validate(entry)
                self.register(definition, replace=True)
                loaded += 1
            except (PydanticValidationError, ValueError, TypeError) as e:
                vendor = entry.get("vendor_id", "?") if isinstance(entry, dict) else "?"
                logger.error("Skipping vendor %s in manifest %s: %s", vendor, path, e)
        logger.info("Loaded %d vendor definition(s) from %s", loaded, path)
        return loaded


# Singleton
_registry: SchemaRegistry | None = None


def get_schema_registry() -> SchemaRegistry:
    """Get the process-wide schema registry (built-ins plus optional manifest)."""
    global _registry
    if _registry is not None:
        return _registry

    from vendorvault.config import get_config

    registry = SchemaRegistry(builtin_definitions())
    manifest = get_config().vendor_manifest
    if manifest is not None:
        if manifest.exists():
            registry.load_manifest(manifest)
        else:
            logger.warning("Vendor manifest not found: %s", manifest)
    _registry = registry
    return _registry


def reset_schema_registry() -> None:
    """Drop the cached registry (for testing)."""
    global _registry
    _registry = None
