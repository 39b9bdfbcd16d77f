"""
Credential vault — schema registry, field normalizer, cipher and scoped storage.
"""

from vendorvault.vault.crypto import Cipher, EncryptedEnvelope, get_cipher
from vendorvault.vault.models import (
    MASK_TOKEN,
    Capability,
    ConnectionStatus,
    CredentialFieldSpec,
    CredentialRecord,
    FieldKind,
    Scope,
    ScopeKind,
    VendorDefinition,
)
from vendorvault.vault.schema import SchemaRegistry, get_schema_registry
from vendorvault.vault.service import CredentialVault, SaveResult, get_vault

__all__ = [
    "MASK_TOKEN",
    "Capability",
    "Cipher",
    "ConnectionStatus",
    "CredentialFieldSpec",
    "CredentialRecord",
    "CredentialVault",
    "EncryptedEnvelope",
    "FieldKind",
    "SaveResult",
    "SchemaRegistry",
    "Scope",
    "ScopeKind",
    "VendorDefinition",
    "get_cipher",
    "get_schema_registry",
    "get_vault",
]
