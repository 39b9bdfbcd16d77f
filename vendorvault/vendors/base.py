"""
Vendor handler interface — one implementation per external vendor.

A handler must implement ``test_connection``. Optional operations are
guarded by the ``capabilities`` flags the handler declares; the registry
refuses a handler that declares a capability without overriding its method,
so callers never reach a stub.

Usage:
    class AcmeHandler(VendorHandler):
        vendor_id = "acme-supply"

        async def test_connection(self, credentials):
            ...
            return ConnectionResult(success=True, message="Connected")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

from vendorvault.errors import CapabilityNotSupported, ConnectionTestFailed
from vendorvault.vault.models import Capability

# Method implementing each optional capability
CAPABILITY_METHODS: dict[Capability, str] = {
    Capability.CATALOG_FETCH: "fetch_catalog",
    Capability.PRODUCT_SEARCH: "search_products",
    Capability.INVENTORY_FETCH: "fetch_inventory",
    Capability.ORDER_SUBMIT: "submit_order",
}


@dataclass
class ConnectionResult:
    """Outcome of a vendor connectivity check, returned verbatim to callers."""

    success: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result

    def raise_for_failure(self, vendor_id: str) -> ConnectionResult:
        """Raise ConnectionTestFailed if the check failed; return self otherwise."""
        if not self.success:
            raise ConnectionTestFailed(vendor_id, self.message)
        return self


class VendorHandler(ABC):
    """Base class for vendor handlers."""

    vendor_id: ClassVar[str] = ""
    capabilities: ClassVar[frozenset[Capability]] = frozenset({Capability.CONNECTION_TEST})
    timeout: ClassVar[float] = 30.0

    @abstractmethod
    async def test_connection(self, credentials: dict[str, str]) -> ConnectionResult:
        """Check that the credentials reach the vendor.

        Args:
            credentials: Decrypted fields keyed by canonical field name.

        Returns:
            ConnectionResult. Expected failures (bad credentials, vendor
            outage) are returned with ``success=False``, not raised.
        """

    async def fetch_catalog(self, credentials: dict[str, str]) -> list[dict]:
        raise CapabilityNotSupported(self.vendor_id, Capability.CATALOG_FETCH)

    async def search_products(self, credentials: dict[str, str], query: str) -> list[dict]:
        raise CapabilityNotSupported(self.vendor_id, Capability.PRODUCT_SEARCH)

    async def fetch_inventory(self, credentials: dict[str, str]) -> list[dict]:
        raise CapabilityNotSupported(self.vendor_id, Capability.INVENTORY_FETCH)

    async def submit_order(self, credentials: dict[str, str], order: dict) -> dict:
        raise CapabilityNotSupported(self.vendor_id, Capability.ORDER_SUBMIT)

    @classmethod
    def unimplemented_capabilities(cls) -> list[Capability]:
        """Declared capabilities whose method is still the base stub."""
        missing = []
        for capability in cls.capabilities:
            method = CAPABILITY_METHODS.get(capability)
            if method and getattr(cls, method) is getattr(VendorHandler, method):
                missing.append(capability)
        return missing

    @staticmethod
    def missing_fields(credentials: dict[str, str], *names: str) -> list[str]:
        return [n for n in names if not credentials.get(n)]
