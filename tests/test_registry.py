"""Tests for the vendor handler registry."""

import pytest

from vendorvault.errors import CapabilityNotSupported, VendorNotRegistered
from vendorvault.vault.models import Capability
from vendorvault.vendors.base import ConnectionResult, VendorHandler
from vendorvault.vendors.handlers.bill_hicks import BillHicksHandler
from vendorvault.vendors.handlers.lipseys import LipseysHandler
from vendorvault.vendors.registry import HandlerRegistry, get_registry, reset_registry


class EchoHandler(VendorHandler):
    vendor_id = "echo"
    capabilities = frozenset({Capability.CONNECTION_TEST, Capability.PRODUCT_SEARCH})

    async def test_connection(self, credentials):
        return ConnectionResult(success=True, message=f"hello {credentials.get('user', '')}")

    async def search_products(self, credentials, query):
        return [{"sku": query}]


class OverclaimingHandler(VendorHandler):
    vendor_id = "overclaim"
    capabilities = frozenset({Capability.CONNECTION_TEST, Capability.ORDER_SUBMIT})

    async def test_connection(self, credentials):
        return ConnectionResult(success=True, message="ok")


class NoTestHandler(VendorHandler):
    vendor_id = "no-test"
    capabilities = frozenset({Capability.CATALOG_FETCH})

    async def test_connection(self, credentials):
        return ConnectionResult(success=True, message="ok")

    async def fetch_catalog(self, credentials):
        return []


@pytest.fixture
def registry():
    return HandlerRegistry()


class TestRegister:
    def test_register_and_resolve(self, registry):
        handler = EchoHandler()
        registry.register("echo", handler)
        assert registry.resolve("echo") is handler
        assert registry.require("echo") is handler
        assert "echo" in registry
        assert len(registry) == 1

    def test_non_canonical_id_rejected(self, registry):
        with pytest.raises(ValueError, match="kebab-case"):
            registry.register("Echo Vendor", EchoHandler())

    def test_duplicate_rejected(self, registry):
        registry.register("echo", EchoHandler())
        with pytest.raises(ValueError, match="already registered"):
            registry.register("echo", EchoHandler())

    def test_replace(self, registry):
        registry.register("echo", EchoHandler())
        second = EchoHandler()
        registry.register("echo", second, replace=True)
        assert registry.require("echo") is second

    def test_unimplemented_capability_rejected(self, registry):
        with pytest.raises(ValueError, match="order-submit"):
            registry.register("overclaim", OverclaimingHandler())
        assert "overclaim" not in registry

    def test_connection_test_mandatory(self, registry):
        with pytest.raises(ValueError, match="connection-test"):
            registry.register("no-test", NoTestHandler())

    def test_unregister(self, registry):
        registry.register("echo", EchoHandler())
        assert registry.unregister("echo") is True
        assert registry.unregister("echo") is False
        assert registry.resolve("echo") is None


class TestLookup:
    def test_require_unknown(self, registry):
        with pytest.raises(VendorNotRegistered):
            registry.require("nope")

    def test_display_name_does_not_resolve(self, registry):
        registry.register_class(LipseysHandler)
        assert registry.resolve("Lipsey's") is None
        assert registry.resolve("lipseys") is not None

    def test_capabilities(self, registry):
        registry.register_class(BillHicksHandler)
        assert registry.capabilities("bill-hicks") == frozenset(
            {Capability.CONNECTION_TEST, Capability.CATALOG_FETCH}
        )
        assert registry.supports("bill-hicks", "catalog-fetch")
        assert not registry.supports("bill-hicks", Capability.ORDER_SUBMIT)
        assert not registry.supports("nope", Capability.CONNECTION_TEST)

    def test_list_handlers(self, registry):
        registry.register_class(LipseysHandler)
        registry.register("echo", EchoHandler())
        listed = [h.to_dict() for h in registry.list_handlers()]
        assert [h["vendorId"] for h in listed] == ["echo", "lipseys"]
        assert listed[0]["capabilities"] == ["connection-test", "product-search"]
        assert listed[1]["handler"].endswith("lipseys.LipseysHandler")


class TestInvoke:
    @pytest.mark.asyncio
    async def test_invoke_connection_test(self, registry):
        registry.register("echo", EchoHandler())
        result = await registry.invoke("echo", "connection-test", {"user": "bob"})
        assert result.message == "hello bob"

    @pytest.mark.asyncio
    async def test_invoke_optional(self, registry):
        registry.register("echo", EchoHandler())
        assert await registry.invoke("echo", Capability.PRODUCT_SEARCH, {}, "ABC-1") == [
            {"sku": "ABC-1"}
        ]

    @pytest.mark.asyncio
    async def test_invoke_unsupported_fails_fast(self, registry):
        registry.register("echo", EchoHandler())
        with pytest.raises(CapabilityNotSupported) as exc:
            await registry.invoke("echo", Capability.CATALOG_FETCH, {})
        assert exc.value.capability == Capability.CATALOG_FETCH

    @pytest.mark.asyncio
    async def test_base_stub_raises(self):
        with pytest.raises(CapabilityNotSupported):
            await EchoHandler().submit_order({}, {"lines": []})


class TestDiscovery:
    def test_discover_bundled(self, registry):
        assert registry.discover(["vendorvault.vendors.handlers"]) == 5
        assert sorted(h.vendor_id for h in registry.list_handlers()) == [
            "bill-hicks",
            "chattanooga",
            "gunbroker",
            "lipseys",
            "sports-south",
        ]

    def test_discover_missing_package(self, registry):
        assert registry.discover(["no.such.package"]) == 0

    def test_discover_is_idempotent(self, registry):
        registry.discover(["vendorvault.vendors.handlers"])
        assert registry.discover(["vendorvault.vendors.handlers"]) == 0

    def test_register_path_colon(self, registry):
        handler = registry.register_path("vendorvault.vendors.handlers.lipseys:LipseysHandler")
        assert isinstance(handler, LipseysHandler)

    def test_register_path_dotted(self, registry):
        registry.register_path("vendorvault.vendors.handlers.bill_hicks.BillHicksHandler")
        assert "bill-hicks" in registry

    def test_register_path_not_handler(self, registry):
        with pytest.raises(ValueError, match="not a VendorHandler"):
            registry.register_path("vendorvault.vendors.handlers.lipseys:BASE_URL")

    def test_register_path_malformed(self, registry):
        with pytest.raises(ValueError):
            registry.register_path("LipseysHandler")


class TestGetRegistry:
    def test_singleton_discovers(self, clean_env):
        registry = get_registry()
        assert registry is get_registry()
        assert "gunbroker" in registry

    def test_reset(self, clean_env):
        first = get_registry()
        reset_registry()
        assert get_registry() is not first
