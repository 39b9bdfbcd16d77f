"""
Vendor Handler Registry — canonical vendor id → handler instance.

Populated at startup by scanning handler packages for ``VendorHandler``
subclasses. Lookups are by canonical vendor id only; display names and
tenant-local aliases never resolve.

Usage:
    from vendorvault.vendors.registry import get_registry
    registry = get_registry()
    handler = registry.require("lipseys")
    result = await handler.test_connection(credentials)
"""

from __future__ import annotations

import importlib
import inspect
import logging
import pkgutil
import re
import threading
from dataclasses import dataclass

from vendorvault.errors import CapabilityNotSupported, VendorNotRegistered
from vendorvault.vault.models import Capability
from vendorvault.vendors.base import CAPABILITY_METHODS, VendorHandler

logger = logging.getLogger(__name__)

_VENDOR_ID_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


@dataclass(frozen=True)
class HandlerInfo:
    """Listing entry for one registered handler."""

    vendor_id: str
    handler_class: str
    capabilities: frozenset[Capability]

    def to_dict(self) -> dict:
        return {
            "vendorId": self.vendor_id,
            "handler": self.handler_class,
            "capabilities": sorted(c.value for c in self.capabilities),
        }


class HandlerRegistry:
    """In-memory map of vendor handlers with their implemented capabilities."""

    def __init__(self):
        self._handlers: dict[str, VendorHandler] = {}
        self._lock = threading.Lock()

    def register(
        self, vendor_id: str, handler: VendorHandler, *, replace: bool = False
    ) -> None:
        """Bind a handler to a canonical vendor id.

        Raises ValueError for a non-canonical id, a duplicate registration,
        or a handler that declares a capability it does not implement.
        """
        if not _VENDOR_ID_RE.match(vendor_id):
            raise ValueError(f"Handler vendor id must be canonical kebab-case, got {vendor_id!r}")
        if Capability.CONNECTION_TEST not in handler.capabilities:
            raise ValueError(f"Handler for {vendor_id} must support connection-test")
        missing = type(handler).unimplemented_capabilities()
        if missing:
            raise ValueError(
                f"Handler for {vendor_id} declares unimplemented capabilities: "
                f"{', '.join(sorted(missing))}"
            )
        with self._lock:
            if vendor_id in self._handlers and not replace:
                raise ValueError(f"Handler for {vendor_id} is already registered")
            self._handlers[vendor_id] = handler
        logger.info(
            "Registered handler %s for %s (%s)",
            type(handler).__name__,
            vendor_id,
            ", ".join(sorted(handler.capabilities)),
        )

    def unregister(self, vendor_id: str) -> bool:
        with self._lock:
            return self._handlers.pop(vendor_id, None) is not None

    def resolve(self, vendor_id: str) -> VendorHandler | None:
        return self._handlers.get(vendor_id)

    def require(self, vendor_id: str) -> VendorHandler:
        handler = self._handlers.get(vendor_id)
        if handler is None:
            raise VendorNotRegistered(f"No handler registered for vendor: {vendor_id}")
        return handler

    def __contains__(self, vendor_id: str) -> bool:
        return vendor_id in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def capabilities(self, vendor_id: str) -> frozenset[Capability]:
        return self.require(vendor_id).capabilities

    def supports(self, vendor_id: str, capability: Capability | str) -> bool:
        handler = self._handlers.get(vendor_id)
        return handler is not None and Capability(capability) in handler.capabilities

    async def invoke(self, vendor_id: str, capability: Capability | str, credentials: dict, *args):
        """Call an optional capability, failing fast if the handler lacks it."""
        capability = Capability(capability)
        handler = self.require(vendor_id)
        if capability not in handler.capabilities:
            raise CapabilityNotSupported(vendor_id, capability)
        if capability == Capability.CONNECTION_TEST:
            return await handler.test_connection(credentials)
        method = getattr(handler, CAPABILITY_METHODS[capability])
        return await method(credentials, *args)

    def list_handlers(self) -> list[HandlerInfo]:
        return [
            HandlerInfo(
                vendor_id=vendor_id,
                handler_class=f"{type(h).__module__}.{type(h).__qualname__}",
                capabilities=h.capabilities,
            )
            for vendor_id, h in sorted(self._handlers.items())
        ]

    # ─── Discovery ───────────────────────────────────────────────────

    def register_class(self, cls: type[VendorHandler], *, replace: bool = False) -> VendorHandler:
        if not cls.vendor_id:
            raise ValueError(f"{cls.__name__} has no vendor_id")
        handler = cls()
        self.register(cls.vendor_id, handler, replace=replace)
        return handler

    def register_path(self, dotted_path: str, *, replace: bool = True) -> VendorHandler:
        """Import and register a handler class by ``package.module:Class`` or
        ``package.module.Class``."""
        if ":" in dotted_path:
            module_name, _, class_name = dotted_path.partition(":")
        else:
            module_name, _, class_name = dotted_path.rpartition(".")
        if not module_name or not class_name:
            raise ValueError(f"Not a handler class path: {dotted_path!r}")
        module = importlib.import_module(module_name)
        cls = getattr(module, class_name, None)
        if not (inspect.isclass(cls) and issubclass(cls, VendorHandler)):
            raise ValueError(f"{dotted_path} is not a VendorHandler subclass")
        return self.register_class(cls, replace=replace)

    def discover(self, packages: tuple[str, ...] | list[str]) -> int:
        """Register every concrete handler class found in the given packages.

        A module that fails to import is logged and skipped. Returns the
        number of handlers registered.
        """
        count = 0
        for package_name in packages:
            try:
                package = importlib.import_module(package_name)
            except ImportError as e:
                logger.error("Handler package %s not importable: %s", package_name, e)
                continue

            module_names = [package_name]
            if hasattr(package, "__path__"):
                module_names += [
                    f"{package_name}.{m.name}"
                    for m in pkgutil.iter_modules(package.__path__)
                    if not m.name.startswith("_")
                ]

            for module_name in module_names:
                try:
                    module = importlib.import_module(module_name)
                except Exception as e:
                    logger.error("Failed to import handler module %s: %s", module_name, e)
                    continue
                for _, cls in inspect.getmembers(module, inspect.isclass):
                    if (
                        issubclass(cls, VendorHandler)
                        and cls.__module__ == module.__name__
                        and not inspect.isabstract(cls)
                        and cls.vendor_id
                        and cls.vendor_id not in self
                    ):
                        try:
                            self.register_class(cls)
                            count += 1
                        except ValueError as e:
                            logger.error("Skipping handler %s: %s", cls.__name__, e)
        logger.info("Discovered %d vendor handler(s)", count)
        return count


# Singleton
_registry: HandlerRegistry | None = None


def get_registry() -> HandlerRegistry:
    """Get the process-wide handler registry, discovering handlers on first use."""
    global _registry
    if _registry is not None:
        return _registry

    from vendorvault.config import get_config

    registry = HandlerRegistry()
    registry.discover(get_config().handler_packages)
    _registry = registry
    return _registry


def reset_registry() -> None:
    """Drop the cached registry (for testing)."""
    global _registry
    _registry = None
