"""Vendor handlers and the registry that resolves them by canonical vendor id."""

from vendorvault.vendors.base import ConnectionResult, VendorHandler
from vendorvault.vendors.registry import HandlerRegistry, get_registry

__all__ = ["ConnectionResult", "HandlerRegistry", "VendorHandler", "get_registry"]
