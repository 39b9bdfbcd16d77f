"""vendorvault — vendor credential vault, handler registry, and throttled connection tests."""

__version__ = "0.1.0"
