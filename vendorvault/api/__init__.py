"""HTTP adapter over the vault and connection tester."""

from vendorvault.api.app import create_app

__all__ = ["create_app"]
