"""
Connection tester — runs one vendor connectivity check end to end.

    resolve handler → queue admits → vault loads credentials →
    handler.test_connection → status recorded → audit entry

The handler's result is returned exactly as produced. A handler exception
becomes ``success=False``; nothing is ever turned into a success.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from vendorvault.audit.logger import record_event
from vendorvault.errors import UnknownVendorError, VendorNotRegistered
from vendorvault.orchestrator.queue import ConnectionTestQueue, get_test_queue
from vendorvault.vault.models import Scope
from vendorvault.vault.service import SYSTEM_ACTOR, CredentialVault, get_vault
from vendorvault.vendors.base import ConnectionResult
from vendorvault.vendors.registry import HandlerRegistry, get_registry

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "No credentials found"


class ConnectionTester:
    """Wires the vault, handler registry and test queue together."""

    def __init__(
        self,
        vault: CredentialVault | None = None,
        registry: HandlerRegistry | None = None,
        queue: ConnectionTestQueue | None = None,
        audit: Callable[..., dict | None] | None = None,
    ):
        self.vault = vault or get_vault()
        self.registry = registry or get_registry()
        self.queue = queue or get_test_queue()
        self._audit = audit or record_event

    async def test(
        self,
        vendor_id: str,
        scope: Scope,
        actor: str = SYSTEM_ACTOR,
        *,
        timeout: float | None = None,
    ) -> ConnectionResult:
        """Test stored credentials for (vendor, scope).

        Raises UnknownVendorError or VendorNotRegistered for deployment
        problems and QueueClosedError after shutdown. Everything the vendor
        side does wrong comes back as ``success=False``.
        """
        try:
            self.vault.schemas.require(vendor_id)
            handler = self.registry.require(vendor_id)
        except (UnknownVendorError, VendorNotRegistered) as e:
            self._record(vendor_id, scope, actor, "error", {"error": type(e).__name__})
            raise

        async def execute() -> ConnectionResult:
            record = await asyncio.to_thread(self.vault.load, vendor_id, scope, actor=actor)
            if record is None:
                return ConnectionResult(success=False, message=NOT_CONFIGURED_MESSAGE)
            if record.has_placeholders:
                return ConnectionResult(
                    success=False,
                    message=(
                        "Credentials are not configured yet: "
                        f"{', '.join(record.placeholder_fields)} still hold placeholder values"
                    ),
                )
            try:
                result = await handler.test_connection(record.fields)
            except Exception as e:
                logger.warning("Handler for %s raised during connection test: %s", vendor_id, e)
                result = ConnectionResult(success=False, message=f"Connection test failed: {e}")
            if not record.inherited:
                await asyncio.to_thread(
                    self.vault.record_test_result, vendor_id, scope, result.success, result.message
                )
            return result

        try:
            future = self.queue.submit(execute, label=f"{vendor_id}/{scope}")
            if timeout is None:
                result = await future
            else:
                result = await asyncio.wait_for(future, timeout)
        except TimeoutError:
            result = ConnectionResult(
                success=False, message=f"Connection test timed out after {timeout:g}s"
            )
        except Exception as e:
            self._record(vendor_id, scope, actor, "error", {"error": type(e).__name__})
            raise

        self._record(
            vendor_id,
            scope,
            actor,
            "ok" if result.success else "failed",
            {"message": result.message},
        )
        logger.info(
            "Connection test %s/%s: %s", vendor_id, scope, "ok" if result.success else "failed"
        )
        return result

    def _record(self, vendor_id: str, scope: Scope, actor: str, outcome: str, detail: dict) -> None:
        self._audit(
            "test",
            vendor_id,
            scope.kind.value,
            actor=actor,
            outcome=outcome,
            tenant_id=scope.tenant_id,
            detail=detail,
        )


# Singleton
_tester: ConnectionTester | None = None


def get_tester() -> ConnectionTester:
    global _tester
    if _tester is None:
        _tester = ConnectionTester()
    return _tester


def reset_tester() -> None:
    """Drop the cached tester (for testing)."""
    global _tester
    _tester = None
