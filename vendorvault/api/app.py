"""
vendorvault HTTP service — FastAPI app on port 9300.

Collaborators live on ``app.state`` so tests can hand in their own vault,
registry and queue.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vendorvault import __version__
from vendorvault.api.routes import catalog_router, credentials_router
from vendorvault.db.connection import close_pool
from vendorvault.errors import ValidationError, VendorVaultError
from vendorvault.orchestrator.queue import ConnectionTestQueue, get_test_queue
from vendorvault.orchestrator.tester import ConnectionTester
from vendorvault.vault.service import CredentialVault, get_vault
from vendorvault.vendors.registry import HandlerRegistry, get_registry

logger = logging.getLogger(__name__)


async def vendorvault_error_handler(request: Request, exc: VendorVaultError) -> JSONResponse:
    body: dict = {"error": str(exc), "type": type(exc).__name__}
    if isinstance(exc, ValidationError):
        body["problems"] = exc.problems
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(body, status_code=exc.http_status)


def create_app(
    vault: CredentialVault | None = None,
    registry: HandlerRegistry | None = None,
    queue: ConnectionTestQueue | None = None,
) -> FastAPI:
    """Build the app. Defaults are the process-wide singletons."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Missing master secret is fatal before any request is served
        app.state.vault.check_ready()
        logger.info(
            "vendorvault ready: %d vendor(s), %d handler(s), test concurrency %d",
            len(app.state.vault.schemas.vendor_ids()),
            len(app.state.registry),
            app.state.queue.max_concurrent,
        )
        yield
        await app.state.queue.shutdown()
        close_pool()

    app = FastAPI(title="vendorvault", version=__version__, lifespan=lifespan)
    app.state.vault = vault or get_vault()
    app.state.registry = registry or get_registry()
    app.state.queue = queue or get_test_queue()
    app.state.tester = ConnectionTester(
        vault=app.state.vault, registry=app.state.registry, queue=app.state.queue
    )

    app.add_exception_handler(VendorVaultError, vendorvault_error_handler)
    app.include_router(credentials_router)
    app.include_router(catalog_router)
    return app
