"""Credential routes — admin scope, tenant scope, and read-only listings.

Routes stay thin: they build a Scope, hand off to the vault or tester, and
let ``VendorVaultError`` subclasses map to their HTTP status in ``app.py``.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Body, Query, Request
from fastapi.responses import JSONResponse

from vendorvault.audit.logger import query_log
from vendorvault.orchestrator.tester import ConnectionTester
from vendorvault.vault.models import Scope, ScopeKind
from vendorvault.vault.service import CredentialVault

DEFAULT_ACTOR = "anonymous"

credentials_router = APIRouter(tags=["credentials"])
catalog_router = APIRouter(tags=["vendors", "health"])


def get_actor(request: Request) -> str:
    return request.headers.get("x-actor") or DEFAULT_ACTOR


def _vault(request: Request) -> CredentialVault:
    return request.app.state.vault


def _tester(request: Request) -> ConnectionTester:
    return request.app.state.tester


def _not_configured(vendor_id: str, scope: Scope) -> JSONResponse:
    return JSONResponse(
        {"error": f"No credentials configured for {vendor_id} ({scope.label})"},
        status_code=404,
    )


# ─── Shared handlers ─────────────────────────────────────────────────


async def _load_redacted(request: Request, vendor_id: str, scope: Scope):
    fields = await asyncio.to_thread(
        _vault(request).load_redacted, vendor_id, scope, actor=get_actor(request)
    )
    if fields is None:
        return _not_configured(vendor_id, scope)
    return fields


async def _status(request: Request, vendor_id: str, scope: Scope):
    record = await asyncio.to_thread(
        _vault(request).load_redacted_record, vendor_id, scope, actor=get_actor(request)
    )
    if record is None:
        return _not_configured(vendor_id, scope)
    return record.to_dict()


async def _save(request: Request, vendor_id: str, scope: Scope, body: dict[str, Any]):
    fields = {k: v if v is None else str(v) for k, v in body.items()}
    result = await asyncio.to_thread(
        _vault(request).save, vendor_id, scope, fields, get_actor(request)
    )
    return result.to_dict()


async def _delete(request: Request, vendor_id: str, scope: Scope):
    deleted = await asyncio.to_thread(
        _vault(request).delete, vendor_id, scope, get_actor(request)
    )
    if not deleted:
        return _not_configured(vendor_id, scope)
    return {"success": True, "vendorId": vendor_id, "scope": scope.label}


async def _test(request: Request, vendor_id: str, scope: Scope):
    result = await _tester(request).test(vendor_id, scope, get_actor(request))
    return {"success": result.success, "message": result.message}


# ─── Admin scope ─────────────────────────────────────────────────────


@credentials_router.get("/credentials/{vendor_id}")
async def api_admin_load(request: Request, vendor_id: str):
    return await _load_redacted(request, vendor_id, Scope.admin())


@credentials_router.get("/credentials/{vendor_id}/status")
async def api_admin_status(request: Request, vendor_id: str):
    return await _status(request, vendor_id, Scope.admin())


@credentials_router.post("/credentials/{vendor_id}")
async def api_admin_save(request: Request, vendor_id: str, body: dict[str, Any] = Body(...)):
    return await _save(request, vendor_id, Scope.admin(), body)


@credentials_router.delete("/credentials/{vendor_id}")
async def api_admin_delete(request: Request, vendor_id: str):
    return await _delete(request, vendor_id, Scope.admin())


@credentials_router.post("/credentials/{vendor_id}/test")
async def api_admin_test(request: Request, vendor_id: str):
    return await _test(request, vendor_id, Scope.admin())


# ─── Tenant scope ────────────────────────────────────────────────────


@credentials_router.get("/tenants/{tenant_id}/credentials")
async def api_tenant_list(request: Request, tenant_id: str):
    vendors = await asyncio.to_thread(_vault(request).list_configured, tenant_id)
    return {"tenantId": tenant_id, "vendors": vendors}


@credentials_router.get("/tenants/{tenant_id}/credentials/{vendor_id}")
async def api_tenant_load(request: Request, tenant_id: str, vendor_id: str):
    return await _load_redacted(request, vendor_id, Scope.tenant(tenant_id))


@credentials_router.get("/tenants/{tenant_id}/credentials/{vendor_id}/status")
async def api_tenant_status(request: Request, tenant_id: str, vendor_id: str):
    return await _status(request, vendor_id, Scope.tenant(tenant_id))


@credentials_router.post("/tenants/{tenant_id}/credentials/{vendor_id}")
async def api_tenant_save(
    request: Request, tenant_id: str, vendor_id: str, body: dict[str, Any] = Body(...)
):
    return await _save(request, vendor_id, Scope.tenant(tenant_id), body)


@credentials_router.delete("/tenants/{tenant_id}/credentials/{vendor_id}")
async def api_tenant_delete(request: Request, tenant_id: str, vendor_id: str):
    return await _delete(request, vendor_id, Scope.tenant(tenant_id))


@credentials_router.post("/tenants/{tenant_id}/credentials/{vendor_id}/test")
async def api_tenant_test(request: Request, tenant_id: str, vendor_id: str):
    return await _test(request, vendor_id, Scope.tenant(tenant_id))


# ─── Listings ────────────────────────────────────────────────────────


@catalog_router.get("/vendors")
async def api_list_vendors(request: Request, scope: ScopeKind = Query(ScopeKind.TENANT)):
    return {"vendors": [d.schema_view(scope) for d in _vault(request).schemas.all()]}


@catalog_router.get("/vendors/{vendor_id}/schema")
async def api_vendor_schema(
    request: Request, vendor_id: str, scope: ScopeKind = Query(ScopeKind.TENANT)
):
    return _vault(request).schemas.require(vendor_id).schema_view(scope)


@catalog_router.get("/handlers")
async def api_list_handlers(request: Request):
    return {"handlers": [h.to_dict() for h in request.app.state.registry.list_handlers()]}


@catalog_router.get("/queue")
async def api_queue_status(request: Request):
    return request.app.state.queue.status()


@catalog_router.post("/queue/clear")
async def api_queue_clear(request: Request):
    cleared = request.app.state.queue.clear()
    return {"success": True, "cleared": cleared}


@catalog_router.get("/health")
async def api_health(request: Request):
    vendors = await asyncio.to_thread(_vault(request).health_summary)
    return {"status": "ok", "vendors": vendors, "queue": request.app.state.queue.status()}


@catalog_router.get("/audit")
async def api_audit(
    limit: int = Query(50, ge=1, le=1000),
    vendorId: str | None = Query(None),
    tenantId: str | None = Query(None),
    action: str | None = Query(None),
    since: str | None = Query(None),
):
    entries = await asyncio.to_thread(
        query_log,
        limit=limit,
        vendor_id=vendorId,
        tenant_id=tenantId,
        action=action,
        since=since,
    )
    return {"entries": [e.to_dict() for e in entries]}
