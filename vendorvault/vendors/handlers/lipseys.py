"""Lipsey's — dealer API; a successful login is the connectivity check."""

from __future__ import annotations

import logging

import httpx

from vendorvault.vendors.base import ConnectionResult, VendorHandler

logger = logging.getLogger(__name__)

BASE_URL = "https://api.lipseys.com"
LOGIN_PATH = "/api/Integration/Authentication/Login"


class LipseysHandler(VendorHandler):
    vendor_id = "lipseys"

    async def test_connection(self, credentials: dict[str, str]) -> ConnectionResult:
        missing = self.missing_fields(credentials, "email", "password")
        if missing:
            return ConnectionResult(success=False, message=f"Missing fields: {', '.join(missing)}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{BASE_URL}{LOGIN_PATH}",
                    json={"Email": credentials["email"], "Password": credentials["password"]},
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning("Lipsey's login request failed: %s", e)
            return ConnectionResult(success=False, message=f"Connection failed: {e}")

        if resp.status_code >= 400:
            return ConnectionResult(
                success=False, message=f"HTTP {resp.status_code}: {resp.reason_phrase}"
            )

        try:
            body = resp.json()
        except ValueError:
            return ConnectionResult(success=False, message="Unexpected response from Lipsey's")

        data = body.get("data") or {}
        if body.get("success") and data.get("token"):
            dealer = (data.get("econtact") or {}).get("name") or "dealer"
            return ConnectionResult(success=True, message=f"Connected successfully as {dealer}")

        errors = body.get("errors") or []
        return ConnectionResult(
            success=False, message=", ".join(str(e) for e in errors) or "Authentication failed"
        )
