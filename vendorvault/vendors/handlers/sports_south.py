"""Sports South — SOAP-style web service; DailyItemUpdate is the auth check."""

from __future__ import annotations

import logging
from datetime import date

import httpx

from vendorvault.vendors.base import ConnectionResult, VendorHandler

logger = logging.getLogger(__name__)

BASE_URL = "http://webservices.theshootingwarehouse.com/smart"

# LookupItem answers even without valid credentials, so it cannot be the auth check
AUTH_CHECK_PATH = "/inventory.asmx/DailyItemUpdate"

_FAILURE_MARKERS = (
    "invalid",
    "error",
    "failed",
    "unauthorized",
    "not authorized",
    "authentication",
)


class SportsSouthHandler(VendorHandler):
    vendor_id = "sports-south"

    async def test_connection(self, credentials: dict[str, str]) -> ConnectionResult:
        missing = self.missing_fields(
            credentials, "user_name", "customer_number", "password", "source"
        )
        if missing:
            return ConnectionResult(success=False, message=f"Missing fields: {', '.join(missing)}")

        params = {
            "UserName": credentials["user_name"],
            "CustomerNumber": credentials["customer_number"],
            "Password": credentials["password"],
            "Source": credentials["source"],
            "LastUpdate": date.today().strftime("%m/%d/%Y"),
            "LastItem": "0",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{BASE_URL}{AUTH_CHECK_PATH}", params=params)
        except httpx.HTTPError as e:
            logger.warning("Sports South connection check failed: %s", e)
            return ConnectionResult(success=False, message=str(e) or "Connection test failed")

        if resp.status_code >= 400:
            return ConnectionResult(
                success=False, message=f"HTTP {resp.status_code}: {resp.reason_phrase}"
            )

        body = resp.text.lower()
        if any(marker in body for marker in _FAILURE_MARKERS):
            return ConnectionResult(
                success=False, message="Authentication failed - invalid credentials"
            )
        return ConnectionResult(success=True, message="Sports South API connection successful")
