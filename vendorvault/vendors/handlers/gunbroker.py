"""GunBroker — marketplace REST API, authenticated by developer key."""

from __future__ import annotations

import logging

import httpx

from vendorvault.vendors.base import ConnectionResult, VendorHandler

logger = logging.getLogger(__name__)

BASE_URLS = {
    "production": "https://api.gunbroker.com/v1",
    "sandbox": "https://api.sandbox.gunbroker.com/v1",
}
DEFAULT_ENVIRONMENT = "sandbox"


class GunBrokerHandler(VendorHandler):
    vendor_id = "gunbroker"

    async def test_connection(self, credentials: dict[str, str]) -> ConnectionResult:
        if not credentials.get("dev_key"):
            return ConnectionResult(success=False, message="Missing fields: dev_key")

        environment = credentials.get("environment") or DEFAULT_ENVIRONMENT
        base_url = BASE_URLS.get(environment)
        if base_url is None:
            return ConnectionResult(
                success=False, message=f"Unknown GunBroker environment: {environment}"
            )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    f"{base_url}/Categories",
                    headers={"X-DevKey": credentials["dev_key"], "Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning("GunBroker connection check failed: %s", e)
            return ConnectionResult(success=False, message=f"GunBroker API connection error: {e}")

        if resp.is_success:
            try:
                data = resp.json()
            except ValueError:
                data = None
            count = len(data) if isinstance(data, list) else "multiple"
            return ConnectionResult(
                success=True,
                message=(
                    f"Connected to GunBroker {environment} API successfully. "
                    f"Access to {count} categories confirmed."
                ),
            )
        if resp.status_code == 401:
            return ConnectionResult(
                success=False,
                message="GunBroker API authentication failed - check DevKey credentials",
            )
        if resp.status_code == 403:
            return ConnectionResult(
                success=False,
                message=(
                    f"GunBroker {environment} API access forbidden - "
                    "DevKey may need activation by GunBroker"
                ),
            )
        return ConnectionResult(
            success=False,
            message=f"GunBroker API connection failed: HTTP {resp.status_code} - {resp.text[:100]}",
        )
