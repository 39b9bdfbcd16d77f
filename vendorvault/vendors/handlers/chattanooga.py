"""Chattanooga Shooting Supplies — REST v5.

Authorization is ``Basic {sid}:{md5(token)}`` with the hex digest as-is
(the API does not want it base64-encoded).
"""

from __future__ import annotations

import hashlib
import logging

import httpx

from vendorvault.vendors.base import ConnectionResult, VendorHandler

logger = logging.getLogger(__name__)

BASE_URL = "https://api.chattanoogashooting.com/rest/v5"

ACTIVATION_REQUIRED = 4001


def auth_header(sid: str, token: str) -> str:
    digest = hashlib.md5(token.encode("utf-8")).hexdigest()
    return f"Basic {sid}:{digest}"


class ChattanoogaHandler(VendorHandler):
    vendor_id = "chattanooga"

    async def test_connection(self, credentials: dict[str, str]) -> ConnectionResult:
        missing = self.missing_fields(credentials, "sid", "token")
        if missing:
            return ConnectionResult(success=False, message=f"Missing fields: {', '.join(missing)}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    f"{BASE_URL}/items",
                    params={"per_page": 1},
                    headers={
                        "Authorization": auth_header(credentials["sid"], credentials["token"]),
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("Chattanooga connection check failed: %s", e)
            return ConnectionResult(success=False, message=f"Connection failed: {e}")

        if resp.status_code == 200:
            return ConnectionResult(
                success=True, message="Connection successful - Chattanooga API is accessible"
            )
        if resp.status_code == 401:
            try:
                error_code = resp.json().get("error_code")
            except (ValueError, AttributeError):
                error_code = None
            if error_code == ACTIVATION_REQUIRED:
                return ConnectionResult(
                    success=False,
                    message=(
                        "Account activation required: the API credentials are valid but "
                        "Chattanooga has not enabled API access yet (error 4001)"
                    ),
                    details={"errorCode": ACTIVATION_REQUIRED},
                )
            return ConnectionResult(
                success=False,
                message="Authentication failed: verify the SID and Token with Chattanooga support",
            )
        return ConnectionResult(
            success=False, message=f"API error: {resp.status_code} {resp.reason_phrase}"
        )
