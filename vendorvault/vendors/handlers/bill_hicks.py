"""Bill Hicks & Co. — FTP catalog drop.

The connectivity check logs in, reads the working directory and, when a
base path is configured, changes into it. ``ftplib`` is blocking, so every
session runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import ftplib
import logging

from vendorvault.vault.models import Capability
from vendorvault.vendors.base import ConnectionResult, VendorHandler

logger = logging.getLogger(__name__)

DEFAULT_FTP_PORT = 21


class BillHicksHandler(VendorHandler):
    vendor_id = "bill-hicks"
    capabilities = frozenset({Capability.CONNECTION_TEST, Capability.CATALOG_FETCH})
    timeout = 10.0

    def _connect(self, credentials: dict[str, str]) -> ftplib.FTP:
        port = int(credentials.get("ftp_port") or DEFAULT_FTP_PORT)
        ftp = ftplib.FTP(timeout=self.timeout)
        try:
            ftp.connect(credentials["ftp_server"], port)
            ftp.login(credentials["ftp_username"], credentials["ftp_password"])
        except Exception:
            ftp.close()
            raise
        return ftp

    def _check_session(self, credentials: dict[str, str]) -> ConnectionResult:
        host = credentials["ftp_server"]
        base_path = credentials.get("ftp_base_path") or ""
        ftp = self._connect(credentials)
        try:
            cwd = ftp.pwd()
            logger.debug("Bill Hicks FTP login ok, working directory %s", cwd)
            if base_path and base_path != "/":
                try:
                    ftp.cwd(base_path)
                except ftplib.error_perm:
                    return ConnectionResult(
                        success=False,
                        message=f"FTP connection successful but cannot access base path: {base_path}",
                    )
            return ConnectionResult(success=True, message=f"FTP connection successful to {host}")
        finally:
            ftp.close()

    async def test_connection(self, credentials: dict[str, str]) -> ConnectionResult:
        missing = self.missing_fields(credentials, "ftp_server", "ftp_username", "ftp_password")
        if missing:
            return ConnectionResult(success=False, message=f"Missing fields: {', '.join(missing)}")
        try:
            return await asyncio.to_thread(self._check_session, credentials)
        except (ftplib.Error, OSError, ValueError) as e:
            logger.warning("Bill Hicks FTP connection failed: %s", e)
            return ConnectionResult(success=False, message=f"FTP connection failed: {e}")

    def _list_files(self, credentials: dict[str, str]) -> list[dict]:
        ftp = self._connect(credentials)
        try:
            base_path = credentials.get("ftp_base_path") or ""
            if base_path:
                ftp.cwd(base_path)
            return [{"name": name, "path": f"{base_path.rstrip('/')}/{name}"} for name in ftp.nlst()]
        finally:
            ftp.close()

    async def fetch_catalog(self, credentials: dict[str, str]) -> list[dict]:
        """List the catalog files available in the configured base path."""
        return await asyncio.to_thread(self._list_files, credentials)
