"""Tests for the bundled vendor handlers — no network, mocked transports."""

import ftplib
import hashlib
import json
from unittest.mock import patch

import httpx
import pytest

from vendorvault.errors import ConnectionTestFailed
from vendorvault.vendors.base import ConnectionResult
from vendorvault.vendors.handlers.bill_hicks import BillHicksHandler
from vendorvault.vendors.handlers.chattanooga import ChattanoogaHandler, auth_header
from vendorvault.vendors.handlers.gunbroker import GunBrokerHandler
from vendorvault.vendors.handlers.lipseys import LOGIN_PATH, LipseysHandler
from vendorvault.vendors.handlers.sports_south import AUTH_CHECK_PATH, SportsSouthHandler

_RealAsyncClient = httpx.AsyncClient


def _mock_client(responder):
    """Patch httpx.AsyncClient so requests are answered by ``responder``."""
    seen: list[httpx.Request] = []

    def handle(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responder(request)

    def factory(*args, **kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handle), timeout=kwargs.get("timeout"))

    return patch("httpx.AsyncClient", side_effect=factory), seen


def _raising(exc):
    def responder(request):
        raise exc

    return responder


# ─── Bill Hicks (FTP) ────────────────────────────────────────────────

BH_CREDS = {"ftp_server": "ftp.example.com", "ftp_username": "u", "ftp_password": "p"}


class TestBillHicks:
    @pytest.mark.asyncio
    async def test_success(self):
        with patch("vendorvault.vendors.handlers.bill_hicks.ftplib.FTP") as ftp_cls:
            ftp = ftp_cls.return_value
            ftp.pwd.return_value = "/"
            result = await BillHicksHandler().test_connection(BH_CREDS)

        assert result.success
        assert result.message == "FTP connection successful to ftp.example.com"
        ftp.connect.assert_called_once_with("ftp.example.com", 21)
        ftp.login.assert_called_once_with("u", "p")
        ftp.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_custom_port(self):
        with patch("vendorvault.vendors.handlers.bill_hicks.ftplib.FTP") as ftp_cls:
            await BillHicksHandler().test_connection({**BH_CREDS, "ftp_port": "2121"})
        ftp_cls.return_value.connect.assert_called_once_with("ftp.example.com", 2121)

    @pytest.mark.asyncio
    async def test_bad_base_path(self):
        with patch("vendorvault.vendors.handlers.bill_hicks.ftplib.FTP") as ftp_cls:
            ftp_cls.return_value.cwd.side_effect = ftplib.error_perm("550 No such directory")
            result = await BillHicksHandler().test_connection(
                {**BH_CREDS, "ftp_base_path": "/catalog"}
            )
        assert not result.success
        assert result.message == "FTP connection successful but cannot access base path: /catalog"

    @pytest.mark.asyncio
    async def test_login_rejected(self):
        with patch("vendorvault.vendors.handlers.bill_hicks.ftplib.FTP") as ftp_cls:
            ftp_cls.return_value.login.side_effect = ftplib.error_perm("530 Login incorrect.")
            result = await BillHicksHandler().test_connection(BH_CREDS)
        assert not result.success
        assert result.message == "FTP connection failed: 530 Login incorrect."
        ftp_cls.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        with patch("vendorvault.vendors.handlers.bill_hicks.ftplib.FTP") as ftp_cls:
            ftp_cls.return_value.connect.side_effect = ConnectionRefusedError("refused")
            result = await BillHicksHandler().test_connection(BH_CREDS)
        assert not result.success
        assert result.message.startswith("FTP connection failed:")
        ftp_cls.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_fields(self):
        result = await BillHicksHandler().test_connection({"ftp_server": "h"})
        assert result.message == "Missing fields: ftp_username, ftp_password"

    @pytest.mark.asyncio
    async def test_fetch_catalog(self):
        with patch("vendorvault.vendors.handlers.bill_hicks.ftplib.FTP") as ftp_cls:
            ftp_cls.return_value.nlst.return_value = ["catalog.csv", "inventory.csv"]
            files = await BillHicksHandler().fetch_catalog({**BH_CREDS, "ftp_base_path": "/drop/"})
        assert files == [
            {"name": "catalog.csv", "path": "/drop/catalog.csv"},
            {"name": "inventory.csv", "path": "/drop/inventory.csv"},
        ]


# ─── Lipsey's ────────────────────────────────────────────────────────

LIPSEYS_CREDS = {"email": "dealer@example.com", "password": "secret"}


class TestLipseys:
    @pytest.mark.asyncio
    async def test_success(self):
        body = {"success": True, "data": {"token": "t", "econtact": {"name": "Acme Guns"}}}
        client, seen = _mock_client(lambda r: httpx.Response(200, json=body))
        with client:
            result = await LipseysHandler().test_connection(LIPSEYS_CREDS)

        assert result.success
        assert result.message == "Connected successfully as Acme Guns"
        assert seen[0].method == "POST"
        assert seen[0].url.path == LOGIN_PATH
        assert json.loads(seen[0].content) == {"Email": "dealer@example.com", "Password": "secret"}

    @pytest.mark.asyncio
    async def test_vendor_errors_returned_verbatim(self):
        body = {"success": False, "errors": ["Invalid email or password"]}
        client, _ = _mock_client(lambda r: httpx.Response(200, json=body))
        with client:
            result = await LipseysHandler().test_connection(LIPSEYS_CREDS)
        assert not result.success
        assert result.message == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_no_errors_listed(self):
        client, _ = _mock_client(lambda r: httpx.Response(200, json={"success": False}))
        with client:
            result = await LipseysHandler().test_connection(LIPSEYS_CREDS)
        assert result.message == "Authentication failed"

    @pytest.mark.asyncio
    async def test_http_error(self):
        client, _ = _mock_client(lambda r: httpx.Response(503))
        with client:
            result = await LipseysHandler().test_connection(LIPSEYS_CREDS)
        assert result.message == "HTTP 503: Service Unavailable"

    @pytest.mark.asyncio
    async def test_network_error(self):
        client, _ = _mock_client(_raising(httpx.ConnectError("no route")))
        with client:
            result = await LipseysHandler().test_connection(LIPSEYS_CREDS)
        assert not result.success
        assert result.message == "Connection failed: no route"


# ─── Sports South ────────────────────────────────────────────────────

SS_CREDS = {"user_name": "u", "customer_number": "123", "password": "p", "source": "src"}


class TestSportsSouth:
    @pytest.mark.asyncio
    async def test_success(self):
        xml = "<DataSet><Table><ITEMNO>1</ITEMNO></Table></DataSet>"
        client, seen = _mock_client(lambda r: httpx.Response(200, text=xml))
        with client:
            result = await SportsSouthHandler().test_connection(SS_CREDS)
        assert result.success
        assert result.message == "Sports South API connection successful"
        params = seen[0].url.params
        assert seen[0].url.path.endswith(AUTH_CHECK_PATH)
        assert params["CustomerNumber"] == "123"
        assert params["Source"] == "src"

    @pytest.mark.asyncio
    async def test_auth_failure_in_body(self):
        client, _ = _mock_client(lambda r: httpx.Response(200, text="<string>Invalid user</string>"))
        with client:
            result = await SportsSouthHandler().test_connection(SS_CREDS)
        assert not result.success
        assert result.message == "Authentication failed - invalid credentials"

    @pytest.mark.asyncio
    async def test_missing_fields(self):
        result = await SportsSouthHandler().test_connection({"user_name": "u"})
        assert result.message == "Missing fields: customer_number, password, source"


# ─── Chattanooga ─────────────────────────────────────────────────────

CH_CREDS = {"sid": "SID123", "token": "tok"}


class TestChattanooga:
    def test_auth_header(self):
        digest = hashlib.md5(b"tok").hexdigest()
        assert auth_header("SID123", "tok") == f"Basic SID123:{digest}"

    @pytest.mark.asyncio
    async def test_success(self):
        client, seen = _mock_client(lambda r: httpx.Response(200, json={"items": []}))
        with client:
            result = await ChattanoogaHandler().test_connection(CH_CREDS)
        assert result.success
        assert seen[0].headers["Authorization"] == auth_header("SID123", "tok")

    @pytest.mark.asyncio
    async def test_activation_required(self):
        client, _ = _mock_client(lambda r: httpx.Response(401, json={"error_code": 4001}))
        with client:
            result = await ChattanoogaHandler().test_connection(CH_CREDS)
        assert not result.success
        assert "activation required" in result.message.lower()
        assert result.details == {"errorCode": 4001}
        assert result.to_dict()["details"] == {"errorCode": 4001}

    @pytest.mark.asyncio
    async def test_bad_credentials(self):
        client, _ = _mock_client(lambda r: httpx.Response(401, text="Unauthorized"))
        with client:
            result = await ChattanoogaHandler().test_connection(CH_CREDS)
        assert not result.success
        assert result.message.startswith("Authentication failed")
        assert result.details == {}


# ─── GunBroker ───────────────────────────────────────────────────────


class TestGunBroker:
    @pytest.mark.asyncio
    async def test_sandbox_default(self):
        client, seen = _mock_client(lambda r: httpx.Response(200, json=[{"id": 1}, {"id": 2}]))
        with client:
            result = await GunBrokerHandler().test_connection({"dev_key": "k"})
        assert result.success
        assert "sandbox" in result.message
        assert "2 categories" in result.message
        assert seen[0].url.host == "api.sandbox.gunbroker.com"
        assert seen[0].headers["X-DevKey"] == "k"

    @pytest.mark.asyncio
    async def test_production(self):
        client, seen = _mock_client(lambda r: httpx.Response(200, json={"results": []}))
        with client:
            result = await GunBrokerHandler().test_connection(
                {"dev_key": "k", "environment": "production"}
            )
        assert "multiple categories" in result.message
        assert seen[0].url.host == "api.gunbroker.com"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, fragment", [(401, "authentication failed"), (403, "forbidden")])
    async def test_rejections(self, status, fragment):
        client, _ = _mock_client(lambda r: httpx.Response(status))
        with client:
            result = await GunBrokerHandler().test_connection({"dev_key": "k"})
        assert not result.success
        assert fragment in result.message

    @pytest.mark.asyncio
    async def test_unknown_environment(self):
        result = await GunBrokerHandler().test_connection({"dev_key": "k", "environment": "qa"})
        assert result.message == "Unknown GunBroker environment: qa"


class TestConnectionResult:
    def test_raise_for_failure(self):
        ok = ConnectionResult(success=True, message="ok")
        assert ok.raise_for_failure("lipseys") is ok
        with pytest.raises(ConnectionTestFailed, match="bad creds"):
            ConnectionResult(success=False, message="bad creds").raise_for_failure("lipseys")

