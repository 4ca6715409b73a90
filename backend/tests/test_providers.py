"""Provider adapters against mocked HTTP (respx)."""

import json

import httpx
import pytest
import respx

from provisioner.services.providers.base import AdapterRejectedError, TransportFailureError
from provisioner.services.providers.cloudflare import CloudflareAdapter
from provisioner.services.providers.cpanel import CpanelAdapter
from provisioner.services.providers.installer import InstallerAdapter, InstallerParams

CPANEL = "https://cpanel.example.net:2083/execute"
CLOUDFLARE = "https://api.cloudflare.com/client/v4"
INSTALLER = "https://installer.example.net/api"

PARAMS = InstallerParams(
    name="test", client_name="Acme Ltd", email="admin@example.com", password="s3cret"
)


@pytest.mark.unit
@pytest.mark.asyncio
class TestCpanelAdapter:
    """cPanel UAPI adapter."""

    async def test_existing_subdomain_is_a_noop(self):
        """An existing subdomain is not created again."""
        async with respx.mock(assert_all_called=False) as mock:
            listing = mock.get(f"{CPANEL}/SubDomain/list_subdomains").mock(
                return_value=httpx.Response(
                    200, json={"status": 1, "data": [{"domain": "test.example.com"}], "errors": None}
                )
            )
            add = mock.get(f"{CPANEL}/SubDomain/addsubdomain")

            async with CpanelAdapter("cpanel.example.net", "hostuser", "CPTOKEN") as cpanel:
                result = await cpanel.ensure_subdomain("example.com", "test")

        assert result.success
        assert "already exists" in result.message
        assert listing.called
        assert not add.called
        assert listing.calls.last.request.headers["Authorization"] == "cpanel hostuser:CPTOKEN"

    async def test_missing_subdomain_is_created_with_dir(self):
        """A new subdomain is created with its document root."""
        async with respx.mock as mock:
            mock.get(f"{CPANEL}/SubDomain/list_subdomains").mock(
                return_value=httpx.Response(200, json={"status": 1, "data": []})
            )
            add = mock.get(f"{CPANEL}/SubDomain/addsubdomain").mock(
                return_value=httpx.Response(200, json={"status": 1, "data": None, "messages": None})
            )

            async with CpanelAdapter(
                "cpanel.example.net", "hostuser", "CPTOKEN", "/home/hostuser/sites/"
            ) as cpanel:
                result = await cpanel.ensure_subdomain("example.com", "test")

        assert result.success
        params = add.calls.last.request.url.params
        assert params["domain"] == "test"
        assert params["rootdomain"] == "example.com"
        assert params["canoff"] == "0"
        assert params["disallowdot"] == "0"
        assert params["dir"] == "/home/hostuser/sites/test"

    async def test_status_zero_is_a_failure(self):
        """UAPI status 0 is a failure."""
        async with respx.mock as mock:
            mock.get(f"{CPANEL}/SubDomain/list_subdomains").mock(
                return_value=httpx.Response(200, json={"status": 1, "data": []})
            )
            mock.get(f"{CPANEL}/SubDomain/addsubdomain").mock(
                return_value=httpx.Response(
                    200, json={"status": 0, "messages": ["Subdomain already taken"]}
                )
            )
            async with CpanelAdapter("cpanel.example.net", "u", "t") as cpanel:
                result = await cpanel.ensure_subdomain("example.com", "test")

        assert not result.success
        assert result.error == "Subdomain already taken"
        with pytest.raises(AdapterRejectedError, match="already taken"):
            result.raise_for_failure()

    async def test_errors_field_is_a_failure(self):
        """A non-empty errors list is a failure."""
        async with respx.mock as mock:
            mock.get(f"{CPANEL}/Mysql/list_databases").mock(
                return_value=httpx.Response(200, json={"status": 1, "errors": ["Access denied"]})
            )
            async with CpanelAdapter("cpanel.example.net", "u", "t") as cpanel:
                result = await cpanel.test_connection()

        assert not result.success
        assert result.message == "Failed to connect to cPanel"
        assert result.error == "Access denied"

    async def test_connect_error_becomes_transport_failure(self):
        """Connection errors name the host."""
        async with respx.mock as mock:
            mock.get(f"{CPANEL}/SubDomain/list_subdomains").mock(
                side_effect=httpx.ConnectError("Connection refused")
            )
            async with CpanelAdapter("cpanel.example.net", "u", "t") as cpanel:
                with pytest.raises(TransportFailureError, match="Unable to connect to cPanel at cpanel.example.net"):
                    await cpanel.list_subdomains()

    async def test_tls_error_is_reported_as_certificate_problem(self):
        """TLS failures are reported as certificate problems."""
        async with respx.mock as mock:
            mock.get(f"{CPANEL}/SubDomain/list_subdomains").mock(
                side_effect=httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] self-signed certificate")
            )
            async with CpanelAdapter("cpanel.example.net", "u", "t", verify=True) as cpanel:
                with pytest.raises(TransportFailureError, match="TLS certificate error"):
                    await cpanel.list_subdomains()


@pytest.mark.unit
@pytest.mark.asyncio
class TestCloudflareAdapter:
    """Cloudflare DNS adapter."""

    async def test_existing_record_is_a_noop(self):
        """An existing A record is left alone."""
        async with respx.mock(assert_all_called=False) as mock:
            lookup = mock.get(f"{CLOUDFLARE}/zones/zone123/dns_records").mock(
                return_value=httpx.Response(
                    200, json={"success": True, "result": [{"id": "rec1", "name": "test.example.com"}]}
                )
            )
            create = mock.post(f"{CLOUDFLARE}/zones/zone123/dns_records")

            async with CloudflareAdapter("ops@example.net", "CFKEY") as cloudflare:
                result = await cloudflare.ensure_dns_record("zone123", "test.example.com", "203.0.113.10")

        assert result.success
        assert not create.called
        request = lookup.calls.last.request
        assert request.url.params["name"] == "test.example.com"
        assert request.url.params["type"] == "A"
        assert request.headers["X-Auth-Email"] == "ops@example.net"
        assert request.headers["X-Auth-Key"] == "CFKEY"

    async def test_missing_record_is_created_proxied(self):
        """New A records are created proxied."""
        async with respx.mock as mock:
            mock.get(f"{CLOUDFLARE}/zones/zone123/dns_records").mock(
                return_value=httpx.Response(200, json={"success": True, "result": []})
            )
            create = mock.post(f"{CLOUDFLARE}/zones/zone123/dns_records").mock(
                return_value=httpx.Response(200, json={"success": True, "result": {"id": "rec2"}})
            )

            async with CloudflareAdapter("ops@example.net", "CFKEY") as cloudflare:
                result = await cloudflare.ensure_dns_record("zone123", "test.example.com", "203.0.113.10")

        assert result.success
        body = json.loads(create.calls.last.request.content)
        assert body == {
            "type": "A",
            "name": "test.example.com",
            "content": "203.0.113.10",
            "ttl": 1,
            "proxied": True,
        }

    async def test_api_error_is_a_failure(self):
        """Cloudflare errors surface their message."""
        async with respx.mock as mock:
            mock.get(f"{CLOUDFLARE}/zones/zone123/dns_records").mock(
                return_value=httpx.Response(
                    403,
                    json={"success": False, "errors": [{"code": 10000, "message": "Authentication error"}]},
                )
            )
            async with CloudflareAdapter("ops@example.net", "bad") as cloudflare:
                result = await cloudflare.ensure_dns_record("zone123", "test.example.com", "203.0.113.10")

        assert not result.success
        assert "Authentication error" in result.error

    async def test_timeout_becomes_transport_failure(self):
        """Timeouts report the configured limit."""
        async with respx.mock as mock:
            mock.get(f"{CLOUDFLARE}/zones/zone123/dns_records").mock(
                side_effect=httpx.ReadTimeout("timed out")
            )
            async with CloudflareAdapter("ops@example.net", "CFKEY", timeout=30.0) as cloudflare:
                with pytest.raises(TransportFailureError, match="timed out after 30s"):
                    await cloudflare.find_dns_records("zone123", "test.example.com")


@pytest.mark.unit
@pytest.mark.asyncio
class TestInstallerAdapter:
    """Installer setup adapter."""

    async def test_setup_directory_returns_site_id(self):
        """Directory setup returns the installer site id."""
        async with respx.mock as mock:
            route = mock.post(f"{INSTALLER}/office/setup/directory").mock(
                return_value=httpx.Response(
                    200, json={"success": True, "result": {"siteId": 42, "message": "ok"}}
                )
            )
            async with InstallerAdapter(f"{INSTALLER}/", "INSTTOKEN") as installer:
                result = await installer.setup_directory(PARAMS)

        assert result.success
        assert result.data == {"site_id": "42"}
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer INSTTOKEN"
        assert request.headers["Content-Type"].startswith("multipart/form-data")

    async def test_setup_database_failure_uses_result_name(self):
        """A failure without message falls back to the result name."""
        async with respx.mock as mock:
            mock.post(f"{INSTALLER}/office/setup/database").mock(
                return_value=httpx.Response(
                    200, json={"success": False, "result": {"name": "DatabaseExists"}}
                )
            )
            async with InstallerAdapter(INSTALLER, "INSTTOKEN") as installer:
                result = await installer.setup_database(PARAMS)

        assert not result.success
        assert result.error == "DatabaseExists"

    async def test_string_result_is_used_as_message(self):
        """A bare string result is reported as-is on success and failure."""
        async with respx.mock as mock:
            mock.post(f"{INSTALLER}/office/setup/database").mock(
                side_effect=[
                    httpx.Response(200, json={"success": True, "result": "Database ready"}),
                    httpx.Response(200, json={"success": False, "result": "Quota exceeded"}),
                ]
            )
            async with InstallerAdapter(INSTALLER, "INSTTOKEN") as installer:
                ok = await installer.setup_database(PARAMS)
                failed = await installer.setup_database(PARAMS)

        assert ok.success
        assert ok.message == "Database ready"
        assert not failed.success
        assert failed.error == "Quota exceeded"

    async def test_non_object_body_is_a_failure(self):
        """A JSON list instead of an object fails readably."""
        async with respx.mock as mock:
            mock.post(f"{INSTALLER}/office/setup/directory").mock(
                return_value=httpx.Response(200, json=["unexpected"])
            )
            async with InstallerAdapter(INSTALLER, "INSTTOKEN") as installer:
                result = await installer.setup_directory(PARAMS)

        assert not result.success
        assert result.message.startswith("Installer returned unexpected JSON")

    async def test_connection_token_error(self):
        """A token error is an authentication failure."""
        async with respx.mock as mock:
            mock.get(f"{INSTALLER}/test").mock(
                return_value=httpx.Response(401, json={"success": False, "token_error": True})
            )
            async with InstallerAdapter(INSTALLER, "bad") as installer:
                result = await installer.test_connection()

        assert not result.success
        assert result.message == "Authentication failed: Missing or invalid JWT token"

    async def test_connection_success(self):
        async with respx.mock as mock:
            mock.get(f"{INSTALLER}/test").mock(
                return_value=httpx.Response(200, json={"success": True, "result": {"message": "pong"}})
            )
            async with InstallerAdapter(INSTALLER, "INSTTOKEN") as installer:
                result = await installer.test_connection()

        assert result.success
        assert result.message == "pong"
