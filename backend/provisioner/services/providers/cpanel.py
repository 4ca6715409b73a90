"""cPanel UAPI adapter.

Calls ``https://{host}:2083/execute/{Module}/{function}`` with token auth.
UAPI answers 200 for most failures and reports them in the body, so the
body is always inspected:

    {"status": 1, "data": ..., "messages": [...], "errors": null}
"""

import logging

from provisioner.config import settings
from provisioner.services.providers.base import ProviderAdapter, ProviderResult

logger = logging.getLogger(__name__)


def _join(value) -> str:
    if isinstance(value, list):
        return "; ".join(str(v) for v in value)
    return str(value)


class CpanelAdapter(ProviderAdapter):
    name = "cPanel"

    def __init__(
        self,
        domain: str,
        username: str,
        api_token: str,
        subdomain_dir_path: str | None = None,
        *,
        verify: bool | None = None,
        timeout: float | None = None,
    ):
        super().__init__(
            f"https://{domain}:2083/execute",
            verify=settings.cpanel_verify_tls if verify is None else verify,
            timeout=settings.cpanel_timeout_seconds if timeout is None else timeout,
            headers={
                "Authorization": f"cpanel {username}:{api_token}",
                "Cache-Control": "no-cache",
            },
        )
        self.subdomain_dir_path = subdomain_dir_path

    async def execute(self, module: str, function: str, params: dict | None = None) -> ProviderResult:
        resp = await self._request("GET", f"/{module}/{function}", params=params or None)

        if resp.status_code >= 400:
            return ProviderResult.failed(
                f"HTTP {resp.status_code}",
                f"cPanel API returned HTTP {resp.status_code}: {resp.text[:200]}",
            )

        try:
            body = resp.json()
        except ValueError:
            return ProviderResult.failed(
                "Invalid JSON response",
                f"cPanel API returned invalid JSON: {resp.text[:200]}",
            )

        if body.get("errors"):
            error = _join(body["errors"])
            return ProviderResult.failed(error, f"cPanel API error: {error}")

        status = body.get("status")
        if status == 1:
            messages = body.get("messages")
            return ProviderResult.ok(
                body.get("data"),
                _join(messages) if messages else "Operation completed successfully",
            )
        if status == 0:
            error = _join(body.get("messages") or "Operation failed")
            return ProviderResult.failed(error, f"Operation failed: {error}")

        return ProviderResult.failed(
            "Invalid response format",
            f"Invalid response from cPanel API: {str(body)[:200]}",
        )

    async def list_subdomains(self) -> ProviderResult:
        return await self.execute("SubDomain", "list_subdomains")

    async def add_subdomain(self, root: str, sub: str, base_dir: str | None = None) -> ProviderResult:
        params = {
            "domain": sub,
            "rootdomain": root,
            "canoff": 0,
            "disallowdot": 0,
        }
        base_dir = base_dir if base_dir is not None else self.subdomain_dir_path
        if base_dir:
            params["dir"] = f"{base_dir}{sub}"
        return await self.execute("SubDomain", "addsubdomain", params)

    async def ensure_subdomain(self, root: str, sub: str, base_dir: str | None = None) -> ProviderResult:
        """Create ``sub.root`` unless cPanel already lists it."""
        listing = await self.list_subdomains()
        if not listing.success:
            return listing

        fqdn = f"{sub}.{root}"
        for entry in listing.data or []:
            if isinstance(entry, dict) and entry.get("domain") == fqdn:
                logger.info("Subdomain %s already exists, skipping creation", fqdn)
                return ProviderResult.ok(entry, f"Subdomain {fqdn} already exists")

        result = await self.add_subdomain(root, sub, base_dir)
        if result.success:
            result.message = f"Subdomain {fqdn} created"
        return result

    async def test_connection(self) -> ProviderResult:
        result = await self.execute("Mysql", "list_databases")
        if result.success:
            return ProviderResult.ok(message="Successfully connected to cPanel")
        return ProviderResult.failed(result.error or "Unknown error", "Failed to connect to cPanel")
