"""Application installer adapter.

The installer exposes two setup endpoints that take a multipart form and
answer ``{"success": bool, "result": {...}}``:

    POST {endpoint}/office/setup/directory   → result.siteId
    POST {endpoint}/office/setup/database
"""

import logging

from pydantic import BaseModel

from provisioner.config import settings
from provisioner.services.providers.base import ProviderAdapter, ProviderResult

logger = logging.getLogger(__name__)


class InstallerParams(BaseModel):
    """Form fields sent to both setup endpoints."""
    name: str
    client_name: str
    email: str
    password: str


def _remote_message(body: dict) -> str:
    result = body.get("result") or {}
    if isinstance(result, dict):
        return result.get("message") or result.get("name") or "Unknown error"
    if isinstance(result, str):
        return result
    return body.get("message") or "Unknown error"


class InstallerAdapter(ProviderAdapter):
    name = "installer"

    def __init__(
        self,
        endpoint: str,
        token: str,
        *,
        verify: bool | None = None,
        timeout: float | None = None,
    ):
        super().__init__(
            endpoint.rstrip("/"),
            verify=settings.installer_verify_tls if verify is None else verify,
            timeout=settings.installer_timeout_seconds if timeout is None else timeout,
            headers={
                "Authorization": f"Bearer {token}",
                "User-Agent": settings.installer_user_agent,
            },
        )

    async def _setup(self, what: str, params: InstallerParams) -> ProviderResult:
        # files=... with (None, value) tuples forces multipart/form-data
        form = {k: (None, v) for k, v in params.model_dump().items()}
        resp = await self._request("POST", f"/office/setup/{what}", files=form)

        try:
            body = resp.json()
        except ValueError:
            return ProviderResult.failed(
                f"HTTP {resp.status_code}",
                f"Installer returned invalid JSON: {resp.text[:200]}",
            )
        if not isinstance(body, dict):
            return ProviderResult.failed(
                f"HTTP {resp.status_code}",
                f"Installer returned unexpected JSON: {resp.text[:200]}",
            )

        if resp.status_code >= 400 or not body.get("success"):
            error = _remote_message(body)
            return ProviderResult.failed(error, f"Failed to setup {what}: {error}")

        result = body.get("result") or {}
        if not isinstance(result, dict):
            return ProviderResult.ok({}, str(result))
        return ProviderResult.ok(result, result.get("message") or f"{what.capitalize()} set up")

    async def setup_directory(self, params: InstallerParams) -> ProviderResult:
        """Create the site directory; ``data["site_id"]`` is the installer's id."""
        result = await self._setup("directory", params)
        if result.success:
            site_id = (result.data or {}).get("siteId")
            result.data = {"site_id": str(site_id) if site_id is not None else None}
        return result

    async def setup_database(self, params: InstallerParams) -> ProviderResult:
        return await self._setup("database", params)

    async def test_connection(self) -> ProviderResult:
        resp = await self._request(
            "GET", "/test", headers={"Content-Type": "application/json"}
        )
        try:
            body = resp.json()
        except ValueError:
            return ProviderResult.failed(
                "Invalid JSON", "Installer API returned invalid JSON response"
            )

        if body.get("success") is False:
            if body.get("token_error") is True:
                return ProviderResult.failed(
                    "token_error", "Authentication failed: Missing or invalid JWT token"
                )
            msg = body.get("message") or "Installer API returned failure status"
            return ProviderResult.failed(msg, msg)

        if body.get("success") is True:
            result = body.get("result") or {}
            return ProviderResult.ok(
                {"status": resp.status_code},
                (result.get("message") if isinstance(result, dict) else None)
                or "Installer configuration test successful",
            )

        if resp.status_code >= 400:
            return ProviderResult.failed(
                f"HTTP {resp.status_code}",
                f"Installer API test failed: HTTP {resp.status_code}",
            )
        return ProviderResult.failed(
            "Unexpected response", "Installer API returned unexpected response format"
        )

