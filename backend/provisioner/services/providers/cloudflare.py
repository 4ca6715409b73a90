"""Cloudflare v4 DNS adapter (global API key auth)."""

import logging

import httpx

from provisioner.config import settings
from provisioner.services.providers.base import ProviderAdapter, ProviderResult

logger = logging.getLogger(__name__)

CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4/"


def _errors(body: dict) -> str:
    errors = body.get("errors") or []
    parts = []
    for err in errors:
        if isinstance(err, dict):
            parts.append(f"{err.get('code')}: {err.get('message')}")
        else:
            parts.append(str(err))
    return "; ".join(parts) or "Unknown Cloudflare error"


class CloudflareAdapter(ProviderAdapter):
    name = "Cloudflare"

    def __init__(
        self,
        email: str,
        api_key: str,
        *,
        verify: bool | None = None,
        timeout: float | None = None,
    ):
        super().__init__(
            CLOUDFLARE_API_URL,
            verify=settings.cloudflare_verify_tls if verify is None else verify,
            timeout=settings.cloudflare_timeout_seconds if timeout is None else timeout,
            headers={
                "X-Auth-Email": email,
                "X-Auth-Key": api_key,
                "Content-Type": "application/json",
            },
        )

    def _unwrap(self, resp: httpx.Response) -> ProviderResult:
        try:
            body = resp.json()
        except ValueError:
            return ProviderResult.failed(
                f"HTTP {resp.status_code}",
                f"Cloudflare returned invalid JSON: {resp.text[:200]}",
            )
        if resp.status_code >= 400 or not body.get("success", False):
            error = _errors(body)
            return ProviderResult.failed(error, f"Cloudflare API error: {error}")
        return ProviderResult.ok(body.get("result"))

    async def find_dns_records(self, zone_id: str, name: str, record_type: str = "A") -> ProviderResult:
        resp = await self._request(
            "GET",
            f"zones/{zone_id}/dns_records",
            params={"name": name, "type": record_type},
        )
        return self._unwrap(resp)

    async def create_a_record(self, zone_id: str, name: str, ip: str) -> ProviderResult:
        resp = await self._request(
            "POST",
            f"zones/{zone_id}/dns_records",
            json={
                "type": "A",
                "name": name,
                "content": ip,
                "ttl": 1,  # automatic
                "proxied": True,
            },
        )
        result = self._unwrap(resp)
        if result.success:
            result.message = f"DNS record A for {name} created"
        return result

    async def ensure_dns_record(self, zone_id: str, fqdn: str, ip: str) -> ProviderResult:
        """Create a proxied A record for ``fqdn`` unless one already exists."""
        existing = await self.find_dns_records(zone_id, fqdn, "A")
        if not existing.success:
            return existing
        if existing.data:
            logger.info("A record for %s already exists, skipping creation", fqdn)
            return ProviderResult.ok(existing.data, f"DNS record A for {fqdn} already exists")
        return await self.create_a_record(zone_id, fqdn, ip)

    async def test_connection(self, zone_id: str | None = None) -> ProviderResult:
        path = f"zones/{zone_id}" if zone_id else "user"
        result = self._unwrap(await self._request("GET", path))
        if result.success:
            return ProviderResult.ok(message="Successfully connected to Cloudflare")
        return ProviderResult.failed(result.error or "Unknown error", "Failed to connect to Cloudflare")
