"""Shared plumbing for the external provider adapters.

Each adapter owns its own ``httpx.AsyncClient`` so TLS verification and
timeouts are decided per provider.  Transport problems are raised as
``TransportFailureError`` with a readable message; a provider that
answers but refuses the request comes back as an unsuccessful
``ProviderResult``.
"""

import logging
import ssl
from typing import Any

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ProviderResult(BaseModel):
    """Uniform outcome of a provider call."""
    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None) -> "ProviderResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def failed(cls, error: str, message: str | None = None) -> "ProviderResult":
        return cls(success=False, error=error, message=message or error)

    def raise_for_failure(self) -> "ProviderResult":
        if not self.success:
            raise AdapterRejectedError(self.error or self.message or "Provider rejected the request")
        return self


# ── Failure taxonomy ─────────────────────────────────────────

class ProviderError(Exception):
    """Base class for anything that fails a provisioning step."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationMissingError(ProviderError):
    """Required credentials or wizard data are absent; no call was made."""


class AdapterRejectedError(ProviderError):
    """The provider answered and refused the request."""


class TransportFailureError(ProviderError):
    """Timeout, connection or TLS failure talking to the provider."""


def _is_tls_error(exc: Exception) -> bool:
    cause = exc.__cause__ or exc.__context__
    if isinstance(cause, ssl.SSLError):
        return True
    text = str(exc).lower()
    return "certificate" in text or "ssl" in text


class ProviderAdapter:
    """Base adapter: an httpx client plus error translation.

    Use as an async context manager so the client is always closed:

        async with CpanelAdapter(...) as cpanel:
            result = await cpanel.ensure_subdomain("example.com", "shop")
    """

    name = "provider"

    def __init__(
        self,
        base_url: str,
        *,
        verify: bool = True,
        timeout: float = 30.0,
        headers: dict | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            verify=verify,
            timeout=timeout,
            headers=headers,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def host(self) -> str:
        return httpx.URL(self.base_url).host

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportFailureError(
                f"{self.name} request timed out after {self.timeout:g}s"
            ) from exc
        except httpx.ConnectError as exc:
            if _is_tls_error(exc):
                raise TransportFailureError(
                    f"TLS certificate error connecting to {self.name} at {self.host}: {exc}"
                ) from exc
            raise TransportFailureError(
                f"Unable to connect to {self.name} at {self.host}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportFailureError(f"{self.name} request failed: {exc}") from exc

    async def test_connection(self) -> ProviderResult:
        raise NotImplementedError
