"""Thin async client for the installation endpoints."""

import logging

import httpx
from pydantic import BaseModel

from provisioner.models.install_step import StepType

logger = logging.getLogger(__name__)

SOFT_CONFLICTS = ("STEP_IN_PROGRESS", "STEP_ALREADY_COMPLETED")


class StartOutcome(BaseModel):
    """Result of asking the server to start a step.

    ``conflict`` is set when the server answered 409; the step is then
    already running or already done, which callers treat as success.
    """
    accepted: bool
    conflict: str | None = None
    step: dict | None = None


class InstallationApiClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_status_all(self, installation_id: int) -> dict:
        resp = await self._client.get(f"/api/installations/{installation_id}/steps/status-all")
        resp.raise_for_status()
        return resp.json()

    async def start_step(self, installation_id: int, step_type: StepType) -> StartOutcome:
        resp = await self._client.post(
            f"/api/installations/{installation_id}/steps/start",
            json={"step_type": StepType(step_type).value},
        )
        if resp.status_code == httpx.codes.CONFLICT:
            error = resp.json().get("error", {})
            code = error.get("code")
            if code in SOFT_CONFLICTS:
                return StartOutcome(
                    accepted=False,
                    conflict=code,
                    step=(error.get("details") or {}).get("step"),
                )
        resp.raise_for_status()
        return StartOutcome(accepted=True, step=resp.json())

    async def complete(self, installation_id: int, credentials: dict) -> dict:
        resp = await self._client.post(
            f"/api/installations/{installation_id}/complete", json=credentials
        )
        resp.raise_for_status()
        return resp.json()

    async def set_site_status(self, site_id: int, status: str) -> dict:
        resp = await self._client.patch(f"/api/sites/{site_id}/status", json={"status": status})
        resp.raise_for_status()
        return resp.json()
