"""Progress poller for a running installation.

Polls ``status-all`` every few seconds until every provisioning step is
terminal, then either finalizes the installation (all SUCCESS, exactly
once) or marks it FAILED and exposes the first failed step.  Retry helpers
re-start FAILED steps and resume polling.

Usage:
    async with InstallationApiClient("http://intranet:8000") as api:
        poller = ProgressPoller(api, site_id, credentials)
        for step_type in PROVISIONING_STEPS:
            await api.start_step(site_id, step_type)
        summary = await poller.run_until_terminal()
"""

import asyncio
import contextlib
import logging
import time
from typing import Callable

import httpx

from provisioner.client.api import InstallationApiClient, StartOutcome
from provisioner.config import settings
from provisioner.models.install_step import StepStatus, StepType
from provisioner.services.progress import ProgressSummary, summarize

logger = logging.getLogger("provisioner.poller")


class ProgressPoller:
    def __init__(
        self,
        api: InstallationApiClient,
        installation_id: int,
        credentials: dict | None = None,
        *,
        interval: float | None = None,
        min_gap: float | None = None,
        retry_guard: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.installation_id = installation_id
        self.credentials = credentials or {}
        self.interval = settings.poll_interval_seconds if interval is None else interval
        self.min_gap = settings.poll_min_gap_seconds if min_gap is None else min_gap
        self.retry_guard = settings.retry_guard_seconds if retry_guard is None else retry_guard
        self._clock = clock

        self.steps: list[dict] = []
        self.summary: ProgressSummary | None = None
        self.finalized = False
        self.failed_step: StepType | None = None

        self._active = False
        self._inflight: asyncio.Task | None = None
        self._runner: asyncio.Task | None = None
        self._last_poll_at: float | None = None
        self._retried_at: dict[StepType, float] = {}
        self._site_status: str | None = None

    @property
    def active(self) -> bool:
        return self._active

    # ── Views ───────────────────────────────────────────────

    def step_views(self) -> list[dict]:
        """Polled steps with freshly retried ones shown as IN_PROGRESS."""
        views = []
        for step in self.steps:
            step_type = StepType(step["step_type"])
            if step_type in self._retried_at:
                step = {**step, "status": StepStatus.IN_PROGRESS.value, "error_msg": None}
            views.append(step)
        return views

    def _find(self, step_type: StepType) -> dict | None:
        for step in self.steps:
            if step["step_type"] == step_type.value:
                return step
        return None

    def _expire_retry_guards(self) -> None:
        now = self._clock()
        for step in self.steps:
            step_type = StepType(step["step_type"])
            retried_at = self._retried_at.get(step_type)
            if retried_at is None:
                continue
            confirmed = step["status"] in (StepStatus.IN_PROGRESS.value, StepStatus.SUCCESS.value)
            if confirmed or now - retried_at >= self.retry_guard:
                del self._retried_at[step_type]

    # ── Polling ─────────────────────────────────────────────

    async def poll(self) -> ProgressSummary | None:
        """Fetch the ledger once and react to it.

        A poll started less than ``min_gap`` after the previous one is
        skipped.  A newer poll cancels the one still in flight; the
        superseded call returns None.
        """
        now = self._clock()
        if self._last_poll_at is not None and now - self._last_poll_at < self.min_gap:
            return self.summary
        self._last_poll_at = now

        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

        task = asyncio.create_task(self.api.get_status_all(self.installation_id))
        self._inflight = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task.cancelled() or self._inflight is not task:
            return None
        self._inflight = None

        await self._apply(task.result())
        return self.summary

    async def _apply(self, payload: dict) -> None:
        self.steps = payload.get("steps", [])
        self._expire_retry_guards()
        summary = summarize(self.step_views())
        self.summary = summary

        if summary.all_terminal:
            if summary.all_success:
                await self._finalize()
            else:
                await self._mark_failed(summary.first_failed)
            self._active = False
        else:
            await self._push_site_status("IN_PROGRESS")

    async def _push_site_status(self, status: str) -> None:
        if self._site_status == status:
            return
        await self.api.set_site_status(self.installation_id, status)
        self._site_status = status

    async def _finalize(self) -> None:
        if self.finalized:
            return
        self.finalized = True
        try:
            await self.api.complete(self.installation_id, self.credentials)
        except Exception:
            self.finalized = False
            raise
        self._site_status = "COMPLETED"
        logger.info("Installation %s completed", self.installation_id)

    async def _mark_failed(self, first_failed: StepType | None) -> None:
        self.failed_step = first_failed
        await self._push_site_status("FAILED")
        logger.warning(
            "Installation %s failed at %s",
            self.installation_id,
            first_failed.value if first_failed else "unknown step",
        )

    async def run_until_terminal(self) -> ProgressSummary | None:
        """Poll every ``interval`` seconds until all steps are terminal."""
        self._active = True
        while self._active:
            try:
                await self.poll()
            except httpx.HTTPError as exc:
                logger.warning("Polling installation %s failed: %s", self.installation_id, exc)
            if not self._active:
                break
            await asyncio.sleep(self.interval)
        return self.summary

    def resume(self) -> asyncio.Task:
        """Start background polling unless it is already running."""
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self.run_until_terminal())
        return self._runner

    async def wait(self) -> ProgressSummary | None:
        if self._runner is None:
            return self.summary
        return await self._runner

    async def stop(self) -> None:
        self._active = False
        for task in (self._runner, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._runner = None
        self._inflight = None

    # ── Retry ───────────────────────────────────────────────

    async def retry_step(self, step_type: StepType) -> StartOutcome | None:
        """Re-start one step; a SUCCESS step is left alone (returns None)."""
        step_type = StepType(step_type)
        current = self._find(step_type)
        if current is not None and current["status"] == StepStatus.SUCCESS.value:
            return None

        previous_failed = self.failed_step
        if self.failed_step == step_type:
            self.failed_step = None
        self._retried_at[step_type] = self._clock()

        try:
            outcome = await self.api.start_step(self.installation_id, step_type)
        except Exception:
            self._retried_at.pop(step_type, None)
            self.failed_step = previous_failed
            raise
        if outcome.conflict:
            logger.info("Retry of %s not needed: %s", step_type.value, outcome.conflict)

        self.resume()
        return outcome

    async def retry_all_failed(self) -> dict[StepType, StartOutcome | None | BaseException]:
        """Retry every FAILED step; one failing retry does not stop the others."""
        payload = await self.api.get_status_all(self.installation_id)
        self.steps = payload.get("steps", [])
        failed = [
            StepType(s["step_type"])
            for s in self.steps
            if s["status"] == StepStatus.FAILED.value
        ]

        results = await asyncio.gather(
            *(self.retry_step(step_type) for step_type in failed),
            return_exceptions=True,
        )
        outcomes = dict(zip(failed, results))
        for step_type, result in outcomes.items():
            if isinstance(result, BaseException):
                logger.warning("Retry of %s failed: %s", step_type.value, result)
        return outcomes
