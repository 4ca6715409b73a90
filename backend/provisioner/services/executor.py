"""Step executor: claim a step, run its provider action in the background.

Flow for ``start_step``:

  1. Atomic claim: a conditional UPDATE moves the step from PENDING or
     FAILED to IN_PROGRESS.  If no row matched, the step is already running
     or done and a StateConflictError is raised with nothing written.
  2. A StepRun row records the attempt with a lease.
  3. The provider action is handed to the StepDispatcher and the request
     returns at once with the IN_PROGRESS step.

The background task resolves the typed step config, calls the adapter
while a heartbeat keeps the lease alive, then writes SUCCESS or FAILED
to both the step and the run.  Any exception ends as FAILED with its
message.  A run the reaper has expired meanwhile is not overwritten.
"""

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.config import settings
from provisioner.database import async_session
from provisioner.middleware.exceptions import (
    BusinessLogicError,
    ResourceNotFoundError,
    StateConflictError,
)
from provisioner.models.install_step import InstallStep, StepStatus, StepType
from provisioner.models.site import Site, SiteStatus
from provisioner.models.step_run import RunStatus, StepRun
from provisioner.schemas.installation import StepOut
from provisioner.services.project_settings import get_project_settings
from provisioner.services.providers.base import ProviderError, ProviderResult
from provisioner.services.providers.cloudflare import CloudflareAdapter
from provisioner.services.providers.cpanel import CpanelAdapter
from provisioner.services.providers.installer import InstallerAdapter, InstallerParams
from provisioner.services.step_config import (
    CloudflareStepConfig,
    CpanelStepConfig,
    InstallerStepConfig,
    StepConfig,
    resolve_step_config,
)

logger = logging.getLogger("provisioner.executor")


class StepDispatcher:
    """Holds references to running step tasks until they finish."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, coro, name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Give running steps ``timeout`` seconds, then cancel the rest.

        Cancelled runs keep their RUNNING row; the reaper fails them once
        the lease lapses.
        """
        if not self._tasks:
            return
        logger.info("Waiting for %d running step(s)", len(self._tasks))
        done, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled %d step(s) still running at shutdown", len(pending))


dispatcher = StepDispatcher()


# ── Claim ────────────────────────────────────────────────────

async def get_step(db: AsyncSession, site_id: int, step_type: StepType) -> InstallStep:
    site = await db.get(Site, site_id)
    if not site:
        raise ResourceNotFoundError("Installation", site_id)
    result = await db.execute(
        select(InstallStep).where(
            InstallStep.site_id == site_id,
            InstallStep.step_type == step_type,
        )
    )
    step = result.scalar_one_or_none()
    if not step:
        raise ResourceNotFoundError("Step", f"{step_type.value} for installation {site_id}")
    return step


async def start_step(
    db: AsyncSession,
    site_id: int,
    step_type: StepType,
    step_dispatcher: StepDispatcher | None = None,
) -> InstallStep:
    if await db.get(Site, site_id) is None:
        raise ResourceNotFoundError("Installation", site_id)
    if step_type == StepType.PRE_INSTALLATION:
        raise BusinessLogicError(
            "PRE_INSTALLATION is not an executable step", error_code="STEP_NOT_STARTABLE"
        )

    step = await get_step(db, site_id, step_type)

    claim = await db.execute(
        update(InstallStep)
        .where(
            InstallStep.id == step.id,
            InstallStep.status.in_([StepStatus.PENDING, StepStatus.FAILED]),
        )
        .values(status=StepStatus.IN_PROGRESS, error_msg=None)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(step)

    if claim.rowcount == 0:
        details = {"step": StepOut.model_validate(step).model_dump(mode="json")}
        if step.status == StepStatus.SUCCESS:
            raise StateConflictError(
                "Step is already completed", "STEP_ALREADY_COMPLETED", details
            )
        raise StateConflictError("Step is already in progress", "STEP_IN_PROGRESS", details)

    last_attempt = (
        await db.execute(
            select(func.max(StepRun.attempt)).where(StepRun.step_id == step.id)
        )
    ).scalar()
    now = datetime.utcnow()
    run = StepRun(
        step_id=step.id,
        attempt=(last_attempt or 0) + 1,
        status=RunStatus.RUNNING,
        started_at=now,
        heartbeat_at=now,
        lease_expires_at=now + timedelta(seconds=settings.step_lease_seconds),
    )
    db.add(run)
    # The background task reads and writes through its own session.
    await db.commit()

    logger.info(
        "Started %s for installation %s (step %s, attempt %s)",
        step_type.value, site_id, step.id, run.attempt,
    )
    (step_dispatcher or dispatcher).dispatch(
        execute_step_run(step.id, run.id),
        name=f"step-{step.id}-run-{run.id}",
    )
    return step


# ── Background execution ─────────────────────────────────────

async def _load_config(step_id: int) -> StepConfig:
    async with async_session() as db:
        step = await db.get(InstallStep, step_id)
        site = await db.get(Site, step.site_id)
        if site is None or site.project is None:
            raise ProviderError("Installation or project not found")

        project_settings = await get_project_settings(db, site.project_id)
        draft = next(
            (s for s in site.steps if s.step_type == StepType.PRE_INSTALLATION), None
        )
        return resolve_step_config(
            step.step_type,
            project_settings,
            draft.step_data if draft else None,
            step.step_data,
            site,
        )


async def perform_step(config: StepConfig) -> ProviderResult:
    """Run the provider action for a resolved config."""
    domain = config.domain

    if isinstance(config, CpanelStepConfig):
        async with CpanelAdapter(
            config.host, config.username, config.api_token, config.subdomain_dir_path
        ) as cpanel:
            return await cpanel.ensure_subdomain(domain.root_domain, domain.subdomain)

    if isinstance(config, CloudflareStepConfig):
        async with CloudflareAdapter(config.email, config.api_key) as cloudflare:
            return await cloudflare.ensure_dns_record(
                config.zone_id, domain.full_domain, config.a_record_ip
            )

    if isinstance(config, InstallerStepConfig):
        params = InstallerParams(
            name=domain.subdomain,
            client_name=config.client_name,
            email=config.admin_email,
            password=config.admin_password,
        )
        async with InstallerAdapter(config.endpoint, config.token) as installer:
            if config.step_type == StepType.DIRECTORY_SETUP:
                return await installer.setup_directory(params)
            return await installer.setup_database(params)

    raise ValueError(f"Unsupported step config {type(config).__name__}")


async def _heartbeat(run_id: int) -> None:
    while True:
        await asyncio.sleep(settings.step_heartbeat_seconds)
        try:
            now = datetime.utcnow()
            async with async_session() as db:
                await db.execute(
                    update(StepRun)
                    .where(StepRun.id == run_id, StepRun.status == RunStatus.RUNNING)
                    .values(
                        heartbeat_at=now,
                        lease_expires_at=now + timedelta(seconds=settings.step_lease_seconds),
                    )
                )
                await db.commit()
        except Exception:
            logger.exception("Heartbeat failed for run %s", run_id)


async def _record_outcome(
    step_id: int,
    run_id: int,
    result: ProviderResult | None,
    error: str | None,
) -> None:
    succeeded = error is None and result is not None and result.success
    now = datetime.utcnow()

    async with async_session() as db:
        run = await db.get(StepRun, run_id)
        step = await db.get(InstallStep, step_id)
        if run is None or step is None:
            logger.warning("Step %s / run %s vanished before completion", step_id, run_id)
            return

        if run.status != RunStatus.RUNNING:
            logger.warning(
                "Run %s already %s, not recording outcome for step %s",
                run_id, run.status.value, step_id,
            )
            return

        run.status = RunStatus.SUCCEEDED if succeeded else RunStatus.FAILED
        run.finished_at = now
        run.error_msg = None if succeeded else error
        step.status = StepStatus.SUCCESS if succeeded else StepStatus.FAILED
        step.error_msg = None if succeeded else error

        if succeeded:
            site = await db.get(Site, step.site_id)
            if step.step_type == StepType.DIRECTORY_SETUP:
                installer_site_id = (result.data or {}).get("site_id")
                if installer_site_id:
                    site.installer_site_id = installer_site_id
            elif step.step_type == StepType.DB_CREATION:
                site.status = SiteStatus.COMPLETED

        await db.commit()

    if succeeded:
        logger.info("Step %s succeeded: %s", step_id, result.message)
    else:
        logger.warning("Step %s failed: %s", step_id, error)


async def execute_step_run(step_id: int, run_id: int) -> None:
    """Background body of one step attempt."""
    heartbeat = asyncio.create_task(_heartbeat(run_id))
    result: ProviderResult | None = None
    error: str | None = None
    try:
        config = await _load_config(step_id)
        result = (await perform_step(config)).raise_for_failure()
    except ProviderError as exc:
        error = exc.message
    except Exception as exc:
        logger.exception("Unexpected error executing step %s", step_id)
        error = str(exc) or exc.__class__.__name__
    finally:
        heartbeat.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await heartbeat

    try:
        await _record_outcome(step_id, run_id, result, error)
    except Exception:
        logger.exception("Failed to record outcome for step %s (run %s)", step_id, run_id)
