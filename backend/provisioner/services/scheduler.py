"""Background scheduler: expires step runs whose lease has lapsed.

Uses FastAPI's lifespan context to start/stop an asyncio background loop.
Every ``REAPER_INTERVAL_SECONDS`` it looks for RUNNING step runs whose
lease expired (the worker died or hung), marks them EXPIRED and fails
their IN_PROGRESS step so the step can be retried.

Usage:
    from provisioner.services.scheduler import lifespan
    app = FastAPI(lifespan=lifespan, ...)

The same pass is available from the command line:

    python -m provisioner.cli reap-stale-runs
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.config import settings
from provisioner.database import async_session
from provisioner.models.install_step import InstallStep, StepStatus
from provisioner.models.step_run import RunStatus, StepRun
from provisioner.services.executor import dispatcher
from provisioner.utils.cache import close_redis

logger = logging.getLogger("provisioner.scheduler")


async def reap_stale_runs(db: AsyncSession, now: datetime | None = None) -> int:
    """Expire lapsed runs and fail their steps.  Returns the number reaped."""
    now = now or datetime.utcnow()
    result = await db.execute(
        select(StepRun).where(
            StepRun.status == RunStatus.RUNNING,
            StepRun.lease_expires_at < now,
        )
    )
    runs = result.scalars().all()

    for run in runs:
        run.status = RunStatus.EXPIRED
        run.finished_at = now
        run.error_msg = "Lease expired"

        step = await db.get(InstallStep, run.step_id)
        if step is not None and step.status == StepStatus.IN_PROGRESS:
            step.status = StepStatus.FAILED
            step.error_msg = (
                f"Step timed out: no heartbeat since {run.heartbeat_at.isoformat()}"
            )
        logger.warning(
            "Expired run %s (step %s, attempt %s)", run.id, run.step_id, run.attempt
        )

    await db.flush()
    return len(runs)


async def run_reaper_once() -> int:
    async with async_session() as db:
        try:
            count = await reap_stale_runs(db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    if count:
        logger.info("Reaped %d stale step run(s)", count)
    return count


async def _scheduler_loop() -> None:
    interval = settings.reaper_interval_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            await run_reaper_once()
        except Exception:
            logger.exception("Unhandled error in stale run reaper")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the reaper on startup; stop it and drain steps on shutdown."""
    task = None
    if settings.reaper_enabled:
        task = asyncio.create_task(_scheduler_loop())
        logger.info("Stale run reaper started (every %ss)", settings.reaper_interval_seconds)
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.info("Stale run reaper stopped")
        await dispatcher.shutdown()
        await close_redis()
