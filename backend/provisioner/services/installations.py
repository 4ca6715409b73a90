"""Installation records: step ledger reads, finalize, status, credentials."""

import json
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.middleware.exceptions import ResourceNotFoundError
from provisioner.models.entity_meta import REL_SITE
from provisioner.models.install_step import InstallStep, StepType
from provisioner.models.site import Site, SiteStatus
from provisioner.schemas.installation import StepOut, StepProgress, StepStatusAll
from provisioner.services.entity_meta import delete_meta, get_meta, set_meta
from provisioner.services.progress import summarize

logger = logging.getLogger(__name__)

CREDENTIALS_META = "PROJECT_SETUP_ADMIN_CREDENTIALS"


async def get_site(db: AsyncSession, site_id: int) -> Site:
    site = await db.get(Site, site_id)
    if not site:
        raise ResourceNotFoundError("Installation", site_id)
    return site


async def list_steps(db: AsyncSession, site_id: int) -> list[InstallStep]:
    """Provisioning steps of a site in creation order (draft step excluded)."""
    await get_site(db, site_id)
    result = await db.execute(
        select(InstallStep)
        .where(
            InstallStep.site_id == site_id,
            InstallStep.step_type != StepType.PRE_INSTALLATION,
        )
        .order_by(InstallStep.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_status_all(db: AsyncSession, site_id: int) -> StepStatusAll:
    steps = await list_steps(db, site_id)
    summary = summarize(steps)
    return StepStatusAll(
        site_id=site_id,
        overall_status=summary.overall_status,
        is_complete=summary.all_terminal,
        progress=StepProgress(**summary.model_dump(
            include={"total", "completed", "failed", "in_progress", "pending", "percentage"}
        )),
        steps=[StepOut.model_validate(s) for s in steps],
    )


async def set_site_status(db: AsyncSession, site_id: int, status: SiteStatus) -> Site:
    site = await get_site(db, site_id)
    if site.status != status:
        logger.info("Installation %s: %s -> %s", site_id, site.status.value, status.value)
        site.status = status
        await db.flush()
    return site


async def finalize(db: AsyncSession, site_id: int, fallback: dict) -> tuple[Site, bool]:
    """Mark the installation COMPLETED, store admin credentials, drop the draft step.

    Credentials come from the draft first and the request body second.
    They are only stored when domain, email and password are all known.
    """
    site = await get_site(db, site_id)
    draft = next(
        (s for s in site.steps if s.step_type == StepType.PRE_INSTALLATION), None
    )
    draft_data = (draft.step_data if draft else None) or {}

    credentials = {
        "domain": draft_data.get("domain") or fallback.get("domain") or site.domain,
        "admin_email": draft_data.get("admin_email") or fallback.get("admin_email"),
        "admin_password": draft_data.get("admin_password") or fallback.get("admin_password"),
    }

    site.status = SiteStatus.COMPLETED
    if draft is not None:
        site.steps.remove(draft)

    already_stored = await get_meta(db, REL_SITE, site.id, CREDENTIALS_META) is not None
    stored = not already_stored and all(credentials.values())
    if stored:
        await set_meta(db, REL_SITE, site.id, CREDENTIALS_META, json.dumps(credentials))
    elif already_stored:
        logger.info("Installation %s already has stored credentials", site_id)
    else:
        logger.warning("Installation %s completed without full admin credentials", site_id)

    await db.flush()
    logger.info("Installation %s finalized", site_id)
    return site, stored


async def get_site_credentials(db: AsyncSession, site_id: int) -> dict:
    await get_site(db, site_id)
    raw = await get_meta(db, REL_SITE, site_id, CREDENTIALS_META)
    if not raw:
        raise ResourceNotFoundError("Credentials for site", site_id)
    return json.loads(raw)


async def delete_installation(db: AsyncSession, site_id: int) -> None:
    site = await get_site(db, site_id)
    await delete_meta(db, REL_SITE, site_id)
    await db.delete(site)
    await db.flush()
    logger.info("Deleted installation %s", site_id)
