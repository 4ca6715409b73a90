"""Promote a wizard draft (or a bare request) into an installation.

Promotion is idempotent with respect to the step ledger: it never creates
a second row for a (site, step type) pair, and re-running it on a site
that already has steps only resets the ones that can be retried.

Reset rule for existing provisioning steps:
  - SUCCESS is never touched.
  - FAILED and PENDING go (back) to PENDING with the error cleared.
  - IN_PROGRESS is left alone while its run still holds a live lease;
    with no live run it is reset and the stale run expired.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.middleware.exceptions import DomainUnavailableError, ResourceNotFoundError
from provisioner.models.client import Client
from provisioner.models.install_step import (
    PROVISIONING_STEPS, InstallStep, StepStatus, StepType,
)
from provisioner.models.site import UNNAMED_DOMAIN, Site, SiteStatus
from provisioner.models.step_run import RunStatus
from provisioner.schemas.site import DomainCheckResponse, ExistingSite
from provisioner.services.drafts import load_draft
from provisioner.services.project_settings import ensure_project

logger = logging.getLogger(__name__)


def _has_live_run(step: InstallStep, now: datetime) -> bool:
    return any(
        run.status == RunStatus.RUNNING and run.lease_expires_at > now
        for run in step.runs
    )


def _is_draft(site: Site) -> bool:
    """A site with no provisioning steps yet (never promoted)."""
    return all(s.step_type == StepType.PRE_INSTALLATION for s in site.steps)


async def find_site_by_domain(
    db: AsyncSession,
    domain: str,
    exclude_site_id: int | None = None,
) -> Site | None:
    """First non-draft site that owns ``domain``."""
    stmt = select(Site).where(Site.domain == domain).order_by(Site.id)
    if exclude_site_id is not None:
        stmt = stmt.where(Site.id != exclude_site_id)
    result = await db.execute(stmt)
    for site in result.scalars().all():
        if not _is_draft(site):
            return site
    return None


async def check_domain_availability(
    db: AsyncSession,
    domain: str,
    exclude_site_id: int | None = None,
) -> DomainCheckResponse:
    if not domain or domain == UNNAMED_DOMAIN:
        return DomainCheckResponse(available=True, message="Domain is available")

    existing = await find_site_by_domain(db, domain, exclude_site_id)
    if existing:
        return DomainCheckResponse(
            available=False,
            message=f"Domain {domain} is already in use",
            existing_site=ExistingSite.model_validate(existing),
        )
    return DomainCheckResponse(available=True, message="Domain is available")


def reset_and_fill_steps(site: Site, now: datetime | None = None) -> list[InstallStep]:
    """Apply the reset rule and append any missing provisioning steps.

    Returns the newly created steps.
    """
    now = now or datetime.utcnow()
    present = set()

    for step in site.steps:
        if step.step_type == StepType.PRE_INSTALLATION:
            continue
        present.add(step.step_type)

        if step.status == StepStatus.SUCCESS:
            continue
        if step.status == StepStatus.IN_PROGRESS:
            if _has_live_run(step, now):
                continue
            for run in step.runs:
                if run.status == RunStatus.RUNNING:
                    run.status = RunStatus.EXPIRED
                    run.finished_at = now
                    run.error_msg = "Reset on re-entry"
        if step.status != StepStatus.PENDING or step.error_msg is not None:
            step.status = StepStatus.PENDING
            step.error_msg = None

    created = []
    for step_type in PROVISIONING_STEPS:
        if step_type not in present:
            step = InstallStep(step_type=step_type, status=StepStatus.PENDING)
            site.steps.append(step)
            created.append(step)
    return created


async def promote(
    db: AsyncSession,
    client_id: int,
    project_id: int,
    domain: str,
    session_id: int | None = None,
) -> Site:
    await ensure_project(db, project_id)
    if not await db.get(Client, client_id):
        raise ResourceNotFoundError("Client", client_id)

    if session_id is not None:
        site, draft = await load_draft(db, session_id)
        availability = await check_domain_availability(db, domain, exclude_site_id=site.id)
        if not availability.available:
            raise DomainUnavailableError(
                domain,
                details={"existing_site": availability.existing_site.model_dump()},
            )

        site.client_id = client_id
        site.project_id = project_id
        site.domain = domain
        site.status = SiteStatus.PENDING
        draft.step_data = {
            **(draft.step_data or {}),
            "client_id": client_id,
            "project_id": project_id,
            "domain": domain,
        }
        created = reset_and_fill_steps(site)
        logger.info(
            "Promoted draft %s to installation for %s (%d new steps)",
            site.id, domain, len(created),
        )
    else:
        site = await find_site_by_domain(db, domain)
        if site is not None:
            if site.status == SiteStatus.FAILED:
                site.status = SiteStatus.PENDING
            created = reset_and_fill_steps(site)
            logger.info(
                "Reusing installation %s for %s (%d new steps)",
                site.id, domain, len(created),
            )
        else:
            site = Site(
                client_id=client_id,
                project_id=project_id,
                domain=domain,
                status=SiteStatus.PENDING,
            )
            for step_type in PROVISIONING_STEPS:
                site.steps.append(InstallStep(step_type=step_type, status=StepStatus.PENDING))
            db.add(site)
            logger.info("Created installation for %s", domain)

    await db.flush()
    return await load_installation(db, site.id)


async def load_installation(db: AsyncSession, site_id: int) -> Site:
    """Site with client, project and ordered steps freshly loaded."""
    result = await db.execute(
        select(Site).where(Site.id == site_id).execution_options(populate_existing=True)
    )
    site = result.scalar_one_or_none()
    if not site:
        raise ResourceNotFoundError("Installation", site_id)
    return site
