"""Draft store for the installation wizard.

A draft is a placeholder Site plus a PRE_INSTALLATION step whose
``step_data`` holds whatever the wizard has collected so far.  The
draft id handed to the browser is the site id.

Writers are expected to read the draft first and send only the fields
they changed; two tabs writing the same draft concurrently can still
lose each other's keys (last merge wins).
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.middleware.exceptions import ResourceNotFoundError
from provisioner.models.client import Client
from provisioner.models.install_step import InstallStep, StepStatus, StepType
from provisioner.models.site import UNNAMED_DOMAIN, Site, SiteStatus
from provisioner.services.project_settings import ensure_project

logger = logging.getLogger(__name__)


def _pre_step(site: Site) -> InstallStep | None:
    return next(
        (s for s in site.steps if s.step_type == StepType.PRE_INSTALLATION), None
    )


async def _ensure_client(db: AsyncSession, client_id: int) -> Client:
    client = await db.get(Client, client_id)
    if not client:
        raise ResourceNotFoundError("Client", client_id)
    return client


async def load_draft(db: AsyncSession, draft_id: int) -> tuple[Site, InstallStep]:
    site = await db.get(Site, draft_id)
    step = _pre_step(site) if site else None
    if not site or not step:
        raise ResourceNotFoundError("Installation session", draft_id)
    return site, step


async def create_draft(db: AsyncSession, data: dict) -> tuple[Site, InstallStep]:
    project_id = data.get("project_id")
    await ensure_project(db, project_id)

    client_id = data.get("client_id")
    if client_id is not None:
        await _ensure_client(db, client_id)

    site = Site(
        project_id=project_id,
        client_id=client_id,
        domain=data.get("domain") or UNNAMED_DOMAIN,
        status=SiteStatus.PENDING,
    )
    step = InstallStep(
        step_type=StepType.PRE_INSTALLATION,
        status=StepStatus.IN_PROGRESS,
        step_data={k: v for k, v in data.items() if v is not None},
    )
    site.steps.append(step)
    db.add(site)
    await db.flush()

    logger.info("Created installation draft %s for project %s", site.id, project_id)
    return site, step


async def read_draft(db: AsyncSession, draft_id: int) -> dict:
    site, step = await load_draft(db, draft_id)
    return {
        "session_id": site.id,
        "step_id": step.id,
        "step_data": step.step_data or {},
        "site": site,
    }


async def update_draft(db: AsyncSession, draft_id: int, partial: dict) -> dict:
    """Shallow-merge ``partial`` into the draft; unspecified keys survive."""
    site, step = await load_draft(db, draft_id)

    # Reassign so the JSON column is flagged dirty
    step.step_data = {**(step.step_data or {}), **partial}

    client_id = partial.get("client_id")
    if client_id is not None and client_id != site.client_id:
        await _ensure_client(db, client_id)
        site.client_id = client_id

    project_id = partial.get("project_id")
    if project_id is not None and project_id != site.project_id:
        await ensure_project(db, project_id)
        site.project_id = project_id

    await db.flush()
    return {"session_id": site.id, "step_id": step.id, "step_data": step.step_data}


async def delete_draft(db: AsyncSession, draft_id: int) -> None:
    site, _ = await load_draft(db, draft_id)
    await db.delete(site)
    await db.flush()
    logger.info("Deleted installation draft %s", draft_id)
