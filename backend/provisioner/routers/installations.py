"""Installation router: wizard drafts, promotion, and the step ledger.

Endpoints:
    POST   /api/installations/session              Create a wizard draft
    GET    /api/installations/session/{id}         Read a draft
    PUT    /api/installations/session/{id}         Merge fields into a draft
    DELETE /api/installations/session/{id}         Abandon a draft
    POST   /api/installations                      Promote draft / create installation
    GET    /api/installations/{id}                 Installation with steps
    DELETE /api/installations/{id}                 Delete installation
    GET    /api/installations/{id}/steps           Provisioning steps, ordered
    POST   /api/installations/{id}/steps/start     Start one step (202)
    GET    /api/installations/{id}/steps/status-all  Ledger + aggregate progress
    POST   /api/installations/{id}/complete        Finalize and store credentials
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.database import get_db
from provisioner.schemas.installation import (
    CompleteRequest,
    CompleteResponse,
    DraftCreate,
    DraftCreated,
    DraftOut,
    DraftUpdate,
    InstallationCreate,
    InstallationOut,
    SiteOut,
    StepOut,
    StepStartRequest,
    StepStatusAll,
)
from provisioner.services import drafts, executor, installations
from provisioner.services.promotion import load_installation, promote

router = APIRouter()


# ── Drafts ───────────────────────────────────────────────────

@router.post("/session", response_model=DraftCreated, status_code=status.HTTP_201_CREATED)
async def create_session(body: DraftCreate, db: AsyncSession = Depends(get_db)):
    site, step = await drafts.create_draft(db, body.model_dump(exclude_unset=True))
    return DraftCreated(session_id=site.id, step_id=step.id)


@router.get("/session/{session_id}", response_model=DraftOut)
async def get_session(session_id: int, db: AsyncSession = Depends(get_db)):
    draft = await drafts.read_draft(db, session_id)
    return DraftOut(
        session_id=draft["session_id"],
        step_id=draft["step_id"],
        step_data=draft["step_data"],
        site=SiteOut.model_validate(draft["site"]),
    )


@router.put("/session/{session_id}")
async def update_session(session_id: int, body: DraftUpdate, db: AsyncSession = Depends(get_db)):
    """Merge only the fields present in the body into the stored draft."""
    return await drafts.update_draft(db, session_id, body.model_dump(exclude_unset=True))


@router.delete("/session/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: int, db: AsyncSession = Depends(get_db)):
    await drafts.delete_draft(db, session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Installations ────────────────────────────────────────────

@router.post("", response_model=InstallationOut, status_code=status.HTTP_201_CREATED)
async def create_installation(body: InstallationCreate, db: AsyncSession = Depends(get_db)):
    site = await promote(
        db,
        client_id=body.client_id,
        project_id=body.project_id,
        domain=body.domain,
        session_id=body.session_id,
    )
    return InstallationOut.model_validate(site)


@router.get("/{installation_id}", response_model=InstallationOut)
async def get_installation(installation_id: int, db: AsyncSession = Depends(get_db)):
    site = await load_installation(db, installation_id)
    return InstallationOut.model_validate(site)


@router.delete("/{installation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_installation(installation_id: int, db: AsyncSession = Depends(get_db)):
    await installations.delete_installation(db, installation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Step ledger ──────────────────────────────────────────────

@router.get("/{installation_id}/steps", response_model=list[StepOut])
async def list_steps(installation_id: int, db: AsyncSession = Depends(get_db)):
    steps = await installations.list_steps(db, installation_id)
    return [StepOut.model_validate(s) for s in steps]


@router.post(
    "/{installation_id}/steps/start",
    response_model=StepOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_step(
    installation_id: int,
    body: StepStartRequest,
    db: AsyncSession = Depends(get_db),
):
    """Claim the step and run it in the background.

    Returns 409 with ``STEP_IN_PROGRESS`` or ``STEP_ALREADY_COMPLETED`` and
    the current step in ``error.details.step`` when the step cannot start.
    """
    step = await executor.start_step(db, installation_id, body.step_type)
    return StepOut.model_validate(step)


@router.get("/{installation_id}/steps/status-all", response_model=StepStatusAll)
async def get_all_step_statuses(installation_id: int, db: AsyncSession = Depends(get_db)):
    return await installations.get_status_all(db, installation_id)


@router.post("/{installation_id}/complete", response_model=CompleteResponse)
async def complete_installation(
    installation_id: int,
    body: CompleteRequest,
    db: AsyncSession = Depends(get_db),
):
    site, stored = await installations.finalize(
        db, installation_id, body.model_dump(exclude_none=True)
    )
    return CompleteResponse(site=SiteOut.model_validate(site), credentials_stored=stored)
