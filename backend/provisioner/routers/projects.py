"""Project settings router: provider credentials per project.

Endpoints:
    GET  /api/projects/{id}/settings                  Stored provider settings
    PUT  /api/projects/{id}/settings                  Upsert provider settings
    GET  /api/projects/{id}/settings/validate         Which providers are fully configured
    POST /api/projects/{id}/settings/test-installer   Probe an installer endpoint
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.database import get_db
from provisioner.schemas.project import (
    InstallerTestRequest,
    InstallerTestResponse,
    ProjectSettings,
    ProjectSettingsValidation,
)
from provisioner.services.project_settings import (
    ensure_project,
    get_project_settings,
    update_project_settings,
    validate_project_settings,
)
from provisioner.services.providers.base import TransportFailureError
from provisioner.services.providers.installer import InstallerAdapter

router = APIRouter()


@router.get("/{project_id}/settings", response_model=ProjectSettings)
async def get_settings(project_id: int, db: AsyncSession = Depends(get_db)):
    await ensure_project(db, project_id)
    return await get_project_settings(db, project_id)


@router.put("/{project_id}/settings", response_model=ProjectSettings)
async def put_settings(
    project_id: int,
    body: ProjectSettings,
    db: AsyncSession = Depends(get_db),
):
    return await update_project_settings(db, project_id, body.model_dump(exclude_unset=True))


@router.get("/{project_id}/settings/validate", response_model=ProjectSettingsValidation)
async def validate_settings(project_id: int, db: AsyncSession = Depends(get_db)):
    await ensure_project(db, project_id)
    return validate_project_settings(await get_project_settings(db, project_id))


@router.post("/{project_id}/settings/test-installer", response_model=InstallerTestResponse)
async def test_installer(
    project_id: int,
    body: InstallerTestRequest,
    db: AsyncSession = Depends(get_db),
):
    """Call ``{api_endpoint}/test`` with the given token before saving it."""
    await ensure_project(db, project_id)
    try:
        async with InstallerAdapter(body.api_endpoint, body.token, timeout=30.0) as installer:
            result = await installer.test_connection()
    except TransportFailureError as exc:
        return InstallerTestResponse(success=False, message=exc.message)

    return InstallerTestResponse(
        success=result.success,
        message=result.message or result.error or "",
        data=result.data,
    )
