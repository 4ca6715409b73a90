"""Site router: domain availability, status, and stored credentials.

Endpoints:
    POST  /api/sites/check-domain        Is a domain free for a new installation
    PATCH /api/sites/{id}/status         Set installation status
    GET   /api/sites/{id}/credentials    Admin credentials saved at completion
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.database import get_db
from provisioner.schemas.installation import SiteOut
from provisioner.schemas.site import (
    DomainCheckRequest,
    DomainCheckResponse,
    SiteCredentials,
    SiteStatusUpdate,
)
from provisioner.services import installations
from provisioner.services.promotion import check_domain_availability

router = APIRouter()


@router.post("/check-domain", response_model=DomainCheckResponse)
async def check_domain(body: DomainCheckRequest, db: AsyncSession = Depends(get_db)):
    return await check_domain_availability(db, body.domain, body.exclude_site_id)


@router.patch("/{site_id}/status", response_model=SiteOut)
async def update_site_status(
    site_id: int,
    body: SiteStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    site = await installations.set_site_status(db, site_id, body.status)
    return SiteOut.model_validate(site)


@router.get("/{site_id}/credentials", response_model=SiteCredentials)
async def get_credentials(site_id: int, db: AsyncSession = Depends(get_db)):
    return await installations.get_site_credentials(db, site_id)
