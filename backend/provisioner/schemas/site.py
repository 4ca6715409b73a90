"""Pydantic schemas for site-level endpoints."""

from pydantic import BaseModel, field_validator

from provisioner.models.site import SiteStatus
from provisioner.schemas.installation import ClientBrief
from provisioner.schemas.validators import validate_domain


class DomainCheckRequest(BaseModel):
    domain: str
    exclude_site_id: int | None = None

    @field_validator("domain")
    @classmethod
    def validate_domain_field(cls, v: str) -> str:
        return validate_domain(v)


class ExistingSite(BaseModel):
    id: int
    domain: str | None = None
    client: ClientBrief | None = None

    model_config = {"from_attributes": True}


class DomainCheckResponse(BaseModel):
    available: bool
    message: str
    existing_site: ExistingSite | None = None


class SiteStatusUpdate(BaseModel):
    status: SiteStatus


class SiteCredentials(BaseModel):
    domain: str
    admin_email: str
    admin_password: str
