"""Pydantic schemas for drafts, installations and the step ledger."""

from datetime import datetime

from pydantic import BaseModel, field_validator

from provisioner.models.install_step import StepStatus, StepType
from provisioner.models.site import SiteStatus
from provisioner.schemas.validators import validate_domain, validate_optional_email


# ── Nested briefs ────────────────────────────────────────────

class ClientBrief(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class ProjectBrief(BaseModel):
    id: int
    name: str
    key: str
    domain: str | None = None

    model_config = {"from_attributes": True}


# ── Steps ────────────────────────────────────────────────────

class StepOut(BaseModel):
    """Ledger row.  ``step_data`` is never exposed; drafts hold passwords."""
    id: int
    site_id: int
    step_type: StepType
    status: StepStatus
    error_msg: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class StepStartRequest(BaseModel):
    step_type: StepType


class StepProgress(BaseModel):
    total: int
    completed: int
    failed: int
    in_progress: int
    pending: int
    percentage: int


class StepStatusAll(BaseModel):
    success: bool = True
    site_id: int
    overall_status: str
    is_complete: bool
    progress: StepProgress
    steps: list[StepOut]


# ── Sites / installations ────────────────────────────────────

class SiteOut(BaseModel):
    id: int
    client_id: int | None = None
    project_id: int
    domain: str | None = None
    status: SiteStatus
    installer_site_id: str | None = None
    created_at: datetime
    updated_at: datetime
    client: ClientBrief | None = None
    project: ProjectBrief | None = None

    model_config = {"from_attributes": True}


class InstallationOut(SiteOut):
    steps: list[StepOut] = []

    @field_validator("steps")
    @classmethod
    def drop_pre_installation(cls, v: list[StepOut]) -> list[StepOut]:
        return [s for s in v if s.step_type != StepType.PRE_INSTALLATION]


class InstallationCreate(BaseModel):
    """Payload for POST /api/installations (wizard submission)."""
    client_id: int
    project_id: int
    domain: str
    session_id: int | None = None

    @field_validator("domain")
    @classmethod
    def validate_domain_field(cls, v: str) -> str:
        return validate_domain(v)


class CompleteRequest(BaseModel):
    """Fallback credentials; values stored on the draft take precedence."""
    domain: str | None = None
    admin_email: str | None = None
    admin_password: str | None = None


class CompleteResponse(BaseModel):
    success: bool = True
    site: SiteOut
    credentials_stored: bool


# ── Drafts ───────────────────────────────────────────────────

class DraftFields(BaseModel):
    client_id: int | None = None
    domain: str | None = None
    subdomain: str | None = None
    admin_email: str | None = None
    admin_password: str | None = None
    current_step: int | str | None = None  # screen number or name

    @field_validator("admin_email")
    @classmethod
    def validate_email_field(cls, v: str | None) -> str | None:
        return validate_optional_email(v)

    @field_validator("current_step")
    @classmethod
    def validate_current_step(cls, v: int | str | None) -> int | str | None:
        if isinstance(v, int) and v < 1:
            raise ValueError("current_step must be at least 1")
        return v


class DraftCreate(DraftFields):
    project_id: int


class DraftUpdate(DraftFields):
    """Partial update; only fields present in the request body are merged."""
    project_id: int | None = None


class DraftCreated(BaseModel):
    session_id: int
    step_id: int


class DraftOut(BaseModel):
    session_id: int
    step_id: int
    step_data: dict
    site: SiteOut
