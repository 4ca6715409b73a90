"""Pydantic schemas for project provider settings."""

from pydantic import BaseModel, field_validator

from provisioner.schemas.validators import validate_url


class ProjectSettings(BaseModel):
    """Provider credentials stored as entity_meta rows on a project.

    On PUT, fields left out of the body are untouched; an explicit null
    or empty string removes the stored value.
    """
    cpanel_domain: str | None = None
    cpanel_username: str | None = None
    cpanel_api_token: str | None = None
    cpanel_subdomain_dir_path: str | None = None
    cloudflare_username: str | None = None
    cloudflare_api_key: str | None = None
    cloudflare_zone_id: str | None = None
    cloudflare_a_record_ip: str | None = None
    installer_api_endpoint: str | None = None
    installer_token: str | None = None

    @field_validator("installer_api_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str | None) -> str | None:
        if not v:
            return v
        return validate_url(v)


class ProviderCheck(BaseModel):
    configured: bool
    missing: list[str]


class ProjectSettingsValidation(BaseModel):
    cpanel: ProviderCheck
    cloudflare: ProviderCheck
    installer: ProviderCheck
    is_complete: bool


class InstallerTestRequest(BaseModel):
    api_endpoint: str
    token: str

    @field_validator("api_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        return validate_url(v)


class InstallerTestResponse(BaseModel):
    success: bool
    message: str
    data: dict | None = None
