"""Typed per-step configuration.

Values come from three sources, later ones winning:

    project provider settings  <  draft step_data  <  the step's own step_data

Empty values never override.  The merged dict is then narrowed into the
config model for the step type; anything required but absent raises
``ConfigurationMissingError`` before a single request is made.
"""

from typing import Literal, Union

from pydantic import BaseModel

from provisioner.models.install_step import StepType
from provisioner.models.site import UNNAMED_DOMAIN, Site
from provisioner.services.project_settings import missing_settings
from provisioner.services.providers.base import ConfigurationMissingError


class DomainParts(BaseModel):
    subdomain: str
    root_domain: str
    full_domain: str


class CpanelStepConfig(BaseModel):
    step_type: Literal[StepType.CPANEL_ENTRY] = StepType.CPANEL_ENTRY
    host: str
    username: str
    api_token: str
    subdomain_dir_path: str | None = None
    domain: DomainParts


class CloudflareStepConfig(BaseModel):
    step_type: Literal[StepType.CLOUDFLARE_ENTRY] = StepType.CLOUDFLARE_ENTRY
    email: str
    api_key: str
    zone_id: str
    a_record_ip: str
    domain: DomainParts


class InstallerStepConfig(BaseModel):
    step_type: Literal[StepType.DIRECTORY_SETUP, StepType.DB_CREATION]
    endpoint: str
    token: str
    client_name: str
    admin_email: str
    admin_password: str
    domain: DomainParts


StepConfig = Union[CpanelStepConfig, CloudflareStepConfig, InstallerStepConfig]


def merge_sources(*sources: dict | None) -> dict:
    """Overlay dicts left to right, skipping None and empty strings."""
    merged: dict = {}
    for source in sources:
        for key, value in (source or {}).items():
            if value is None or value == "":
                continue
            merged[key] = value
    return merged


def split_domain(
    domain: str,
    subdomain: str | None = None,
    full_domain: str | None = None,
) -> DomainParts:
    """Decompose a domain into subdomain and root.

    >>> split_domain("test.example.com").subdomain
    'test'
    >>> split_domain("example.com").subdomain
    'www'
    """
    domain = domain.strip().lower()
    if subdomain:
        sub, root = subdomain, domain
    elif domain.count(".") >= 2:
        sub, root = domain.split(".", 1)
    else:
        sub, root = "www", domain
    return DomainParts(
        subdomain=sub,
        root_domain=root,
        full_domain=full_domain or f"{sub}.{root}",
    )


def resolve_step_config(
    step_type: StepType,
    project_settings: dict,
    draft_data: dict | None = None,
    step_data: dict | None = None,
    site: Site | None = None,
) -> StepConfig:
    values = merge_sources(project_settings, draft_data, step_data)

    domain = values.get("domain")
    if not domain and site is not None and site.domain and site.domain != UNNAMED_DOMAIN:
        domain = site.domain
    if not domain:
        raise ConfigurationMissingError("Domain not provided for installation")
    parts = split_domain(domain, values.get("subdomain"), values.get("full_domain"))

    if step_type == StepType.CPANEL_ENTRY:
        missing = missing_settings(values, "cpanel")
        if missing:
            raise ConfigurationMissingError(
                f"cPanel configuration missing: {', '.join(missing)}"
            )
        return CpanelStepConfig(
            host=values["cpanel_domain"],
            username=values["cpanel_username"],
            api_token=values["cpanel_api_token"],
            subdomain_dir_path=values.get("cpanel_subdomain_dir_path"),
            domain=parts,
        )

    if step_type == StepType.CLOUDFLARE_ENTRY:
        missing = missing_settings(values, "cloudflare")
        if missing:
            raise ConfigurationMissingError(
                f"Cloudflare configuration missing: {', '.join(missing)}"
            )
        return CloudflareStepConfig(
            email=values["cloudflare_username"],
            api_key=values["cloudflare_api_key"],
            zone_id=values["cloudflare_zone_id"],
            a_record_ip=values["cloudflare_a_record_ip"],
            domain=parts,
        )

    if step_type in (StepType.DIRECTORY_SETUP, StepType.DB_CREATION):
        if missing_settings(values, "installer"):
            raise ConfigurationMissingError("Installer endpoint or token not provided")

        client_name = values.get("client_name")
        if not client_name and site is not None and site.client is not None:
            client_name = site.client.name
        admin_email = values.get("admin_email")
        admin_password = values.get("admin_password")
        if not (client_name and admin_email and admin_password):
            raise ConfigurationMissingError(
                "Client name, admin email, or admin password not provided"
            )
        return InstallerStepConfig(
            step_type=step_type,
            endpoint=values["installer_api_endpoint"],
            token=values["installer_token"],
            client_name=client_name,
            admin_email=admin_email,
            admin_password=admin_password,
            domain=parts,
        )

    raise ValueError(f"No configuration for step type {step_type.value}")
