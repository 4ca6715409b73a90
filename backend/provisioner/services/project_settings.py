"""Project provider settings (cPanel, Cloudflare, installer credentials).

Settings are stored one ``entity_meta`` row per key, using the upper-case
names below, and read back as a flat dict keyed by the snake_case field
names of ``ProjectSettings``.  Reads are cached in Redis.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.config import settings
from provisioner.middleware.exceptions import ResourceNotFoundError
from provisioner.models.entity_meta import REL_PROJECT
from provisioner.models.project import Project
from provisioner.schemas.project import ProjectSettingsValidation, ProviderCheck
from provisioner.services.entity_meta import delete_meta, get_meta_map, set_meta
from provisioner.utils.cache import cached, invalidate_cache

logger = logging.getLogger(__name__)

SETTING_KEYS: dict[str, str] = {
    "cpanel_domain": "CPANEL_DOMAIN",
    "cpanel_username": "CPANEL_USERNAME",
    "cpanel_api_token": "CPANEL_API_TOKEN",
    "cpanel_subdomain_dir_path": "CPANEL_SUBDOMAIN_DIR_PATH",
    "cloudflare_username": "CLOUDFLARE_USERNAME",
    "cloudflare_api_key": "CLOUDFLARE_API_KEY",
    "cloudflare_zone_id": "CLOUDFLARE_ZONE_ID",
    "cloudflare_a_record_ip": "CLOUDFLARE_A_RECORD_IP",
    "installer_api_endpoint": "INSTALLER_API_ENDPOINT",
    "installer_token": "INSTALLER_TOKEN",
}

REQUIRED_BY_PROVIDER: dict[str, tuple[str, ...]] = {
    "cpanel": ("cpanel_domain", "cpanel_username", "cpanel_api_token"),
    "cloudflare": (
        "cloudflare_username",
        "cloudflare_api_key",
        "cloudflare_zone_id",
        "cloudflare_a_record_ip",
    ),
    "installer": ("installer_api_endpoint", "installer_token"),
}


def _cache_key(db, project_id: int) -> str:
    return f"project_settings:{project_id}"


async def ensure_project(db: AsyncSession, project_id: int) -> Project:
    project = await db.get(Project, project_id)
    if not project:
        raise ResourceNotFoundError("Project", project_id)
    return project


@cached(ttl=settings.project_settings_cache_ttl, prefix="project_settings", key_builder=_cache_key)
async def get_project_settings(db: AsyncSession, project_id: int) -> dict:
    """Return every known setting for the project; unset keys are None."""
    stored = await get_meta_map(db, REL_PROJECT, project_id)
    return {field: stored.get(meta_name) for field, meta_name in SETTING_KEYS.items()}


async def update_project_settings(db: AsyncSession, project_id: int, values: dict) -> dict:
    """Upsert the supplied settings; None or "" deletes the stored value."""
    await ensure_project(db, project_id)

    for field, value in values.items():
        meta_name = SETTING_KEYS.get(field)
        if meta_name is None:
            continue
        if value is None or value == "":
            await delete_meta(db, REL_PROJECT, project_id, meta_name)
        else:
            await set_meta(db, REL_PROJECT, project_id, meta_name, str(value))

    await db.flush()
    await invalidate_cache(_cache_key(db, project_id))
    logger.info("Updated %d provider settings for project %s", len(values), project_id)

    stored = await get_meta_map(db, REL_PROJECT, project_id)
    return {field: stored.get(meta_name) for field, meta_name in SETTING_KEYS.items()}


def missing_settings(values: dict, provider: str) -> list[str]:
    return [field for field in REQUIRED_BY_PROVIDER[provider] if not values.get(field)]


def validate_project_settings(values: dict) -> ProjectSettingsValidation:
    checks = {}
    for provider in REQUIRED_BY_PROVIDER:
        missing = missing_settings(values, provider)
        checks[provider] = ProviderCheck(configured=not missing, missing=missing)
    return ProjectSettingsValidation(
        **checks,
        is_complete=all(c.configured for c in checks.values()),
    )
