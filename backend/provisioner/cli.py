"""Management CLI for provisioning operations.

Usage:
    python -m provisioner.cli reap-stale-runs              # Expire lapsed step runs once
    python -m provisioner.cli check-providers <project_id>  # Test a project's provider credentials
"""

import asyncio
import sys

from provisioner.database import async_session
from provisioner.services.project_settings import (
    ensure_project,
    get_project_settings,
    missing_settings,
)
from provisioner.services.providers.base import ProviderError
from provisioner.services.providers.cloudflare import CloudflareAdapter
from provisioner.services.providers.cpanel import CpanelAdapter
from provisioner.services.providers.installer import InstallerAdapter
from provisioner.services.scheduler import run_reaper_once


def reap_stale_runs():
    count = asyncio.run(run_reaper_once())
    print(f"Reaped {count} stale step run(s)")


async def _check_providers(project_id: int) -> list[tuple[str, bool, str]]:
    async with async_session() as db:
        await ensure_project(db, project_id)
        values = await get_project_settings(db, project_id)

    adapters = {
        "cpanel": lambda: CpanelAdapter(
            values["cpanel_domain"], values["cpanel_username"], values["cpanel_api_token"]
        ),
        "cloudflare": lambda: CloudflareAdapter(
            values["cloudflare_username"], values["cloudflare_api_key"]
        ),
        "installer": lambda: InstallerAdapter(
            values["installer_api_endpoint"], values["installer_token"], timeout=30.0
        ),
    }

    report = []
    for provider, build in adapters.items():
        missing = missing_settings(values, provider)
        if missing:
            report.append((provider, False, f"missing {', '.join(missing)}"))
            continue
        try:
            async with build() as adapter:
                if provider == "cloudflare":
                    result = await adapter.test_connection(values["cloudflare_zone_id"])
                else:
                    result = await adapter.test_connection()
            report.append((provider, result.success, result.message or result.error or ""))
        except ProviderError as exc:
            report.append((provider, False, exc.message))
    return report


def check_providers(project_id: int):
    report = asyncio.run(_check_providers(project_id))
    for provider, ok, message in report:
        print(f"  {provider:<11} {'OK' if ok else 'FAILED'}  {message}")
    if not all(ok for _, ok, _ in report):
        sys.exit(1)


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "reap-stale-runs":
        reap_stale_runs()
    elif cmd == "check-providers" and len(sys.argv) > 2:
        check_providers(int(sys.argv[2]))
    else:
        print("Usage: python -m provisioner.cli [reap-stale-runs|check-providers <project_id>]")
