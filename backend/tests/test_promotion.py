"""Draft promotion and domain availability."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import CLIENT_ID, PROJECT_ID, create_installation, fetch_steps
from provisioner.database import async_session
from provisioner.models import InstallStep, RunStatus, Site, SiteStatus, StepRun, StepStatus, StepType
from provisioner.models.install_step import PROVISIONING_STEPS
from provisioner.services.promotion import reset_and_fill_steps

PROVISIONING = [t.value for t in PROVISIONING_STEPS]


async def new_draft(client, domain="test.example.com") -> int:
    resp = await client.post("/api/installations/session", json={
        "project_id": PROJECT_ID,
        "client_id": CLIENT_ID,
        "domain": domain,
        "admin_email": "admin@example.com",
        "admin_password": "s3cret",
    })
    return resp.json()["session_id"]


async def promote_via_api(client, domain="test.example.com", session_id=None):
    body = {"client_id": CLIENT_ID, "project_id": PROJECT_ID, "domain": domain}
    if session_id is not None:
        body["session_id"] = session_id
    return await client.post("/api/installations", json=body)


async def update_step(site_id: int, step_type: StepType, **values):
    async with async_session() as session:
        step = (
            await session.execute(
                select(InstallStep).where(
                    InstallStep.site_id == site_id, InstallStep.step_type == step_type
                )
            )
        ).scalar_one()
        for key, value in values.items():
            setattr(step, key, value)
        await session.commit()
        return step.id


@pytest.mark.api
@pytest.mark.asyncio
class TestPromote:
    """Promoting drafts into installations."""

    async def test_promote_draft_creates_ledger(self, client):
        """Promotion creates one PENDING row per provisioning step."""
        session_id = await new_draft(client)

        resp = await promote_via_api(client, session_id=session_id)

        assert resp.status_code == 201
        body = resp.json()
        assert body["id"] == session_id
        assert body["status"] == "PENDING"
        assert body["domain"] == "test.example.com"
        assert body["client"]["name"] == "Acme Ltd"
        assert [s["step_type"] for s in body["steps"]] == PROVISIONING
        assert all(s["status"] == "PENDING" for s in body["steps"])

    async def test_promotion_keeps_draft_step(self, client):
        """The draft step survives promotion until finalize."""
        session_id = await new_draft(client)
        await promote_via_api(client, session_id=session_id)

        steps = await fetch_steps(session_id)
        assert "PRE_INSTALLATION" in steps
        assert steps["PRE_INSTALLATION"].step_data["domain"] == "test.example.com"
        assert steps["PRE_INSTALLATION"].step_data["admin_password"] == "s3cret"

    async def test_promote_twice_keeps_one_row_per_type(self, client):
        """A second promotion does not duplicate steps."""
        session_id = await new_draft(client)
        await promote_via_api(client, session_id=session_id)
        resp = await promote_via_api(client, session_id=session_id)

        assert resp.status_code == 201
        steps = await fetch_steps(session_id)
        assert sorted(steps) == sorted(PROVISIONING + ["PRE_INSTALLATION"])
        async with async_session() as session:
            rows = (
                await session.execute(select(InstallStep).where(InstallStep.site_id == session_id))
            ).scalars().all()
        assert len(rows) == 5

    async def test_reentry_resets_failed_and_keeps_success(self, client):
        """Re-entry resets FAILED steps and leaves SUCCESS alone."""
        session_id = await new_draft(client)
        await promote_via_api(client, session_id=session_id)
        await update_step(session_id, StepType.CPANEL_ENTRY, status=StepStatus.SUCCESS)
        await update_step(
            session_id, StepType.CLOUDFLARE_ENTRY, status=StepStatus.FAILED, error_msg="zone not found"
        )
        before = (await fetch_steps(session_id))["CPANEL_ENTRY"]

        await promote_via_api(client, session_id=session_id)

        steps = await fetch_steps(session_id)
        assert steps["CPANEL_ENTRY"].status == StepStatus.SUCCESS
        assert steps["CPANEL_ENTRY"].updated_at == before.updated_at
        assert steps["CLOUDFLARE_ENTRY"].status == StepStatus.PENDING
        assert steps["CLOUDFLARE_ENTRY"].error_msg is None

    async def test_domain_taken_by_other_installation(self, client, db_session):
        """A domain owned by another installation is a 409."""
        await create_installation(db_session, "taken.example.com")
        session_id = await new_draft(client, "taken.example.com")

        resp = await promote_via_api(client, "taken.example.com", session_id=session_id)

        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "DOMAIN_UNAVAILABLE"
        assert error["details"]["existing_site"]["domain"] == "taken.example.com"

    async def test_promote_without_draft_creates_site(self, client):
        """Promotion with no draft creates the site directly."""
        resp = await promote_via_api(client, "fresh.example.com")

        assert resp.status_code == 201
        body = resp.json()
        assert len(body["steps"]) == 4
        assert await fetch_steps(body["id"]) != {}

    async def test_promote_without_draft_reuses_existing_site(self, client):
        """An existing site for the domain is reused."""
        first = (await promote_via_api(client, "reuse.example.com")).json()
        await client.patch(f"/api/sites/{first['id']}/status", json={"status": "FAILED"})
        await update_step(first["id"], StepType.DB_CREATION, status=StepStatus.FAILED, error_msg="x")

        resp = await promote_via_api(client, "reuse.example.com")

        body = resp.json()
        assert body["id"] == first["id"]
        assert body["status"] == "PENDING"
        db_step = next(s for s in body["steps"] if s["step_type"] == "DB_CREATION")
        assert db_step["status"] == "PENDING"

    async def test_domain_is_normalised(self, client):
        """Domains are stored lowercased and trimmed."""
        resp = await promote_via_api(client, "Shop.Example.COM.")
        assert resp.status_code == 201
        assert resp.json()["domain"] == "shop.example.com"

    async def test_invalid_domain_rejected(self, client):
        resp = await promote_via_api(client, "not a domain")
        assert resp.status_code == 422

    async def test_unknown_client_404(self, client):
        resp = await client.post("/api/installations", json={
            "client_id": 999, "project_id": PROJECT_ID, "domain": "x.example.com",
        })
        assert resp.status_code == 404


@pytest.mark.unit
class TestResetRule:
    """Re-entry reset on unsaved step rows."""

    def _site(self, status, runs=()):
        site = Site(project_id=PROJECT_ID, domain="test.example.com", status=SiteStatus.PENDING)
        step = InstallStep(step_type=StepType.CPANEL_ENTRY, status=status, error_msg="old")
        step.runs.extend(runs)
        site.steps.append(step)
        return site, step

    def test_missing_steps_are_appended(self):
        """Step types not yet present are added as PENDING."""
        site, _ = self._site(StepStatus.SUCCESS)
        created = reset_and_fill_steps(site)
        assert [s.step_type.value for s in created] == [t for t in PROVISIONING if t != "CPANEL_ENTRY"]
        assert len(site.steps) == 4

    def test_live_in_progress_step_is_left_alone(self):
        """A running step with a live lease is kept."""
        now = datetime.utcnow()
        run = StepRun(attempt=1, status=RunStatus.RUNNING, lease_expires_at=now + timedelta(minutes=5))
        site, step = self._site(StepStatus.IN_PROGRESS, [run])

        reset_and_fill_steps(site, now)

        assert step.status == StepStatus.IN_PROGRESS
        assert run.status == RunStatus.RUNNING

    def test_stale_in_progress_step_is_reset(self):
        """A running step with a lapsed lease is reset and its run expired."""
        now = datetime.utcnow()
        run = StepRun(attempt=1, status=RunStatus.RUNNING, lease_expires_at=now - timedelta(minutes=5))
        site, step = self._site(StepStatus.IN_PROGRESS, [run])

        reset_and_fill_steps(site, now)

        assert step.status == StepStatus.PENDING
        assert step.error_msg is None
        assert run.status == RunStatus.EXPIRED
        assert run.error_msg == "Reset on re-entry"


@pytest.mark.api
@pytest.mark.asyncio
class TestCheckDomain:
    """Domain availability."""

    async def test_free_domain(self, client):
        resp = await client.post("/api/sites/check-domain", json={"domain": "free.example.com"})
        assert resp.status_code == 200
        assert resp.json()["available"] is True

    async def test_taken_domain(self, client, db_session):
        site_id = await create_installation(db_session, "taken.example.com")

        resp = await client.post("/api/sites/check-domain", json={"domain": "taken.example.com"})

        body = resp.json()
        assert body["available"] is False
        assert body["existing_site"]["id"] == site_id
        assert body["existing_site"]["client"]["name"] == "Acme Ltd"

    async def test_excluded_site_is_ignored(self, client, db_session):
        """The excluded site does not count as a holder."""
        site_id = await create_installation(db_session, "taken.example.com")

        resp = await client.post("/api/sites/check-domain", json={
            "domain": "taken.example.com", "exclude_site_id": site_id,
        })

        assert resp.json()["available"] is True

    async def test_unpromoted_draft_does_not_hold_domain(self, client):
        """Drafts never hold a domain."""
        await new_draft(client, "draft.example.com")

        resp = await client.post("/api/sites/check-domain", json={"domain": "draft.example.com"})

        assert resp.json()["available"] is True
