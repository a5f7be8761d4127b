"""Integration tests: scheduler endpoints and their shared-secret authentication."""

import pytest
from unittest.mock import AsyncMock, patch
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.main import app
from app.services.notification_queue import DrainResult, NotificationQueueService
from app.services.scheduled_triggers import TriggerResult


@pytest.fixture
def fake_db():
    """Replace the request session; these tests never reach storage."""
    db = AsyncMock(spec=AsyncSession)

    async def override():
        yield db

    app.dependency_overrides[deps.get_db] = override
    yield db
    app.dependency_overrides.pop(deps.get_db, None)


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/cron/overdue-check", "/cron/billing-reminders", "/cron/lease-expiry", "/cron/process-queue"])
async def test_cron_requires_secret(async_client: AsyncClient, api_base: str, cron_secret: str, fake_db, path):
    resp = await async_client.post(f"{api_base}{path}")
    assert resp.status_code == 401

    resp = await async_client.post(f"{api_base}{path}", headers={"Authorization": "Bearer wrong"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_cron_rejects_everything_without_configured_secret(
    async_client: AsyncClient, api_base: str, fake_db, monkeypatch
):
    monkeypatch.setattr("app.core.security.settings.CRON_SECRET", "")
    resp = await async_client.post(f"{api_base}/cron/overdue-check", headers={"Authorization": "Bearer "})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_overdue_check_runs_with_secret(async_client: AsyncClient, api_base: str, cron_secret: str, fake_db):
    with patch("app.services.scheduled_triggers.run_overdue_sweep", new_callable=AsyncMock) as mock_sweep:
        mock_sweep.return_value = TriggerResult(scanned=3, updated=2, queued=4)
        resp = await async_client.post(
            f"{api_base}/cron/overdue-check",
            headers={"Authorization": f"Bearer {cron_secret}"},
        )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["data"] == {"scanned": 3, "updated": 2, "queued": 4, "skipped": 0, "errors": 0}
    mock_sweep.assert_awaited_once_with(fake_db)


@pytest.mark.asyncio
async def test_billing_reminders_runs_with_secret(async_client: AsyncClient, api_base: str, cron_secret: str, fake_db):
    with patch("app.services.scheduled_triggers.run_billing_reminders", new_callable=AsyncMock) as mock_job:
        mock_job.return_value = TriggerResult(scanned=1, queued=1)
        resp = await async_client.post(
            f"{api_base}/cron/billing-reminders",
            headers={"Authorization": f"Bearer {cron_secret}"},
        )

    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["queued"] == 1


@pytest.mark.asyncio
async def test_process_queue_runs_with_secret(async_client: AsyncClient, api_base: str, cron_secret: str, fake_db):
    with patch.object(NotificationQueueService, "drain", new_callable=AsyncMock) as mock_drain:
        mock_drain.return_value = DrainResult(processed=2, sent=1, retried=1)
        resp = await async_client.post(
            f"{api_base}/cron/process-queue",
            headers={"Authorization": f"Bearer {cron_secret}"},
        )

    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["processed"] == 2
    assert data["sent"] == 1
    assert data["retried"] == 1


@pytest.mark.asyncio
async def test_staff_endpoints_require_token(async_client: AsyncClient, api_base: str, fake_db):
    resp = await async_client.get(f"{api_base}/billings")
    assert resp.status_code in (401, 403)

    resp = await async_client.post(
        f"{api_base}/billings/generate",
        headers={"Authorization": "Bearer not-a-jwt"},
        json={"billing_month": "2026-03", "issue_date": "2026-03-01", "due_date": "2026-03-25"},
    )
    assert resp.status_code == 401
