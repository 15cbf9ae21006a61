import pytest
from httpx import ASGITransport, AsyncClient

from rcn_api.core.settings import settings


@pytest.mark.asyncio
async def test_readyz_reports_component_statuses(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    components = payload["components"]
    assert components["database"]["status"] == "ready"
    assert components["ledger_scheduler"]["status"] == "disabled"
    assert components["token_settlement"]["status"] == "disabled"
    assert payload["scheduler"] is None


@pytest.mark.asyncio
async def test_root_healthz_reports_version(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/healthz")
        scoped = await client.get("/api/v1/healthz")

    assert response.json() == {"status": "ok", "environment": settings.environment, "version": "0.1.0"}
    assert scoped.json() == {"status": "ok"}
