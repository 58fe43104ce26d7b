from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from portal.common import ServiceSettings, dispose_engines
from portal.operations_service.app.main import SERVICE_NAME, create_app


@pytest.mark.asyncio
async def test_health_endpoint_returns_ok(tmp_path) -> None:
    settings = ServiceSettings(
        enable_metrics=False,
        enable_tracing=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'health.db'}",
    )
    app = create_app(settings)
    assert app.title == SERVICE_NAME

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    await dispose_engines()


@pytest.mark.asyncio
async def test_metrics_endpoint_is_exposed_when_enabled(tmp_path) -> None:
    settings = ServiceSettings(
        app_name="Metrics Test Service",
        enable_metrics=True,
        enable_tracing=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'metrics.db'}",
    )
    app = create_app(settings)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            await client.get("/health")
            response = await client.get("/metrics")

    assert response.status_code == 200
    assert "portal_workorder_created_total" in response.text
    await dispose_engines()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
