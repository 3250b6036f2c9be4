"""
Tests for the FastAPI application wiring.

Root, metrics and validation error handling.
"""

from conftest import InMemoryEntitlementStore
from fastapi import FastAPI
from httpx import AsyncClient

from studio_access.api.dependencies import get_store


class TestServiceEndpoints:
    """Endpoints registered directly on the app."""

    async def test_root(self, app: FastAPI, async_client: AsyncClient):
        """Root reports the service name and version."""
        response = await async_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Studio Access API"
        assert data["status"] == "running"

    async def test_metrics_exposed(self, app: FastAPI, async_client: AsyncClient):
        """Prometheus metrics are served as text."""
        await async_client.get("/")

        response = await async_client.get("/metrics")

        assert response.status_code == 200
        assert "studio_access_http_requests_total" in response.text


class TestValidationErrors:
    """Request validation error handler."""

    async def test_bad_uuid_sanitized(
        self, app: FastAPI, async_client: AsyncClient, store: InMemoryEntitlementStore
    ):
        """Validation errors come back as type/loc/msg entries."""
        app.dependency_overrides[get_store] = lambda: store

        response = await async_client.get("/v1/uploads/not-a-uuid/access")

        assert response.status_code == 422
        errors = response.json()["detail"]
        assert errors
        assert set(errors[0]) >= {"type", "loc", "msg"}
        assert errors[0]["loc"] == ["path", "content_id"]
