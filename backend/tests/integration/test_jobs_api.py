"""Integration tests for health and job run endpoints."""
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.jobs import JobRunSummary
from services.job_runs import JobRunRepository
from tests.conftest import NOW

pytestmark = pytest.mark.asyncio


@pytest.fixture
async def stored_runs(db_session: AsyncSession):
    """Two sweep runs (the latest with a failure) and one trend run."""
    repository = JobRunRepository(db_session)

    clean = JobRunSummary(job_name="period_sweep", started_at=NOW - timedelta(hours=6))
    clean.record_success()
    await repository.save(clean.finish())

    failed = JobRunSummary(job_name="period_sweep", started_at=NOW)
    failed.record_success()
    failed.record_failure("user_b", RuntimeError("connection reset"))
    await repository.save(failed.finish())

    trend = JobRunSummary(job_name="trend_recomputation", started_at=NOW - timedelta(hours=1))
    await repository.save(trend.finish())

    await db_session.commit()


class TestHealth:
    """Tests for the health endpoints."""

    async def test_health(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    async def test_health_db(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/db")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    async def test_liveness(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/live")

        assert response.status_code == 200
        assert response.json() == {"alive": True}


class TestListJobRuns:
    """Tests for GET /jobs/runs endpoint."""

    async def test_empty(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/jobs/runs")

        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0}

    async def test_latest_first(self, async_client: AsyncClient, stored_runs):
        response = await async_client.get("/api/v1/jobs/runs")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert [item["job_name"] for item in data["items"]] == [
            "period_sweep",
            "trend_recomputation",
            "period_sweep",
        ]

        latest = data["items"][0]
        assert latest["succeeded"] == 1
        assert latest["failed"] == 1
        assert latest["failures"] == [{"entity_key": "user_b", "error": "connection reset"}]

    async def test_filter_by_job_name(self, async_client: AsyncClient, stored_runs):
        response = await async_client.get(
            "/api/v1/jobs/runs", params={"job_name": "period_sweep", "limit": 1}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["failed"] == 1

    @pytest.mark.parametrize("limit", [0, 101])
    async def test_limit_out_of_range(self, async_client: AsyncClient, limit: int):
        response = await async_client.get("/api/v1/jobs/runs", params={"limit": limit})

        assert response.status_code == 422
