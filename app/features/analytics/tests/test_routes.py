"""Tests for analytics API routes."""

import pytest

from app.core.config import get_settings
from app.core.exceptions import StoreError
from app.features.analytics.deps import get_aggregation_service


@pytest.fixture
def api(overrides, service, store):
    """Route the analytics endpoints to the in-memory service."""
    overrides[get_aggregation_service] = lambda: service
    store.add("revenue", 100, "2025-01-01T09:00:00")
    store.add("revenue", 200, "2025-01-02T18:30:00")
    store.add("sessions", 10, "2025-01-01T12:00:00")
    return store


# =============================================================================
# /analytics/metrics
# =============================================================================


@pytest.mark.asyncio
async def test_get_metrics_returns_pivoted_rows(client, api):
    response = await client.get(
        "/analytics/metrics",
        params={
            "start_date": "2025-01-01",
            "end_date": "2025-01-02",
            "metrics": "revenue, sessions",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["data"] == [
        {"date": "2025-01-01", "revenue": 100.0, "sessions": 10.0},
        {"date": "2025-01-02", "revenue": 200.0, "sessions": 0.0},
    ]
    assert body["meta"]["total"] == 2
    assert body["meta"]["granularity"] == "day"
    assert body["meta"]["source"] is None


@pytest.mark.asyncio
async def test_get_metrics_month_granularity(client, api):
    response = await client.get(
        "/analytics/metrics",
        params={
            "start_date": "2025-01-01",
            "end_date": "2025-01-31",
            "metrics": "revenue",
            "granularity": "month",
        },
    )

    assert response.json()["data"] == [{"date": "2025-01-01", "revenue": 300.0}]


@pytest.mark.asyncio
async def test_get_metrics_rejects_unknown_granularity(client, api):
    response = await client.get(
        "/analytics/metrics",
        params={
            "start_date": "2025-01-01",
            "end_date": "2025-01-02",
            "metrics": "revenue",
            "granularity": "fortnight",
        },
    )

    assert response.status_code == 422
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["errors"][0]["field"] == "granularity"


@pytest.mark.asyncio
async def test_get_metrics_requires_a_metric(client, api):
    response = await client.get(
        "/analytics/metrics",
        params={"start_date": "2025-01-01", "end_date": "2025-01-02", "metrics": " , "},
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert "At least one metric" in response.json()["detail"]


@pytest.mark.asyncio
async def test_get_metrics_rejects_inverted_range(client, api):
    response = await client.get(
        "/analytics/metrics",
        params={"start_date": "2025-01-02", "end_date": "2025-01-01", "metrics": "revenue"},
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_metrics_strict_mode_rejects_unknown_names(client, api, monkeypatch):
    monkeypatch.setenv("ANALYTICS_STRICT_METRIC_NAMES", "true")
    get_settings.cache_clear()
    try:
        response = await client.get(
            "/analytics/metrics",
            params={"start_date": "2025-01-01", "end_date": "2025-01-02", "metrics": "refunds"},
        )
    finally:
        get_settings.cache_clear()

    assert response.status_code == 422
    assert "refunds" in response.json()["detail"]


@pytest.mark.asyncio
async def test_store_failure_is_a_503_problem(client, api):
    api.failures["query_grouped"] = StoreError("Metric store query 'query_grouped' failed")

    response = await client.get(
        "/analytics/metrics",
        params={"start_date": "2025-01-01", "end_date": "2025-01-02", "metrics": "revenue"},
    )

    assert response.status_code == 503
    assert response.json()["code"] == "DATA_LAYER_ERROR"


# =============================================================================
# /analytics/kpi
# =============================================================================


@pytest.mark.asyncio
async def test_get_kpis_uses_camel_case_previous_value(client, api):
    response = await client.get(
        "/analytics/kpi",
        params={"start_date": "2025-01-02", "end_date": "2025-01-02"},
    )

    assert response.status_code == 200
    body = response.json()
    revenue = body["kpis"][0]
    assert revenue == {
        "id": "revenue",
        "label": "Revenue",
        "value": 200.0,
        "previousValue": 100.0,
        "format": "currency",
        "trend": [{"date": "2025-01-02", "value": 200.0}],
    }
    assert body["period"] == {
        "current": {"start": "2025-01-02", "end": "2025-01-02"},
        "previous": {"start": "2025-01-01", "end": "2025-01-01"},
    }


@pytest.mark.asyncio
async def test_get_kpis_requires_dates(client, api):
    response = await client.get("/analytics/kpi", params={"start_date": "2025-01-02"})

    assert response.status_code == 422
    assert response.json()["errors"][0]["field"] == "end_date"


# =============================================================================
# Supporting endpoints
# =============================================================================


@pytest.mark.asyncio
async def test_metric_stats(client, api):
    response = await client.get(
        "/analytics/metrics/revenue/stats",
        params={"start_date": "2025-01-01", "end_date": "2025-01-02"},
    )

    assert response.status_code == 200
    assert [bucket["sum"] for bucket in response.json()["buckets"]] == [100.0, 200.0]


@pytest.mark.asyncio
async def test_observations(client, api):
    response = await client.get(
        "/analytics/observations",
        params={"metric": "revenue", "start_date": "2025-01-01", "end_date": "2025-01-02"},
    )

    body = response.json()
    assert body["total"] == 2
    assert body["truncated"] is False
    assert [obs["value"] for obs in body["observations"]] == [100.0, 200.0]


@pytest.mark.asyncio
async def test_top_pages_limit_bounds(client, api):
    response = await client.get(
        "/analytics/top-pages",
        params={"start_date": "2025-01-01", "end_date": "2025-01-02", "limit": 0},
    )

    assert response.status_code == 422
