"""Unit tests for the metrics API key dependency."""
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from pulse_core.api.auth import expected_api_key, require_api_key
from pulse_core.main import create_app
from pulse_core.metrics.cache import InMemoryCacheStore
from pulse_core.metrics.pipeline import MetricsPipeline


@pytest.mark.asyncio
async def test_matching_key_is_accepted(monkeypatch):
    monkeypatch.setenv("PULSE_API_KEY", "dash-key")

    assert await require_api_key("dash-key") == "dash-key"


@pytest.mark.asyncio
@pytest.mark.parametrize("presented", [None, "", "dash-key-2", "DASH-KEY"])
async def test_missing_or_wrong_key_is_401(monkeypatch, presented):
    monkeypatch.setenv("PULSE_API_KEY", "dash-key")

    with pytest.raises(HTTPException) as exc_info:
        await require_api_key(presented)

    assert exc_info.value.status_code == 401
    assert exc_info.value.headers == {"WWW-Authenticate": "API-Key"}


@pytest.mark.parametrize("configured", [None, "", "   "])
def test_unconfigured_server_key_is_503(monkeypatch, configured):
    if configured is None:
        monkeypatch.delenv("PULSE_API_KEY", raising=False)
    else:
        monkeypatch.setenv("PULSE_API_KEY", configured)

    with pytest.raises(HTTPException) as exc_info:
        expected_api_key()

    assert exc_info.value.status_code == 503


def test_metrics_route_closed_without_server_key(monkeypatch):
    monkeypatch.delenv("PULSE_API_KEY", raising=False)
    app = create_app(pipeline=MetricsPipeline([], InMemoryCacheStore()))

    with TestClient(app) as client:
        response = client.get(
            "/api/v1/metrics", headers={"X-PULSE-API-KEY": "anything"}
        )
        health = client.get("/health")

    assert response.status_code == 503
    assert "not configured" in response.json()["detail"]
    assert health.status_code == 200
