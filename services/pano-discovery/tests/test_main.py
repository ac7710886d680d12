import json
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from pano_discovery.core.probe_client import RateLimiter
from pano_discovery.main import app, sessions

from conftest import SMALL_SQUARE, FakeTransport, pano_at_query

client = TestClient(app)


@pytest.fixture
def fake_backend():
    transport = FakeTransport(pano_at_query)
    with patch("pano_discovery.main.create_transport", return_value=transport), \
         patch("pano_discovery.main.probe_limiter", RateLimiter(None)):
        yield transport


def discovery_request(session_id, **overrides):
    body = {"polygon": [list(vertex) for vertex in SMALL_SQUARE], "session_id": session_id}
    body.update(overrides)
    return body


def test_health_endpoint():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_discover_endpoint(fake_backend):
    response = client.post("/discover", json=discovery_request("test-discover"))

    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "done"
    assert data["counts"]["tested"] == len(fake_backend.calls)
    assert data["counts"]["accepted"] == len(data["records"]) > 0
    assert data["records"][0]["sequence_id"] == 1
    assert data["cap_reached"] is False


def test_discover_reports_truncated_grid(fake_backend):
    response = client.post("/discover", json=discovery_request("test-cap", max_points=5))

    assert response.status_code == 200
    data = response.json()
    assert data["cap_reached"] is True
    assert data["counts"]["tested"] == 5
    assert data["warnings"]


def test_degenerate_polygon_is_rejected(fake_backend):
    response = client.post("/discover", json=discovery_request("test-degenerate", polygon=[[14.40, 50.08], [14.41, 50.09]]))

    assert response.status_code == 400
    assert "at least 3 vertices" in response.json()["detail"]
    assert fake_backend.calls == []


def test_missing_credential_is_reported():
    transport = FakeTransport(pano_at_query, api_key=None)
    with patch("pano_discovery.main.create_transport", return_value=transport):
        response = client.post("/discover", json=discovery_request("test-credential"))

    assert response.status_code == 503
    assert "MAPY_API_KEY" in response.json()["detail"]
    assert transport.calls == []


def test_invalid_request():
    response = client.post("/discover", json={"polygon": [[14.40, 50.08]] * 3, "spacing_meters": -1})
    assert response.status_code == 422


def test_discover_stream(fake_backend):
    response = client.post("/discover/stream", json=discovery_request("test-stream"))

    assert response.status_code == 200
    updates = [json.loads(line) for line in response.text.splitlines() if line]
    assert updates[0]["state"] == "gridding"
    assert updates[-1]["state"] == "done"
    assert updates[-1]["percent"] == 100
    assert updates[-1]["result"]["counts"]["accepted"] > 0


def test_discover_stream_missing_credential():
    transport = FakeTransport(pano_at_query, api_key=None)
    with patch("pano_discovery.main.create_transport", return_value=transport):
        response = client.post("/discover/stream", json=discovery_request("test-stream-credential"))

    assert response.status_code == 503


def test_reset_session(fake_backend):
    client.post("/discover", json=discovery_request("test-reset"))
    session = sessions.get("test-reset")
    assert len(session.cache) > 0

    response = client.post("/sessions/test-reset/reset")

    assert response.status_code == 200
    assert response.json() == {"session_id": "test-reset", "discarded": True}
    assert "test-reset" not in sessions
    assert len(session.cache) == 0
    assert len(session.dedup) == 0

    response = client.post("/sessions/test-reset/reset")
    assert response.json()["discarded"] is False
    assert "test-reset" not in sessions


def test_analyze_endpoint():
    record = {"sequence_id": 1, "lon": 14.405, "lat": 50.085, "dedup_key": "50.085000_14.405000"}
    mock_response = MagicMock()
    mock_response.status_code = 200
    mock_response.json.return_value = {"condition": "good", "confidence": 0.9, "issues": []}

    with patch("requests.post", return_value=mock_response):
        response = client.post("/analyze", json={"records": [record]})

    assert response.status_code == 200
    data = response.json()
    assert data[0]["status"] == "success"
    assert data[0]["report"]["condition"] == "good"


def test_export_csv():
    record = {"sequence_id": 1, "lon": 14.405, "lat": 50.085, "dedup_key": "50.085000_14.405000"}
    response = client.post("/export/csv", json={"records": [record]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "property-analysis-results.csv" in response.headers["content-disposition"]
    assert response.text.splitlines()[0].startswith("ID,Name,Latitude,Longitude")


def test_export_rejects_empty_and_unknown_formats():
    assert client.post("/export/json", json={"records": []}).status_code == 400
    record = {"sequence_id": 1, "lon": 14.405, "lat": 50.085, "dedup_key": "50.085000_14.405000"}
    assert client.post("/export/xml", json={"records": [record]}).status_code == 400
