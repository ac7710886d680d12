import asyncio
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import requests

from pano_discovery.core.condition_analysis import analyze_panorama, analyze_panoramas, build_panorama_image_url
from pano_discovery.models import PanoramaRecord

RECORD = PanoramaRecord(sequence_id=3, lon=14.405, lat=50.085, captured_at="2023-05-01 12:00:00",
                        dedup_key="50.085000_14.405000")


def mock_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


def test_image_url_limits():
    url = build_panorama_image_url(14.405, 50.085, "secret", yaw=180, pitch=0, fov=170, width=4000, height=800)
    params = parse_qs(urlparse(url).query)

    assert url.startswith("https://api.mapy.cz/v1/static/pano?")
    assert params["width"] == ["1024"]
    assert params["height"] == ["800"]
    assert params["yaw"] == ["3.1416"]
    assert params["fov"] == ["1.5700"]
    assert params["apikey"] == ["secret"]


def test_image_url_minimum_fov():
    params = parse_qs(urlparse(build_panorama_image_url(14.405, 50.085, "k", fov=1)).query)
    assert params["fov"] == ["0.1570"]


def test_analyze_panorama_success():
    report = {
        "condition": "fair",
        "confidence": 0.8,
        "issues": ["peeling paint"],
        "recommendation": "Inspect roof",
        "acquisitionScore": 64,
        "estimatedRenovationCost": 250000,
        "coordinates": [14.405, 50.085],
    }
    with patch("requests.post", return_value=mock_response(payload=report)) as post:
        outcome = analyze_panorama(RECORD, "https://img.test/pano.jpg", service_url="https://ai.test/analyze")

    post.assert_called_once()
    assert post.call_args.kwargs["json"] == {"imageUrl": "https://img.test/pano.jpg", "coordinates": [14.405, 50.085]}
    assert outcome.status == "success"
    assert outcome.sequence_id == 3
    assert outcome.report.condition == "fair"
    assert outcome.report.acquisition_score == 64
    assert outcome.report.estimated_value == 250000


def test_analyze_panorama_error_payload():
    with patch("requests.post", return_value=mock_response(500, {"error": "AI analysis failed"})):
        outcome = analyze_panorama(RECORD, "https://img.test/pano.jpg")

    assert outcome.status == "failure"
    assert outcome.reason == "AI analysis failed"
    assert outcome.report is None


def test_analyze_panorama_unreadable_report():
    with patch("requests.post", return_value=mock_response(payload={"confidence": "very"})):
        outcome = analyze_panorama(RECORD, "https://img.test/pano.jpg")

    assert outcome.status == "failure"
    assert outcome.reason == "Analysis parsing failed"


def test_analyze_panorama_transport_failure():
    with patch("requests.post", side_effect=requests.ConnectionError("refused")):
        outcome = analyze_panorama(RECORD, "https://img.test/pano.jpg")

    assert outcome.status == "failure"
    assert "refused" in outcome.reason


def test_one_failure_does_not_affect_other_records():
    records = [RECORD.model_copy(update={"sequence_id": i, "lon": 14.400 + i / 1000}) for i in (1, 2, 3)]
    responses = {
        14.401: mock_response(payload={"condition": "good", "confidence": 0.9}),
        14.402: mock_response(502, None),
        14.403: mock_response(payload={"condition": "poor", "confidence": 0.7}),
    }

    def fake_post(url, json, timeout):
        return responses[round(json["coordinates"][0], 3)]

    with patch("requests.post", side_effect=fake_post):
        outcomes = asyncio.run(analyze_panoramas(records, "secret"))

    assert [o.sequence_id for o in outcomes] == [1, 2, 3]
    assert [o.status for o in outcomes] == ["success", "failure", "success"]
    assert outcomes[1].reason == "HTTP 502"
