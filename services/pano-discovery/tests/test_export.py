import csv
import io
import json

from pano_discovery.core.export import CSV_HEADERS, to_csv, to_json
from pano_discovery.models import AnalysisOutcome, ConditionReport, PanoramaRecord

RECORDS = [
    PanoramaRecord(sequence_id=1, lon=14.405, lat=50.085, captured_at="2023-05-01 12:00:00",
                   dedup_key="50.085000_14.405000"),
    PanoramaRecord(sequence_id=2, lon=14.406, lat=50.086, dedup_key="50.086000_14.406000"),
]

ANALYSES = [
    AnalysisOutcome(sequence_id=1, status="success", report=ConditionReport(
        condition="poor", confidence=0.725, issues=["broken windows", "overgrown garden, fence"],
        recommendation="Contact owner", estimated_value=1200000,
    )),
    AnalysisOutcome(sequence_id=2, status="failure", reason="timeout"),
]


def test_csv_export():
    rows = list(csv.reader(io.StringIO(to_csv(RECORDS, ANALYSES))))

    assert rows[0] == CSV_HEADERS
    assert rows[1] == ["1", "Panorama 1", "50.085", "14.405", "poor", "72.5%",
                       "broken windows; overgrown garden, fence", "Contact owner", "1200000.0"]
    # Failed analysis falls back to the pending placeholder
    assert rows[2][4:9] == ["pending", "0.0%", "Analysis pending...", "AI analysis will run in background", "0.0"]


def test_json_export():
    data = json.loads(to_json(RECORDS, ANALYSES))

    assert len(data) == 2
    assert data[0]["id"] == 1
    assert data[0]["coordinates"] == [14.405, 50.085]
    assert data[0]["analysisStatus"] == "complete"
    assert data[0]["panoramaDate"] == "2023-05-01 12:00:00"
    assert data[1]["analysisStatus"] == "pending"


def test_export_is_pure():
    assert to_csv(RECORDS) == to_csv(RECORDS)
    assert to_json([]) == "[]"
