"""
Export of discovery results to CSV and JSON.
"""
import csv
import io
import json
from typing import Dict, Sequence

from pano_discovery.core.condition_analysis import PENDING_REPORT
from pano_discovery.models import AnalysisOutcome, ConditionReport, PanoramaRecord

CSV_HEADERS = ["ID", "Name", "Latitude", "Longitude", "Condition", "Confidence", "Issues", "Recommendation",
               "Estimated Value"]


def _reports_by_id(analyses: Sequence[AnalysisOutcome]) -> Dict[int, ConditionReport]:
    return {outcome.sequence_id: outcome.report for outcome in analyses
            if outcome.status == "success" and outcome.report is not None}


def to_rows(records: Sequence[PanoramaRecord], analyses: Sequence[AnalysisOutcome] = ()) -> list:
    """One dict per record, using the pending placeholder where no report exists."""
    reports = _reports_by_id(analyses)
    rows = []
    for record in records:
        report = reports.get(record.sequence_id, PENDING_REPORT)
        rows.append({
            "id": record.sequence_id,
            "name": f"Panorama {record.sequence_id}",
            "coordinates": [record.lon, record.lat],
            "panoramaDate": record.captured_at,
            "condition": report.condition,
            "confidence": report.confidence,
            "issues": list(report.issues),
            "recommendation": report.recommendation,
            "estimatedValue": report.estimated_value,
            "analysisStatus": "complete" if record.sequence_id in reports else "pending",
        })
    return rows


def to_json(records: Sequence[PanoramaRecord], analyses: Sequence[AnalysisOutcome] = ()) -> str:
    return json.dumps(to_rows(records, analyses), indent=2)


def to_csv(records: Sequence[PanoramaRecord], analyses: Sequence[AnalysisOutcome] = ()) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for row in to_rows(records, analyses):
        writer.writerow([
            row["id"],
            row["name"],
            row["coordinates"][1],
            row["coordinates"][0],
            row["condition"],
            f"{row['confidence'] * 100:.1f}%",
            "; ".join(row["issues"]),
            row["recommendation"],
            row["estimatedValue"],
        ])
    return buffer.getvalue()
