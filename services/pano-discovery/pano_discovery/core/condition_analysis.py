"""
Condition analysis client - Sends each discovered panorama to the AI analysis service.

One call per panorama. A failed call is reported on that panorama only and
never touches discovery state.
"""
import asyncio
import logging
import math
from typing import List, Optional, Sequence
from urllib.parse import urlencode

import requests
from pydantic import ValidationError

from pano_discovery.config import (
    ANALYSIS_MAX_WORKERS,
    ANALYSIS_SERVICE_URL,
    ANALYSIS_TIMEOUT_SECONDS,
    PANORAMA_IMAGE_MAX_SIZE,
    PANORAMA_IMAGE_URL,
    PANORAMA_MAX_FOV,
    PANORAMA_MIN_FOV,
)
from pano_discovery.models import AnalysisOutcome, ConditionReport, PanoramaRecord

logger = logging.getLogger(__name__)

PENDING_REPORT = ConditionReport(
    condition="pending",
    confidence=0,
    issues=["Analysis pending..."],
    recommendation="AI analysis will run in background",
    estimated_value=0,
)


def build_panorama_image_url(lon: float, lat: float, api_key: str, yaw: float = 0, pitch: float = 0,
                             fov: float = 90, width: int = 1024, height: int = 800) -> str:
    """
    Build a static panorama image URL. Angles are given in degrees.

    The image API caps both dimensions at 1024 px and only accepts a field of
    view between ~pi/20 and just under pi/2 radians.
    """
    width = min(width, PANORAMA_IMAGE_MAX_SIZE)
    height = min(height, PANORAMA_IMAGE_MAX_SIZE)
    safe_fov = min(max(math.radians(fov), PANORAMA_MIN_FOV), PANORAMA_MAX_FOV)

    params = {
        "lon": lon,
        "lat": lat,
        "width": width,
        "height": height,
        "yaw": f"{math.radians(yaw):.4f}",
        "pitch": f"{math.radians(pitch):.4f}",
        "fov": f"{safe_fov:.4f}",
        "apikey": api_key,
    }
    return f"{PANORAMA_IMAGE_URL}?{urlencode(params)}"


def analyze_panorama(record: PanoramaRecord, image_url: str, service_url: str = ANALYSIS_SERVICE_URL,
                     timeout: float = ANALYSIS_TIMEOUT_SECONDS) -> AnalysisOutcome:
    """
    Request a condition report for one panorama.

    Returns:
        AnalysisOutcome with status "success" and a report, or "failure" and a reason
    """
    payload = {"imageUrl": image_url, "coordinates": [record.lon, record.lat]}
    try:
        response = requests.post(service_url, json=payload, timeout=timeout)
    except requests.RequestException as e:
        logger.error(f"Analysis request failed for panorama {record.sequence_id}: {str(e)}")
        return AnalysisOutcome(sequence_id=record.sequence_id, status="failure", reason=str(e))

    try:
        data = response.json()
    except ValueError:
        data = None

    if response.status_code != 200 or not isinstance(data, dict) or "error" in data:
        reason = data.get("error") if isinstance(data, dict) and data.get("error") else f"HTTP {response.status_code}"
        logger.warning(f"Analysis failed for panorama {record.sequence_id}: {reason}")
        return AnalysisOutcome(sequence_id=record.sequence_id, status="failure", reason=str(reason))

    try:
        report = ConditionReport.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Unreadable analysis report for panorama {record.sequence_id}: {str(e)}")
        return AnalysisOutcome(sequence_id=record.sequence_id, status="failure", reason="Analysis parsing failed")

    logger.info(f"Panorama {record.sequence_id} analysed: {report.condition} ({report.confidence:.2f})")
    return AnalysisOutcome(sequence_id=record.sequence_id, status="success", report=report)


async def analyze_panoramas(records: Sequence[PanoramaRecord], api_key: Optional[str],
                            service_url: str = ANALYSIS_SERVICE_URL, yaw: float = 0, pitch: float = 0,
                            fov: float = 90, max_workers: int = ANALYSIS_MAX_WORKERS) -> List[AnalysisOutcome]:
    """Analyse every record in worker threads. Outcomes are returned in record order."""
    semaphore = asyncio.Semaphore(max_workers)

    async def analyze_one(record: PanoramaRecord) -> AnalysisOutcome:
        image_url = build_panorama_image_url(record.lon, record.lat, api_key or "", yaw=yaw, pitch=pitch, fov=fov)
        async with semaphore:
            try:
                return await asyncio.to_thread(analyze_panorama, record, image_url, service_url)
            except Exception as e:
                logger.error(f"Error analysing panorama {record.sequence_id}: {str(e)}")
                return AnalysisOutcome(sequence_id=record.sequence_id, status="failure", reason=str(e))

    logger.info(f"Starting condition analysis for {len(records)} panoramas")
    return list(await asyncio.gather(*(analyze_one(record) for record in records)))
