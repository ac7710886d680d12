"""
Panorama Discovery Service - Finds street-level panoramas inside a user-drawn polygon.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import List

import aiohttp
from fastapi import FastAPI, HTTPException, Response
from fastapi.responses import StreamingResponse

from pano_discovery.config import (
    LOG_DIR,
    LOG_LEVEL,
    LOG_SESSION_FORMAT,
    MAPY_API_KEY,
    PANORAMA_EXISTS_URL,
    PROBE_BACKEND,
    PROBE_RATE_LIMIT_PER_SECOND,
)
from pano_discovery.core.condition_analysis import analyze_panoramas
from pano_discovery.core.export import to_csv, to_json
from pano_discovery.core.panorama_discovery import discover, run_discovery
from pano_discovery.core.probe_client import PanoramaProbeClient, RateLimiter, create_transport
from pano_discovery.core.session import SearchSession, SessionStore
from pano_discovery.errors import DiscoveryError, InvalidPolygon, MissingCredential
from pano_discovery.models import (
    AnalysisOutcome,
    AnalysisRequest,
    DiscoveryRequest,
    DiscoveryResult,
    ExportRequest,
)

# Configure logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create session-specific log file
session_timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
log_file = Path(LOG_DIR) / LOG_SESSION_FORMAT.format(timestamp=session_timestamp)
log_file.parent.mkdir(parents=True, exist_ok=True)

# Configure file handler with same format as terminal
file_handler = logging.FileHandler(log_file)
file_handler.setLevel(LOG_LEVEL)
file_handler.setFormatter(logging.Formatter('%(message)s'))

# Add file handler to root logger
logging.getLogger().addHandler(file_handler)

logger.info(f"Session started - Log file: {log_file}")

# Search state per client session, and one limiter pacing every live probe
sessions = SessionStore()
probe_limiter = RateLimiter(PROBE_RATE_LIMIT_PER_SECOND)

EXPORT_MEDIA_TYPES = {"csv": "text/csv", "json": "application/json"}


def build_probe_client(session: SearchSession, http: aiohttp.ClientSession) -> PanoramaProbeClient:
    """Bind a probe client to the session's cache and the configured backend."""
    transport = create_transport(PROBE_BACKEND, http, api_key=MAPY_API_KEY, url=PANORAMA_EXISTS_URL)
    return PanoramaProbeClient(transport, session.cache, limiter=probe_limiter)


def discovery_http_error(error: DiscoveryError) -> HTTPException:
    if isinstance(error, InvalidPolygon):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, MissingCredential):
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


app = FastAPI(
    title="Panorama Discovery Service",
    description="Service for finding street-level panoramas inside a polygon",
    version="1.0.0"
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.utcnow()}


@app.post("/discover", response_model=DiscoveryResult)
async def discover_panoramas(request: DiscoveryRequest):
    """
    Find all panoramas inside the polygon and return them once every probe has settled.
    """
    session = sessions.get(request.session_id)
    try:
        async with aiohttp.ClientSession() as http:
            client = build_probe_client(session, http)
            return await run_discovery(
                request.polygon,
                client,
                session,
                spacing_meters=request.spacing_meters,
                max_points=request.max_points,
                search_radius_meters=request.search_radius_meters,
            )
    except DiscoveryError as e:
        raise discovery_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error discovering panoramas: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/discover/stream")
async def discover_panoramas_stream(request: DiscoveryRequest):
    """
    Same search as /discover, streamed as newline-delimited JSON progress updates.
    The last line carries the result.
    """
    session = sessions.get(request.session_id)
    http = aiohttp.ClientSession()
    client = build_probe_client(session, http)
    updates = discover(
        request.polygon,
        client,
        session,
        spacing_meters=request.spacing_meters,
        max_points=request.max_points,
        search_radius_meters=request.search_radius_meters,
    )

    # Pull the first update here so fatal errors become HTTP errors, not a broken stream
    try:
        first = await updates.__anext__()
    except DiscoveryError as e:
        await http.close()
        raise discovery_http_error(e)
    except Exception as e:
        await http.close()
        logger.error(f"Error starting panorama stream: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    async def stream_updates():
        try:
            yield first.model_dump_json() + "\n"
            async for update in updates:
                yield update.model_dump_json() + "\n"
        finally:
            await updates.aclose()
            await http.close()

    return StreamingResponse(stream_updates(), media_type="application/x-ndjson")


@app.post("/sessions/{session_id}/reset")
async def reset_session(session_id: str):
    """Discard a session's cache and dedup state and invalidate any search in flight."""
    session = sessions.reset(session_id)
    return {"session_id": session_id, "discarded": session is not None}


@app.post("/analyze", response_model=List[AnalysisOutcome])
async def analyze(request: AnalysisRequest):
    """
    Run condition analysis once per panorama. Failures are reported per panorama.
    """
    return await analyze_panoramas(request.records, MAPY_API_KEY, yaw=request.yaw, pitch=request.pitch,
                                   fov=request.fov)


@app.post("/export/{fmt}")
async def export_results(fmt: str, request: ExportRequest):
    """Export a result set as CSV or JSON."""
    if fmt not in EXPORT_MEDIA_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {fmt}")
    if not request.records:
        raise HTTPException(status_code=400, detail="No analysis results to export")

    content = to_csv(request.records, request.analyses) if fmt == "csv" else to_json(request.records, request.analyses)
    return Response(
        content=content,
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="property-analysis-results.{fmt}"'},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
