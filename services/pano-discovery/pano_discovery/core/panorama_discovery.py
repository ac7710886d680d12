"""
Panorama Discovery Module - Finds every panorama inside a polygon.

The polygon is sampled on a fixed-spacing grid, every grid point is probed
concurrently, and the hits are filtered to the polygon and deduplicated once
all probes have settled.
"""
import asyncio
import logging
from typing import AsyncIterator, List, Optional, Sequence, Union

from pano_discovery.config import (
    BATCH_DEADLINE_SECONDS,
    GRID_MAX_POINTS,
    GRID_SPACING_METERS,
    PROGRESS_EVERY,
    SEARCH_RADIUS_METERS,
)
from pano_discovery.core.dedup import dedup_key
from pano_discovery.core.geometry import GridPoint, Vertex, bounding_box, point_in_polygon, validate_polygon
from pano_discovery.core.grid import generate_grid
from pano_discovery.core.probe_client import PanoramaProbeClient, ProbeResult
from pano_discovery.core.session import SearchSession
from pano_discovery.errors import MissingCredential, ProbeError, ProbeNetworkError
from pano_discovery.models import (
    DiscoveryCounts,
    DiscoveryProgress,
    DiscoveryResult,
    DiscoveryState,
    PanoramaRecord,
)

logger = logging.getLogger(__name__)

Outcome = Union[ProbeResult, ProbeError]


def _progress(state: DiscoveryState, counts: DiscoveryCounts, total: int, percent: int,
              result: Optional[DiscoveryResult] = None) -> DiscoveryProgress:
    return DiscoveryProgress(
        state=state,
        tested=counts.tested,
        total=total,
        found_raw=counts.found_raw,
        accepted=counts.accepted,
        skipped=counts.skipped,
        percent=percent,
        result=result,
    )


def _count_outcome(counts: DiscoveryCounts, outcome: Outcome) -> None:
    counts.tested += 1
    if isinstance(outcome, ProbeResult):
        if outcome.exists:
            counts.found_raw += 1
        return
    counts.skipped += 1
    if outcome.kind == "timeout":
        counts.timeouts += 1
    elif outcome.kind == "malformed":
        counts.malformed += 1
    else:
        counts.network_errors += 1


async def _probe_point(client: PanoramaProbeClient, index: int, point: GridPoint, radius_meters: float):
    try:
        return index, await client.probe(point.lon, point.lat, radius_meters)
    except ProbeError as e:
        return index, e
    except Exception as e:
        logger.error(f"Unexpected error probing ({point.lon:.6f}, {point.lat:.6f}): {str(e)}")
        return index, ProbeNetworkError(str(e))


def aggregate_probe_results(outcomes: Sequence[Optional[Outcome]], polygon: Sequence[Vertex],
                            session: SearchSession, counts: DiscoveryCounts) -> List[PanoramaRecord]:
    """
    Turn settled probe outcomes into accepted records.

    Outcomes are walked in grid order so sequence ids and dedup decisions do
    not depend on the order in which probes happened to finish.
    """
    records = []
    for outcome in outcomes:
        if not isinstance(outcome, ProbeResult) or not outcome.exists:
            continue

        pano = outcome.panorama
        if not point_in_polygon((pano.lon, pano.lat), polygon):
            counts.outside_polygon += 1
            continue

        record = PanoramaRecord(
            sequence_id=len(records) + 1,
            lon=pano.lon,
            lat=pano.lat,
            captured_at=pano.captured_at,
            dedup_key=dedup_key(pano.lon, pano.lat),
        )
        if session.dedup.accept(record):
            records.append(record)
        else:
            counts.duplicates += 1

    counts.accepted = len(records)
    return records


async def discover(polygon: Sequence[Sequence[float]],
                   client: PanoramaProbeClient,
                   session: SearchSession,
                   spacing_meters: float = GRID_SPACING_METERS,
                   max_points: int = GRID_MAX_POINTS,
                   search_radius_meters: float = SEARCH_RADIUS_METERS,
                   progress_every: int = PROGRESS_EVERY,
                   batch_deadline_seconds: Optional[float] = BATCH_DEADLINE_SECONDS) -> AsyncIterator[DiscoveryProgress]:
    """
    Search a polygon for panoramas, yielding progress updates.

    The last update has ``state`` DONE (or CANCELLED when the session was reset
    mid-search) and carries the DiscoveryResult.

    Args:
        polygon: Ordered (lon, lat) vertices
        client: Probe client bound to the session's cache
        session: Session owning dedup and cache state
        spacing_meters: Grid spacing
        max_points: Grid cap
        search_radius_meters: Radius sent with each probe
        progress_every: Emit a probing update every N settled probes
        batch_deadline_seconds: Optional overall limit on the probing phase

    Raises:
        InvalidPolygon: fewer than 3 vertices or invalid coordinates
        MissingCredential: the probe backend needs a credential and has none
    """
    try:
        vertices = validate_polygon(polygon)
        if client.requires_credential and not client.has_credential:
            raise MissingCredential(
                "Panorama search requires an API key. Set MAPY_API_KEY in the environment or .env and restart."
            )
    except Exception as e:
        session.state = DiscoveryState.ABORTED
        logger.error(f"Discovery aborted: {str(e)}")
        raise

    counts = DiscoveryCounts()
    token = session.begin_search(vertices)
    bounds = bounding_box(vertices)
    logger.info(f"Polygon bounds: W={bounds.west:.6f} S={bounds.south:.6f} E={bounds.east:.6f} N={bounds.north:.6f}, "
                f"{len(vertices)} vertices")

    session.advance(token, DiscoveryState.GRIDDING)
    yield _progress(DiscoveryState.GRIDDING, counts, 0, 20)
    plan = await asyncio.to_thread(generate_grid, vertices, spacing_meters, max_points)
    total = len(plan.points)
    warnings = []
    if plan.cap_reached:
        warnings.append(f"Grid capped at {max_points} points, only part of the polygon was searched")

    logger.info(f"Probing {total} grid points with radius {search_radius_meters}m")
    session.advance(token, DiscoveryState.PROBING)
    yield _progress(DiscoveryState.PROBING, counts, total, 30)

    outcomes: List[Optional[Outcome]] = [None] * total
    tasks = [
        asyncio.create_task(_probe_point(client, index, point, search_radius_meters))
        for index, point in enumerate(plan.points)
    ]
    try:
        for future in asyncio.as_completed(tasks, timeout=batch_deadline_seconds):
            index, outcome = await future
            outcomes[index] = outcome
            _count_outcome(counts, outcome)
            if counts.tested % progress_every == 0 or counts.tested == total:
                yield _progress(DiscoveryState.PROBING, counts, total, 30 + (40 * counts.tested) // max(total, 1))
    except asyncio.TimeoutError:
        unsettled = total - counts.tested
        logger.warning(f"Batch deadline of {batch_deadline_seconds}s reached with {unsettled} probes unsettled")
        warnings.append(f"Batch deadline reached, {unsettled} grid points were not probed")
        counts.skipped += unsettled
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()

    if not session.is_current(token):
        logger.info(f"Session {session.session_id} moved on during probing, discarding {counts.tested} completions")
        result = DiscoveryResult(state=DiscoveryState.CANCELLED, counts=counts, cap_reached=plan.cap_reached,
                                 warnings=warnings)
        yield _progress(DiscoveryState.CANCELLED, counts, total, 100, result)
        return

    session.advance(token, DiscoveryState.AGGREGATING)
    yield _progress(DiscoveryState.AGGREGATING, counts, total, 70)
    records = aggregate_probe_results(outcomes, vertices, session, counts)

    logger.info("Search statistics:")
    logger.info(f"  Grid points tested: {counts.tested}")
    logger.info(f"  Panoramas found: {counts.found_raw}")
    logger.info(f"  Outside polygon: {counts.outside_polygon}")
    logger.info(f"  Unique panoramas after deduplication: {counts.accepted}")
    logger.info(f"  Skipped due to errors: {counts.skipped} (timeouts={counts.timeouts}, "
                f"network={counts.network_errors}, malformed={counts.malformed})")

    result = DiscoveryResult(
        state=DiscoveryState.DONE,
        records=records,
        counts=counts,
        cap_reached=plan.cap_reached,
        warnings=warnings,
    )
    session.advance(token, DiscoveryState.DONE)
    yield _progress(DiscoveryState.DONE, counts, total, 100, result)


async def run_discovery(polygon: Sequence[Sequence[float]], client: PanoramaProbeClient, session: SearchSession,
                        **kwargs) -> DiscoveryResult:
    """Run a search to completion and return its result."""
    result = None
    async for update in discover(polygon, client, session, **kwargs):
        if update.result is not None:
            result = update.result
    return result
