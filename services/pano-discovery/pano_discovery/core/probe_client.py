"""
Existence Probe Client - Asks the panorama service whether a panorama exists near a point.

Every probe goes through a TTL cache first. Live calls are bounded by a
semaphore, paced by a rate limiter and abandoned after a short timeout.
"""
import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type

import aiohttp
from streetlevel import mapy

from pano_discovery.config import (
    COORDINATE_DECIMALS,
    MAX_CONCURRENT_PROBES,
    PANORAMA_EXISTS_URL,
    PROBE_CACHE_TTL_SECONDS,
    PROBE_RATE_LIMIT_PER_SECOND,
    PROBE_TIMEOUT_SECONDS,
)
from pano_discovery.core.geometry import GridPoint
from pano_discovery.errors import (
    InvalidCoordinates,
    ProbeError,
    ProbeMalformedResponse,
    ProbeNetworkError,
    ProbeTimeout,
)

logger = logging.getLogger(__name__)

CacheKey = Tuple[float, float, float]


@dataclass(frozen=True)
class PanoramaInfo:
    lon: float
    lat: float
    captured_at: Optional[str] = None


@dataclass(frozen=True)
class ProbeResult:
    point: GridPoint
    exists: bool
    panorama: Optional[PanoramaInfo] = None


@dataclass
class CacheEntry:
    """A cached probe outcome. Exactly one of ``result`` and ``error_type`` is set."""
    key: CacheKey
    inserted_at: float
    result: Optional[ProbeResult] = None
    error_type: Optional[Type[ProbeError]] = None
    error_message: str = ""

    @property
    def is_error(self) -> bool:
        return self.error_type is not None


def cache_key(lon: float, lat: float, radius_meters: float) -> CacheKey:
    return (round(lon, COORDINATE_DECIMALS), round(lat, COORDINATE_DECIMALS), float(radius_meters))


class ProbeCache:
    """
    In-memory TTL cache of probe outcomes.

    Expired entries are evicted lazily on lookup. ``clear`` bumps a generation
    counter and writes tagged with an older generation are dropped, so a probe
    that was in flight during a clear cannot bring its entry back.
    """

    def __init__(self, ttl_seconds: float = PROBE_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self.generation = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.inserted_at >= self.ttl_seconds

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        return entry

    def put_result(self, key: CacheKey, result: ProbeResult, generation: int) -> None:
        self._store(CacheEntry(key=key, inserted_at=self._clock(), result=result), generation)

    def put_error(self, key: CacheKey, error: ProbeError, generation: int) -> None:
        entry = CacheEntry(key=key, inserted_at=self._clock(), error_type=type(error), error_message=str(error))
        self._store(entry, generation)

    def _store(self, entry: CacheEntry, generation: int) -> None:
        if generation != self.generation:
            logger.debug(f"Dropping stale cache write for {entry.key} (generation {generation} != {self.generation})")
            return
        self._entries[entry.key] = entry

    def evict_expired(self) -> int:
        expired = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self.generation += 1

    def stats(self) -> Dict[str, int]:
        errors = sum(1 for entry in self._entries.values() if entry.is_error)
        return {"entries": len(self._entries), "errors": errors, "results": len(self._entries) - errors}


class RateLimiter:
    """
    Fixed-interval limiter: consecutive acquisitions are at least 1/rate seconds apart.

    Each caller reserves the next free slot before sleeping, so the limiter
    holds no loop-bound primitives and can be shared across event loops.
    """

    def __init__(self, rate_per_second: Optional[float] = PROBE_RATE_LIMIT_PER_SECOND):
        self.interval = 1.0 / rate_per_second if rate_per_second else 0.0
        self._next_slot = 0.0

    async def wait(self) -> None:
        now = time.monotonic()
        slot = max(now, self._next_slot)
        self._next_slot = slot + self.interval
        if slot > now:
            await asyncio.sleep(slot - now)


class ExistsApiTransport:
    """HTTP existence endpoint answering ``{exists, info: {lon, lat, date}}``."""

    requires_credential = True

    def __init__(self, session: aiohttp.ClientSession, api_key: Optional[str], url: str = PANORAMA_EXISTS_URL):
        self.session = session
        self.api_key = api_key
        self.url = url

    async def check(self, lon: float, lat: float, radius_meters: float) -> Any:
        params = {"lon": lon, "lat": lat, "radius": radius_meters, "apikey": self.api_key}
        async with self.session.get(self.url, params=params, headers={"X-Api-Key": self.api_key}) as response:
            if response.status != 200:
                body = await response.text()
                raise ProbeNetworkError(f"HTTP {response.status}: {body[:200]}")
            try:
                return await response.json(content_type=None)
            except ValueError as e:
                raise ProbeMalformedResponse(f"Response is not JSON: {e}") from e


class StreetlevelTransport:
    """Looks panoramas up through streetlevel's Mapy.cz client. Needs no credential."""

    requires_credential = False
    api_key = None

    def __init__(self, session: aiohttp.ClientSession):
        self.session = session

    async def check(self, lon: float, lat: float, radius_meters: float) -> Any:
        pano = await mapy.find_panorama_async(lat, lon, self.session, radius=radius_meters)
        if pano is None:
            return {"exists": False}
        return {
            "exists": True,
            "info": {
                "lon": pano.lon,
                "lat": pano.lat,
                "date": str(pano.date) if pano.date else None,
            },
        }


def create_transport(backend: str, session: aiohttp.ClientSession, api_key: Optional[str] = None,
                     url: str = PANORAMA_EXISTS_URL):
    if backend == "api":
        return ExistsApiTransport(session, api_key, url)
    elif backend == "streetlevel":
        return StreetlevelTransport(session)
    raise ValueError(f"Unknown probe backend: {backend}")


def _is_coordinate(value: Any, limit: float) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and -limit <= value <= limit


def parse_probe_response(point: GridPoint, payload: Any) -> ProbeResult:
    """
    Validate an existence response. Panorama coordinates must be numeric and in range.

    Raises:
        ProbeMalformedResponse: payload does not match ``{exists: bool, info?: {lon, lat, date}}``
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("exists"), bool):
        raise ProbeMalformedResponse(f"Unexpected response: {payload!r:.200}")
    if not payload["exists"]:
        return ProbeResult(point=point, exists=False)

    info = payload.get("info")
    if not isinstance(info, dict):
        raise ProbeMalformedResponse("Response reports a panorama without info")
    lon, lat = info.get("lon"), info.get("lat")
    if not _is_coordinate(lon, 180) or not _is_coordinate(lat, 90):
        raise ProbeMalformedResponse(f"Invalid panorama coordinates ({lon!r}, {lat!r})")

    date = info.get("date")
    return ProbeResult(
        point=point,
        exists=True,
        panorama=PanoramaInfo(lon=float(lon), lat=float(lat), captured_at=str(date) if date is not None else None),
    )


class PanoramaProbeClient:
    """
    Cached, rate-limited, fail-fast wrapper around a probe transport.

    Cache hits return without waiting on the limiter. Failures are cached next
    to genuine negatives and re-raised on a hit.
    """

    def __init__(self, transport, cache: ProbeCache, limiter: Optional[RateLimiter] = None,
                 timeout_seconds: float = PROBE_TIMEOUT_SECONDS, max_concurrency: int = MAX_CONCURRENT_PROBES):
        self.transport = transport
        self.cache = cache
        self.limiter = limiter or RateLimiter()
        self.timeout_seconds = timeout_seconds
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.network_calls = 0
        self.cache_hits = 0

    @property
    def requires_credential(self) -> bool:
        return getattr(self.transport, "requires_credential", False)

    @property
    def has_credential(self) -> bool:
        return bool(getattr(self.transport, "api_key", None))

    async def probe(self, lon: float, lat: float, radius_meters: float) -> ProbeResult:
        """
        Check whether a panorama exists within ``radius_meters`` of (lon, lat).

        Raises:
            InvalidCoordinates: lon/lat outside WGS84 range, nothing is sent
            ProbeTimeout: the call did not answer within the timeout
            ProbeNetworkError: transport failure or non-success status
            ProbeMalformedResponse: the answer could not be trusted
        """
        if not _is_coordinate(lon, 180) or not _is_coordinate(lat, 90):
            raise InvalidCoordinates(f"Invalid coordinates ({lon!r}, {lat!r})")

        key = cache_key(lon, lat, radius_meters)
        entry = self.cache.get(key)
        if entry is not None:
            self.cache_hits += 1
            if entry.is_error:
                raise entry.error_type(entry.error_message)
            return entry.result

        generation = self.cache.generation
        point = GridPoint(lon=lon, lat=lat)
        async with self._semaphore:
            await self.limiter.wait()
            self.network_calls += 1
            try:
                payload = await asyncio.wait_for(
                    self.transport.check(lon, lat, radius_meters), timeout=self.timeout_seconds
                )
                result = parse_probe_response(point, payload)
            except asyncio.TimeoutError:
                error = ProbeTimeout(f"No answer for ({lon:.6f}, {lat:.6f}) within {self.timeout_seconds}s")
            except ProbeError as e:
                error = e
            except (aiohttp.ClientError, OSError) as e:
                error = ProbeNetworkError(f"Transport error for ({lon:.6f}, {lat:.6f}): {e}")
            except (ValueError, KeyError, TypeError) as e:
                error = ProbeMalformedResponse(f"Unreadable answer for ({lon:.6f}, {lat:.6f}): {e!r}")
            except Exception as e:
                logger.error(f"Unexpected transport error for ({lon:.6f}, {lat:.6f}): {e!r}")
                error = ProbeNetworkError(f"Transport error for ({lon:.6f}, {lat:.6f}): {e!r}")
            else:
                self.cache.put_result(key, result, generation)
                return result

        logger.debug(f"Probe failed ({error.kind}): {error}")
        self.cache.put_error(key, error, generation)
        raise error
