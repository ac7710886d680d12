import asyncio

import pytest

from pano_discovery.core.probe_client import PanoramaProbeClient, ProbeCache, RateLimiter

# Scenario square: (14.40, 50.08) - (14.41, 50.09)
SQUARE = [(14.40, 50.08), (14.41, 50.08), (14.41, 50.09), (14.40, 50.09)]

# ~100 m square near the centre of SQUARE
SMALL_SQUARE = [(14.4040, 50.0845), (14.4054, 50.0845), (14.4054, 50.0854), (14.4040, 50.0854)]

HANG = object()


class FakeTransport:
    """Stands in for the existence endpoint. ``responder(lon, lat, radius)`` returns the payload."""

    requires_credential = True

    def __init__(self, responder=None, api_key="test-key"):
        self.responder = responder or (lambda lon, lat, radius: {"exists": False})
        self.api_key = api_key
        self.calls = []

    async def check(self, lon, lat, radius_meters):
        self.calls.append((lon, lat, radius_meters))
        payload = self.responder(lon, lat, radius_meters)
        if payload is HANG:
            await asyncio.sleep(10)
        if isinstance(payload, Exception):
            raise payload
        return payload


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_client(transport, cache=None, timeout=0.3, max_concurrency=50):
    return PanoramaProbeClient(
        transport,
        cache if cache is not None else ProbeCache(),
        limiter=RateLimiter(None),
        timeout_seconds=timeout,
        max_concurrency=max_concurrency,
    )


def pano_at_query(lon, lat, radius):
    return {"exists": True, "info": {"lon": lon, "lat": lat, "date": "2023-05-01 12:00:00"}}


@pytest.fixture
def square():
    return list(SQUARE)


@pytest.fixture
def small_square():
    return list(SMALL_SQUARE)
