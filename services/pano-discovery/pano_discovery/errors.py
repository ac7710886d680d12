"""
Error taxonomy for panorama discovery.

Only ``InvalidPolygon`` and ``MissingCredential`` stop a search. Probe errors
are recovered per grid point and surface as counters on the result.
"""


class DiscoveryError(Exception):
    """Base class for every error raised by the discovery engine."""


class InvalidPolygon(DiscoveryError):
    """Polygon has fewer than three vertices or malformed coordinates."""


class MissingCredential(DiscoveryError):
    """No credential configured for the existence probe endpoint."""


class InvalidCoordinates(DiscoveryError):
    """Longitude or latitude outside the valid WGS84 range."""


class ProbeError(DiscoveryError):
    """A single probe failed. Treated as "not found" by the orchestrator."""

    kind = "error"


class ProbeTimeout(ProbeError):
    kind = "timeout"


class ProbeNetworkError(ProbeError):
    kind = "network"


class ProbeMalformedResponse(ProbeError):
    kind = "malformed"
