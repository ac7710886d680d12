"""
Data models for the Panorama Discovery Service.
"""
from enum import Enum
from typing import List, Literal, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from pano_discovery.config import GRID_MAX_POINTS, GRID_SPACING_METERS, SEARCH_RADIUS_METERS


class DiscoveryState(str, Enum):
    """Lifecycle of a single polygon search."""
    IDLE = "idle"
    GRIDDING = "gridding"
    PROBING = "probing"
    AGGREGATING = "aggregating"
    DONE = "done"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class DiscoveryRequest(BaseModel):
    """Request model for a polygon panorama search."""
    polygon: List[Tuple[float, float]] = Field(..., description="Ordered (lon, lat) vertices, closed implicitly")
    spacing_meters: float = Field(GRID_SPACING_METERS, gt=0, description="Grid spacing in meters")
    max_points: int = Field(GRID_MAX_POINTS, gt=0, description="Maximum number of grid points to probe")
    search_radius_meters: float = Field(SEARCH_RADIUS_METERS, gt=0, description="Probe search radius in meters")
    session_id: str = Field("default", description="Client session owning cache and dedup state")


class PanoramaRecord(BaseModel):
    """A discovered panorama, unique within its search."""
    sequence_id: int
    lon: float
    lat: float
    captured_at: Optional[str] = None
    dedup_key: str


class DiscoveryCounts(BaseModel):
    """Aggregate counters for observability."""
    tested: int = 0
    found_raw: int = 0
    accepted: int = 0
    skipped: int = 0
    timeouts: int = 0
    network_errors: int = 0
    malformed: int = 0
    outside_polygon: int = 0
    duplicates: int = 0


class DiscoveryResult(BaseModel):
    """Final outcome of a search."""
    state: DiscoveryState
    records: List[PanoramaRecord] = Field(default_factory=list)
    counts: DiscoveryCounts = Field(default_factory=DiscoveryCounts)
    cap_reached: bool = False
    warnings: List[str] = Field(default_factory=list)


class DiscoveryProgress(BaseModel):
    """Progress update emitted while a search runs. The last one carries the result."""
    state: DiscoveryState
    tested: int = 0
    total: int = 0
    found_raw: int = 0
    accepted: int = 0
    skipped: int = 0
    percent: int = 0
    result: Optional[DiscoveryResult] = None


class ConditionReport(BaseModel):
    """Condition report returned by the analysis collaborator."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    condition: str = "unknown"
    confidence: float = 0.0
    issues: List[str] = Field(default_factory=list)
    recommendation: str = ""
    acquisition_score: Optional[float] = Field(
        None, validation_alias=AliasChoices("acquisitionScore", "acquisition_score")
    )
    estimated_value: float = Field(
        0, validation_alias=AliasChoices("estimatedValue", "estimatedRenovationCost", "estimated_value")
    )


class AnalysisOutcome(BaseModel):
    """Tagged result of one condition analysis call."""
    sequence_id: int
    status: Literal["success", "failure"]
    report: Optional[ConditionReport] = None
    reason: Optional[str] = None


class AnalysisRequest(BaseModel):
    """Request model for condition analysis of discovered panoramas."""
    records: List[PanoramaRecord]
    yaw: float = Field(0, description="View heading in degrees")
    pitch: float = Field(0, description="View pitch in degrees")
    fov: float = Field(90, description="Field of view in degrees")


class ExportRequest(BaseModel):
    """Request model for exporting a result set."""
    records: List[PanoramaRecord]
    analyses: List[AnalysisOutcome] = Field(default_factory=list)
