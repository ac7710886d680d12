"""
Configuration settings for the Panorama Discovery Service.
"""
import os

from dotenv import load_dotenv

load_dotenv()

# Probe backend configuration
PROBE_BACKEND = os.getenv("PROBE_BACKEND", "api")  # "api" or "streetlevel"

# Existence endpoint settings
PANORAMA_EXISTS_URL = os.getenv("PANORAMA_EXISTS_URL", "https://api.mapy.cz/v1/panorama/exists")
MAPY_API_KEY = os.getenv("MAPY_API_KEY")  # Required by the "api" backend

# Grid settings
GRID_SPACING_METERS = 15  # Physical distance between sample points
GRID_MAX_POINTS = 4000  # Hard cap on probes per search
SEARCH_RADIUS_METERS = 25  # Radius sent with every existence probe
METERS_PER_DEGREE = 111_000

# Probe settings
PROBE_TIMEOUT_SECONDS = 0.3  # Fail fast, most grid points have no panorama
PROBE_CACHE_TTL_SECONDS = 30 * 60
PROBE_RATE_LIMIT_PER_SECOND = 5  # Upstream tolerance for live calls
MAX_CONCURRENT_PROBES = 10
COORDINATE_DECIMALS = 6

# Orchestration settings
PROGRESS_EVERY = 50  # Emit a progress update every N settled probes
BATCH_DEADLINE_SECONDS = None  # None waits for every probe to settle

# Deduplication settings
DEDUP_PROXIMITY_DEG2 = 1e-8  # ~10 meters, squared degrees

# Condition analysis collaborator
ANALYSIS_SERVICE_URL = os.getenv("ANALYSIS_SERVICE_URL", "http://localhost:3000/api/analyze-property")
ANALYSIS_TIMEOUT_SECONDS = 60
ANALYSIS_MAX_WORKERS = 4

# Static panorama image settings
PANORAMA_IMAGE_URL = "https://api.mapy.cz/v1/static/pano"
PANORAMA_IMAGE_MAX_SIZE = 1024  # API rejects anything larger
PANORAMA_MIN_FOV = 0.157  # ~pi/20 radians
PANORAMA_MAX_FOV = 1.57  # Just under pi/2, API rejects >= pi/2

# Logging settings
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = "logs"
LOG_SESSION_FORMAT = "pano_discovery_{timestamp}.txt"
