DOMAIN = "transit_sync"
VERSION = "0.3.0"

# Quality classes
QUALITY_POOR = "poor"
QUALITY_GOOD = "good"
QUALITY_EXCELLENT = "excellent"

# Operating configuration per quality class:
# (poll_interval_ms, compress, reduced_payload, batch, max_retries)
POLICY_TABLE: dict[str, tuple[int, bool, bool, bool, int]] = {
    QUALITY_POOR:      (50000, True,  True,  True,  2),
    QUALITY_GOOD:      (15000, True,  False, False, 3),
    QUALITY_EXCELLENT: (5000,  False, False, False, 3),
}

# Sample reported when no connection-info capability is available
DEFAULT_EFFECTIVE_TYPE = "unknown"
DEFAULT_DOWNLINK_MBPS = 10.0
DEFAULT_RTT_MS = 100

RTT_POOR_MS = 2000    # above this the connection is poor whatever its nominal type
RTT_GOOD_MS = 1000    # above this the connection is at best good

# Effective-type thresholds used when the RTT is measured by probing
PROBE_SLOW_2G_RTT_MS = 2000
PROBE_2G_RTT_MS = 1400
PROBE_3G_RTT_MS = 270
PROBE_FAILED_RTT_MS = 3000

# Default sizes and lifetimes
CACHE_CAPACITY = 200
CACHE_TTL_MS = 30000            # live resource reads
OFFLINE_QUEUE_CAPACITY = 100
BATCH_DELAY_MS = 3000
PREFETCH_CAPACITY = 50
PREFETCH_TTL_MS = 300000
PREFETCH_TOP_N = 5
RETRY_BASE_DELAY_MS = 1000
RETRY_MAX_JITTER_MS = 1000
REQUEST_TIMEOUT = 10            # seconds, HTTP store

STALE_WRITE_AGE_MS = 3600000    # queued writes older than one hour are dropped on replay

# Backend paths
RESOURCES_PATH = "buses"
PNR_INDEX_PATH = "pnrIndex"
ROUTES_PATH = "routes"
ROUTE_MEMBERS_KEY = "buses"
MIRROR_PATH = "mirror"          # destination of records mirrored by the batch aggregator

# Codec
MAX_STRING_LENGTH = 50
TRUNCATION_MARKER = "..."
COORDINATE_PRECISION = 6
COORDINATE_FIELDS = frozenset({"lat", "lon", "latitude", "longitude"})
INTEGER_FIELDS = frozenset({"speed", "heading"})
ESSENTIAL_FIELDS = ("busId", "lat", "lon", "speed", "heading", "status", "updatedAt")

# Driver publishing throttle
PUBLISH_MIN_INTERVAL_MS = 5000
PUBLISH_MIN_MOVE_METERS = 15

# Geo
EARTH_RADIUS_M = 6371000
FALLBACK_SPEED_MPS = 8.0        # ~28.8 km/h
MIN_MOVING_SPEED_MPS = 0.5
NEARBY_THRESHOLD_M = 500
NEARBY_RESET_M = 650

MAX_ROUTE_RESULTS = 5
