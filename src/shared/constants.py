from enum import Enum

# --- Prefetch engine defaults

# Multiplier applied to the visible extent for the active layer's offscreen ring
SPATIAL_BUFFER_FACTOR = 1.5

# Maximum number of prefetch loads outstanding at once
MAX_CONCURRENT_PREFETCHES = 12

# Delay after the last move end before prefetch resumes (seconds)
IDLE_DELAY_S = 0.3

# Interval of the coalesced scheduler tick (seconds)
TICK_INTERVAL_S = 0.2

# Safety timeout of one-shot idle subscriptions (seconds)
IDLE_TIMEOUT_S = 60.0

# Keep loading the active layer's offscreen tiles while the user pans/zooms
LOAD_ACTIVE_DURING_INTERACTION = True

# --- Priorities

# Per-target offset: target i adds i * step to its category weight
TARGET_PRIORITY_STEP = 0.1

# Per-layer offset: the layer's rank among distinct registered priorities
# adds rank * step to its category weight
LAYER_PRIORITY_STEP = 0.001

# Upper bounds of the summed target and layer offsets; steps shrink to fit
# long target lists and many layers. Together they stay below MIN_CATEGORY_SPACING
TARGET_OFFSET_SPAN = 0.9
LAYER_OFFSET_SPAN = 0.09

# Minimum distance between two category weights; sub-priority offsets stay below it
MIN_CATEGORY_SPACING = 1.0

# Number of recent errors kept in the stats ring buffer
ERROR_LOG_LIMIT = 50

# Fallback reason for failed loads without any detail
DEFAULT_ERROR_REASON = 'Tile load failed'

# Layer name used in error records when a layer has none
UNKNOWN_LAYER_NAME = 'unknown'

# --- Prefetch categories


class PrefetchCategory(str, Enum):
    SPATIAL_ACTIVE = 'spatial'
    BACKGROUND_LAYERS_VIEWPORT = 'bgViewport'
    # Reserved: has a weight and counters, no planner step produces it yet
    BACKGROUND_LAYERS_BUFFER = 'bgBuffer'
    NEXT_NAV_ACTIVE = 'nextNavActive'
    NEXT_NAV_BACKGROUND = 'nextNavBackground'

    @classmethod
    def parse(cls, key: 'PrefetchCategory | str') -> 'PrefetchCategory | None':
        """Accept members, values ('bgViewport') or member names."""
        if isinstance(key, cls):
            return key
        try:
            return cls(key)
        except ValueError:
            pass
        try:
            return cls[str(key).upper()]
        except KeyError:
            return None


# --- Host surface events


class SurfaceEvent(str, Enum):
    MOVESTART = 'movestart'
    MOVEEND = 'moveend'
    POSTRENDER = 'postrender'


# --- Web Mercator and XYZ

# Projection code used by the XYZ grid
WEB_MERCATOR_CODE = 'EPSG:3857'

# Web Mercator sphere radius (meters)
EARTH_RADIUS_M = 6378137.0

# Base Web Mercator tile size (px)
TILE_SIZE = 256

# Deepest zoom level served by the XYZ grid
MAX_ZOOM = 22

# Small epsilon for tile boundary calculations
XY_EPSILON = 1e-9

# --- HTTP defaults

HTTP_OK = 200
HTTP_NO_CONTENT = 204

# Total request timeout (seconds)
HTTP_TIMEOUT_DEFAULT = 20.0

# User-Agent sent with tile requests
HTTP_USER_AGENT = 'tile-prefetch/1.0'

# --- Profiles

PROFILES_DIR = 'configs/profiles'

# --- HTTP cache

# Keep fetched tiles in an on-disk HTTP cache
HTTP_CACHE_ENABLED = True

# Cache directory; relative paths resolve under the user's home
HTTP_CACHE_DIR = '.tile_prefetch_cache'

# Expiration of cached responses (hours)
HTTP_CACHE_EXPIRE_HOURS = 24 * 7

# Honour Cache-Control headers of the tile server
HTTP_CACHE_RESPECT_HEADERS = False
