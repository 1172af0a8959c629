"""Internal constants shared across the library."""

# ------------------------------------------------------------------
# Feed protocol
# ------------------------------------------------------------------

#: Grid header row id; carries column titles, never a driver.
HEADER_ROW_ID = "r0"

#: Value the feed shows in time cells that have no time yet.
PLACEHOLDER = "-"

#: Fallback colours when a ``css|`` rule omits a declaration.
DEFAULT_BACKGROUND_COLOR = "#333"
DEFAULT_TEXT_COLOR = "#FFF"

#: Token sent right after the socket opens.
DEFAULT_INIT_TOKEN = "init"

# Grid / cell column numbers.
COL_GROUP = 1
COL_STATUS = 2
COL_RANK = 3
COL_KART = 4
COL_NAME = 5
COL_SECTOR1 = 6
COL_SECTOR2 = 7
COL_SECTOR3 = 8
COL_LAPS = 9
COL_LAST_LAP = 10
COL_BEST_LAP = 11

# ------------------------------------------------------------------
# Timing
# ------------------------------------------------------------------

RECONNECT_BASE_DELAY = 5.0
RECONNECT_FACTOR = 1.5
RECONNECT_MAX_DELAY = 60.0

FLASH_DURATION = 1.0

#: Seconds ``stop()`` waits for queued upserts before giving up.
PERSISTENCE_DRAIN_TIMEOUT = 10.0

#: Seconds ``stop()`` waits for the connection loop to exit before cancelling it.
SUPERVISOR_STOP_TIMEOUT = 5.0

LAP_HISTORY_SIZE = 50

RETENTION_HOURS = 48.0
CLEANUP_INTERVAL = 3600.0

# ------------------------------------------------------------------
# Default venues
# ------------------------------------------------------------------

DEFAULT_TRACKS: tuple[tuple[str, str, str], ...] = (
    ("max60", "Max60", "wss://www.apex-timing.com:9703/"),
    ("slovakiaring", "Slovakiaring", "wss://www.apex-timing.com:8533/"),
)
