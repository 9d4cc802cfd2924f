"""
Shared constants used across all engine modules.

Centralises defaults, limits, and tunables so they live in exactly one
place.
"""

# ---------------------------------------------------------------------------
# HTTP headers
# ---------------------------------------------------------------------------

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
}

# Ookla servers reject requests without a speedtest.net origin.
OOKLA_HEADERS = {
    **COMMON_HEADERS,
    "Origin": "https://www.speedtest.net",
    "Referer": "https://www.speedtest.net/",
}

# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

SPEEDTEST_SERVERS_URL = "https://www.speedtest.net/api/js/servers"

DEFAULT_SERVER_URL = "https://speed.cloudflare.com"
DEFAULT_SERVER_ID = "cloudflare"

# ---------------------------------------------------------------------------
# Run defaults and limits
# ---------------------------------------------------------------------------

MB = 1_000_000

DEFAULT_DOWNLOAD_SIZE_MB = 100
DEFAULT_UPLOAD_SIZE_MB = 20
DEFAULT_TIMEOUT = 30.0           # seconds, per step
DEFAULT_ITERATIONS = 1
DEFAULT_PING_COUNT = 10
DEFAULT_SELECTION_PING_COUNT = 3
DEFAULT_CONNECTIONS = 1

MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 32
MIN_PING_COUNT = 1
MAX_PING_COUNT = 100
MAX_ITERATIONS = 1000
MAX_TRANSFER_SIZE_MB = 10_000

SELECTION_TIMEOUT = 5.0          # cap on the per-candidate probe deadline
PROBE_TIMEOUT = 5.0              # cap on a single probe round trip
WS_CONNECT_TIMEOUT = 5.0
WS_HANDSHAKE_TIMEOUT = 2.0
WS_MSG_TIMEOUT = 0.5

# ---------------------------------------------------------------------------
# Data transfer
# ---------------------------------------------------------------------------

CHUNK_SIZE = 256 * 1024          # 256 KB – good TCP window utilisation
UPLOAD_BUFFER_SIZE = 1024 * 1024 # 1 MB pre-generated random buffer
