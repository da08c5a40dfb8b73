from datetime import timedelta

# --------------------------------------------------
# VENUE DEFAULTS
# --------------------------------------------------

DEFAULT_LOCATION_RADIUS_METERS = 50
DEFAULT_K_FACTOR = 1.2
DEFAULT_TIMEZONE = "UTC"

# --------------------------------------------------
# ENTRY TOKENS
# --------------------------------------------------

NONCE_BYTES = 32  # 256-bit, 64 hex chars

TOKEN_LIFETIME_MINUTES = {
    "outdoor": 10,
    "indoor_simple": 12,
    "indoor_complex": 15,
}
DEFAULT_TOKEN_LIFETIME_MINUTES = 10

# Nonce requests reporting worse accuracy are refused outright
MAX_NONCE_REQUEST_ACCURACY_METERS = 500

# --------------------------------------------------
# MOCK LOCATION HEURISTICS
# --------------------------------------------------

SUSPICIOUS_ACCURACY_METERS = 5
ACCURACY_JUMP_FROM_METERS = 100
ACCURACY_JUMP_TO_METERS = 10
MOCK_STRICT_RADIUS_FACTOR = 0.7
RECENT_SAMPLE_HISTORY = 5

# --------------------------------------------------
# PRESENCE STATE MACHINE
# --------------------------------------------------

OUTSIDE_PINGS_TO_PAUSE = 3
MIN_PING_INTERVAL_SECONDS = 60
RE_ENTRY_GRACE_PERIOD = timedelta(minutes=10)
GRACE_RESUME_DISTANCE_METERS = 100
RECENT_JOIN_WINDOW = timedelta(minutes=30)
STATE_HISTORY_LIMIT = 10

# --------------------------------------------------
# PING SCHEDULING (advisory, returned to client)
# --------------------------------------------------

BASE_PING_INTERVAL_SECONDS = {
    "inactive": 300,
    "active": 60,
    "paused": 120,
}
FAR_DISTANCE_METERS = 200
FAR_DISTANCE_MULTIPLIER = 1.5
POOR_ACCURACY_METERS = 100
POOR_ACCURACY_MULTIPLIER = 1.2
