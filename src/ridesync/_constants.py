"""Internal constants shared across the library."""

DEFAULT_COLLECTION = "rides"
USER_AGENT = "ridesync/1 aiohttp"

# ------------------------------------------------------------------
# Scanning countdown
# ------------------------------------------------------------------

#: Seconds a request is scanned for a driver before the retry affordance shows.
SCAN_DURATION_S: float = 30.0
#: Countdown tick interval in seconds.
SCAN_TICK_S: float = 1.0
#: Progress value reached when the countdown completes (or on acceptance).
PROGRESS_MAX: float = 100.0
#: Delay between the accepted state and the ``on_accepted`` notification.
ACCEPT_GRACE_S: float = 0.5

# ------------------------------------------------------------------
# Realtime database wire format
# ------------------------------------------------------------------

#: Server-side timestamp placeholder understood by Firebase-compatible databases.
SERVER_TIMESTAMP: dict[str, str] = {".sv": "timestamp"}

STREAM_EVENT_PUT = "put"
STREAM_EVENT_PATCH = "patch"
STREAM_EVENTS_CLOSING: frozenset[str] = frozenset({"cancel", "auth_revoked"})

MQTT_DEFAULT_TOPIC_PREFIX = "ridesync/requests"
