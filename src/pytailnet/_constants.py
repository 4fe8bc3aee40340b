"""Internal constants shared across the library."""

BASE_URL = "https://api.tailscale.com/api/v2"
USER_AGENT = "pytailnet/1"
OAUTH_TOKEN_ENDPOINT = "/oauth/token"
OAUTH_SCOPE = "devices:read"

#: Seconds shaved off an OAuth token's lifetime so it is renewed before the
#: server starts rejecting it.
TOKEN_EXPIRY_MARGIN_S: float = 60.0

DEFAULT_MANUAL_FILE = "tailscale-devices.json"
DEFAULT_STALENESS_THRESHOLD_S: float = 5 * 60
DEFAULT_SYNC_INTERVAL_S: float = 5 * 60
DEFAULT_SOURCE_TIMEOUT_S: float = 10.0
DEFAULT_SUBSCRIBER_QUEUE = 256

COORDINATOR_TAGS: frozenset[str] = frozenset({"coordinator", "tag:coordinator"})
UNKNOWN = "Unknown"
