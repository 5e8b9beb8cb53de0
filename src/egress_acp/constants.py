"""Application-wide constants for egress-acp.

Constants that define application behavior.
For user-configurable settings per deployment, see config.py.
"""

# ============================================================================
# Application Identity
# ============================================================================

# Directory name used with platformdirs for config and logs
APP_NAME: str = "egress-acp"

CONFIG_FILENAME: str = "egress_acp_config.json"
POLICY_FILENAME: str = "policy.json"

# ============================================================================
# Listener
# ============================================================================

DEFAULT_LISTEN_HOST: str = "localhost"
DEFAULT_LISTEN_PORT: int = 3128

# ============================================================================
# Forwarder Timeouts (seconds)
# ============================================================================

# Applied to every forwarded request. The HTTP client covers TCP connect and
# TLS handshake in one connect phase, so that phase is bounded by
# connect + handshake.
DEFAULT_CONNECT_TIMEOUT_SECONDS: float = 30.0
DEFAULT_TLS_HANDSHAKE_TIMEOUT_SECONDS: float = 10.0
DEFAULT_RESPONSE_HEADER_TIMEOUT_SECONDS: float = 60.0

MIN_TIMEOUT_SECONDS: float = 1.0
MAX_TIMEOUT_SECONDS: float = 600.0

# Only these upstream proxy schemes are supported for routing overrides
SUPPORTED_UPSTREAM_SCHEMES: tuple[str, ...] = ("http", "https")

# ============================================================================
# Rejection Messages
# ============================================================================

BLOCKED_BY_POLICY_MESSAGE: str = "Blocked by policy (matched deny_always rule)"
BLOCKED_INVALID_TARGET_MESSAGE: str = "Blocked by policy (invalid request target)"
BLOCKED_DENY_ONCE_MESSAGE: str = "Blocked by user (Deny Once)"
BLOCKED_DENY_ALWAYS_MESSAGE: str = "Blocked by user (Deny Always)"
DECISION_FAILED_MESSAGE: str = "Failed to get user decision"
UNKNOWN_OUTCOME_MESSAGE: str = "Unknown decision outcome"
UPSTREAM_FAILED_MESSAGE: str = "Upstream request failed"

# ============================================================================
# Tunnel Relay
# ============================================================================

TUNNEL_BUFFER_SIZE: int = 64 * 1024

# Idle interval for the relay select loop; not a connection timeout
TUNNEL_POLL_INTERVAL_SECONDS: float = 1.0

# Upper bound on the size of an upstream proxy's CONNECT response head
MAX_CONNECT_RESPONSE_HEAD_BYTES: int = 64 * 1024

# ============================================================================
# Prompts
# ============================================================================

PROMPT_TITLE: str = "Untrusted Network Request"

# osascript dialogs give up after this long; giving up counts as dismissal
APPLESCRIPT_DIALOG_TIMEOUT_SECONDS: int = 300

# ============================================================================
# Forwarding
# ============================================================================

# Connection-scoped headers that are never forwarded (RFC 9110 section 7.6.1)
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)
