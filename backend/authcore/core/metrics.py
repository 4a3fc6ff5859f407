"""Prometheus metrics for authentication events"""

from prometheus_client import Counter, Histogram

AUTH_EVENTS = Counter(
    "authcore_auth_events_total",
    "Authentication and session lifecycle events",
    ["event", "outcome"],
)
PASSWORD_HASH_LATENCY = Histogram(
    "authcore_password_hash_duration_seconds",
    "Time spent hashing or verifying passwords",
    ["operation"],
)
TOKEN_REUSE_DETECTED = Counter(
    "authcore_refresh_token_reuse_total",
    "Replays of already rotated or revoked refresh tokens",
)
