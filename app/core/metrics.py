"""Prometheus custom metrics for the notes auth service."""

from prometheus_client import Counter

# --- Login ---
LOGIN_ATTEMPTS = Counter(
    "auth_login_attempts_total",
    "Total login attempts",
    ["result", "failure_reason"],  # success/failure, invalid_credentials/none
)

# --- Token ---
TOKEN_REFRESHES = Counter(
    "auth_token_refreshes_total",
    "Total access token refreshes",
    ["result"],  # success / invalid / user_missing
)

# --- Signup ---
USER_SIGNUPS = Counter(
    "auth_user_signups_total",
    "Total user signups",
    ["result"],  # success / duplicate
)

# --- Logout ---
LOGOUTS = Counter(
    "auth_logouts_total",
    "Total logouts",
)

# --- Housekeeping ---
REFRESH_TOKENS_SWEPT = Counter(
    "auth_refresh_tokens_swept_total",
    "Expired refresh tokens deleted by the periodic sweep",
)
