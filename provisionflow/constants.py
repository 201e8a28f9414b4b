"""Default values shared across provisionflow."""

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1_000

DEFAULT_MAX_CONCURRENT_STEPS = 4
DEFAULT_STEP_RETRY_DELAY_MS = 1_000

SERVICE_TIMEOUT_MS = 60_000

SENSITIVE_HEADERS = frozenset({"authorization", "x-api-key", "cookie", "set-cookie"})
REDACTED = "[REDACTED]"
