"""Configuration loaded from environment variables."""

import os


STORE_BASE_URL = os.environ.get("STORE_BASE_URL", "http://localhost:3000").rstrip("/")

# Optional — when both are set the sidecar logs in on startup
STORE_EMAIL = os.environ.get("STORE_EMAIL", "")
STORE_PASSWORD = os.environ.get("STORE_PASSWORD", "")

# Unset means requests wait forever; a hung fetch then delays the next poll
_timeout_raw = os.environ.get("STORE_REQUEST_TIMEOUT", "")
STORE_REQUEST_TIMEOUT = float(_timeout_raw) if _timeout_raw else None

SIDECAR_PORT = int(os.environ.get("SIDECAR_PORT", "3100"))

# Conversation polling (milliseconds)
POLL_INTENSIVE_INTERVAL_MS = int(os.environ.get("POLL_INTENSIVE_INTERVAL_MS", "1000"))
POLL_NORMAL_INTERVAL_MS = int(os.environ.get("POLL_NORMAL_INTERVAL_MS", "5000"))
POLL_IDLE_TIMEOUT_MS = int(os.environ.get("POLL_IDLE_TIMEOUT_MS", "30000"))
POLL_MAX_RETRIES = int(os.environ.get("POLL_MAX_RETRIES", "3"))

# Notification feed
NOTIFICATION_INTERVAL_MS = int(os.environ.get("NOTIFICATION_INTERVAL_MS", "30000"))
NOTIFICATION_LIMIT = int(os.environ.get("NOTIFICATION_LIMIT", "10"))

# SQLite database path — holds the auth token and a little key/value state
DB_PATH = os.environ.get("DB_PATH", "/data/clinic_sync.db")
