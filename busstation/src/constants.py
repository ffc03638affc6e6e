"""
Application configuration and constants for the Bus Station Dispatch Server.

This module centralizes environment-based configuration, collaborator
endpoints, lock timings, timezones and input limits.

Configuration values can be overridden via environment variables.
"""

from os import environ
from zoneinfo import ZoneInfo


# ---------------------------------------------------------------------------
# Application metadata
# ---------------------------------------------------------------------------
API_TITLE = "Bus Station Dispatch Server"
API_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# PostgreSQL configuration
# ---------------------------------------------------------------------------
PSQL_DB_DRIVER = environ.get("PSQL_DB_DRIVER", "postgresql")
PSQL_DB_USERNAME = environ.get("PSQL_DB_USERNAME", "postgres")
PSQL_DB_PORT = environ.get("PSQL_DB_PORT", "5432")
PSQL_DB_PASSWORD = environ.get("PSQL_DB_PASSWORD", "password")
PSQL_DB_HOST = environ.get("PSQL_DB_HOST", "localhost")
PSQL_DB_NAME = environ.get("PSQL_DB_NAME", "postgres")

# Complete URL, takes precedence over the PSQL_* parts when set
DATABASE_URL = environ.get("DATABASE_URL", "")


# ---------------------------------------------------------------------------
# OpenObserve configuration
# ---------------------------------------------------------------------------
OPENOBSERVE_PROTOCOL = environ.get("OPENOBSERVE_PROTOCOL", "http")
OPENOBSERVE_HOST = environ.get("OPENOBSERVE_HOST", "localhost")
OPENOBSERVE_PORT = environ.get("OPENOBSERVE_PORT", "5080")
OPENOBSERVE_USERNAME = environ.get("OPENOBSERVE_USERNAME", "admin@busstation.local")
OPENOBSERVE_PASSWORD = environ.get("OPENOBSERVE_PASSWORD", "password")
OPENOBSERVE_ORG = environ.get("OPENOBSERVE_ORG", "busstation")
OPENOBSERVE_STREAM = environ.get("OPENOBSERVE_STREAM", "dispatch-server")


# ---------------------------------------------------------------------------
# Redis configuration
# ---------------------------------------------------------------------------
REDIS_HOST = environ.get("REDIS_HOST", "localhost")
REDIS_PORT = environ.get("REDIS_PORT", "6379")
REDIS_PASSWORD = environ.get("REDIS_PASSWORD", "password")
REDIS_EVENT_CHANNEL = environ.get("REDIS_EVENT_CHANNEL", "dispatch:status")


# ---------------------------------------------------------------------------
# Collaborator services (empty URL disables the collaborator)
# ---------------------------------------------------------------------------
FLEET_API_URL = environ.get("FLEET_API_URL", "")
INVOICE_API_URL = environ.get("INVOICE_API_URL", "")
COLLABORATOR_TIMEOUT = float(environ.get("COLLABORATOR_TIMEOUT", "5"))  # seconds


# ---------------------------------------------------------------------------
# Redis mutex lock constants
# ---------------------------------------------------------------------------
MUTEX_LOCK_TIMEOUT = int(environ.get("MUTEX_LOCK_TIMEOUT", "10"))  # seconds
MUTEX_LOCK_MAX_WAIT_TIME = int(environ.get("MUTEX_LOCK_MAX_WAIT_TIME", "60"))


# ---------------------------------------------------------------------------
# Timezone constants
# ---------------------------------------------------------------------------
TMZ_STATION = ZoneInfo(environ.get("STATION_TIMEZONE", "Asia/Ho_Chi_Minh"))


# ---------------------------------------------------------------------------
# Dispatch input limits
# ---------------------------------------------------------------------------
MAX_PASSENGERS = 100  # Per vehicle, arriving or departing
MAX_NOTE_LENGTH = 1024
MAX_REASON_LENGTH = 500
MAX_CODE_LENGTH = 64
HEADER_ACTOR_ID = "X-Actor-ID"  # Set by the upstream auth gateway
