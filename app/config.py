"""
Runtime configuration read from environment variables.

All values have defaults suitable for local development against a SQLite
file under ``data/``.
"""

from __future__ import annotations

import os

# =============================================================================
# Storage
# =============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/feeds.sqlite3")

# =============================================================================
# Fetching
# =============================================================================

USER_AGENT = os.getenv(
    "FEEDS_USER_AGENT", "bookmarks/0.1 (+https://github.com/nrocco/bookmarks)"
)
HTTP_TIMEOUT = float(os.getenv("FEEDS_HTTP_TIMEOUT", "20"))  # seconds

# New feeds backfill this many days of history on their first fetch
BACKFILL_DAYS = int(os.getenv("FEEDS_BACKFILL_DAYS", "7"))

# =============================================================================
# Listing
# =============================================================================

LIST_LIMIT = int(os.getenv("FEEDS_LIST_LIMIT", "50"))

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
