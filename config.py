"""Application configuration driven by environment variables.

All settings have sensible defaults for local development.
"""

import os

# ---------------------------------------------------------------------------
# Festival reference data
# ---------------------------------------------------------------------------

# Local JSON document with {"version", "festivals": [...]}.  Ignored when
# FESTIVAL_DATA_URL is set.
FESTIVAL_DATA_PATH: str = os.getenv("FESTIVAL_DATA_PATH", "data/festivals2026.json")

# Remote location of the same document, fetched once at startup.
FESTIVAL_DATA_URL: str = os.getenv("FESTIVAL_DATA_URL", "")

# How long (seconds) an active-festivals-by-date lookup stays cached.
FESTIVAL_CACHE_TTL_SECONDS: float = float(os.getenv("FESTIVAL_CACHE_TTL_SECONDS", "60"))

# ---------------------------------------------------------------------------
# Remote fetches
# ---------------------------------------------------------------------------

# Upper bound (seconds) on any reference-data or photo fetch.
FETCH_TIMEOUT_SECONDS: float = float(os.getenv("FETCH_TIMEOUT_SECONDS", "5"))

# ---------------------------------------------------------------------------
# Engagement ledger persistence
# ---------------------------------------------------------------------------

# JSON file backing the key-value store.
ENGAGEMENT_STORE_PATH: str = os.getenv("ENGAGEMENT_STORE_PATH", "data/engagement.json")

# Key the ledger state is stored under.
ENGAGEMENT_STORAGE_KEY: str = os.getenv("ENGAGEMENT_STORAGE_KEY", "crowdwise_gamification")

# Key the shared prediction-accuracy record is stored under.
ACCURACY_STORAGE_KEY: str = os.getenv("ACCURACY_STORAGE_KEY", "crowdwise_accuracy")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
