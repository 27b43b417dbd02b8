"""
Community verifications resolver configuration constants.

Constants are organized into:
- PROTOCOL: Fixed by the record store's lexicon, not meant to be changed
- CACHE: Freshness policy for fetched verification records
- POLICY: Implementation limits the record store itself does not impose
- OPERATIONAL: Deployment-specific settings (env vars)
"""

import os

# =============================================================================
# PROTOCOL CONSTANTS
# =============================================================================

# Base URL of the record store XRPC host
RECORD_STORE_BASE_URL: str = os.getenv("CV_RECORD_STORE_URL", "https://bsky.social").rstrip("/")

# Collection holding verification records issued by a principal
VERIFICATION_COLLECTION: str = os.getenv(
    "CV_VERIFICATION_COLLECTION", "app.bsky.graph.verification"
)

# Profile record used to resolve a handle to its durable id
PROFILE_COLLECTION: str = "app.bsky.actor.profile"
PROFILE_RECORD_KEY: str = "self"

# XRPC method names
LIST_RECORDS_METHOD: str = "com.atproto.repo.listRecords"
GET_RECORD_METHOD: str = "com.atproto.repo.getRecord"
SEARCH_ACTORS_METHOD: str = "app.bsky.actor.searchActorsTypeahead"

# =============================================================================
# CACHE CONSTANTS
# =============================================================================

# Verification cache TTL. An entry is fresh while now - fetched_at < TTL.
# Default 24 hours.
VERIFICATION_CACHE_TTL_SECONDS: float = float(
    os.getenv("CV_VERIFICATION_CACHE_TTL", "86400")
)

# =============================================================================
# POLICY CONSTANTS
# =============================================================================

# Per-request timeout for record store calls
RECORD_FETCH_TIMEOUT_SECONDS: float = float(
    os.getenv("CV_RECORD_FETCH_TIMEOUT", "10.0")
)

# Records requested per listRecords page (record store caps this at 100)
RECORD_PAGE_SIZE: int = int(os.getenv("CV_RECORD_PAGE_SIZE", "100"))

# Ceiling on pages fetched for a single principal.
# A store that keeps returning a cursor would otherwise loop forever.
# Set to 0 to disable the ceiling.
MAX_RECORD_PAGES: int = int(os.getenv("CV_MAX_RECORD_PAGES", "50"))

# Default result count for actor typeahead search
SEARCH_ACTORS_DEFAULT_LIMIT: int = 5
SEARCH_ACTORS_MAX_LIMIT: int = 25

# =============================================================================
# OPERATIONAL SETTINGS (deployment-specific, via environment variables)
# =============================================================================

# Path of the JSON file backing persisted state.
# Empty (default) keeps state in memory for the life of the process.
STORAGE_PATH: str = os.getenv("CV_STORAGE_PATH", "")

# Storage keys shared with the original page-context storage layout
TRUSTED_USERS_STORAGE_KEY: str = "bsky_trusted_users"
VERIFICATION_CACHE_STORAGE_KEY: str = "bsky_verification_cache"

# Admin endpoint visibility
# Default: True for dev, set to False in production deployments
ADMIN_ENDPOINT_ENABLED: bool = os.getenv("CV_ADMIN_ENDPOINT_ENABLED", "true").lower() == "true"
