"""Shared constants for reqloom.

This module contains constants that are used across multiple modules
to avoid duplication and ensure consistency.
"""

# =============================================================================
# Default User Configuration
# =============================================================================

# Default admin user ID (UUID format)
DEFAULT_USER_ID = "00000000-0000-0000-0000-000000000001"

# Default admin username
DEFAULT_USERNAME = "admin"

# Default admin email
DEFAULT_EMAIL = "admin@reqloom.local"

# Default admin API key (fixed for predictable development/testing)
# Format: rql_ + 32 hex chars
DEFAULT_API_KEY = "rql_00000000000000000000000000000001"

# =============================================================================
# Input Limits
# =============================================================================

# Maximum accepted requirements text, in characters
MAX_INPUT_CHARS = 20_000

# Preview length used by list views
PREVIEW_CHARS = 50

# Minimum length for required draft text fields
MIN_FIELD_CHARS = 10

# =============================================================================
# Timeouts & Delivery
# =============================================================================

INFERENCE_TIMEOUT_SECONDS = 90.0
# Inference threads kept beyond queue concurrency for chat, code and validation calls
INFERENCE_SYNC_WORKERS = 4
EMBEDDING_TIMEOUT_SECONDS = 10.0

# Total delivery attempts per job message (first try + retries)
DELIVERY_MAX_ATTEMPTS = 3
DELIVERY_BACKOFF_BASE_SECONDS = 5.0

# Maximum age of a signed callback (covers queue-side retries and backoff)
SIGNATURE_MAX_AGE_SECONDS = 3600

# =============================================================================
# Revision Flow
# =============================================================================

# Number of prior chat messages replayed into a chat prompt
CHAT_HISTORY_WINDOW = 20

# Advisory regeneration cap per lineage (never enforced unless asked)
SOFT_VERSION_CAP = 5

# Bounded retries when two writers race for the same lineage version
VERSION_ASSIGN_RETRIES = 3

# =============================================================================
# Similarity Reuse Tiers (inclusive lower bounds, highest first)
# =============================================================================

REUSE_EXACT_THRESHOLD = 0.90
REUSE_HIGH_THRESHOLD = 0.60
REUSE_PARTIAL_THRESHOLD = 0.30
REUSE_LOW_THRESHOLD = 0.15

# Default embedding dimension; resolved at runtime by config.get_embedding_dim()
EMBED_DIM = 1536

# =============================================================================
# Quality Linter
# =============================================================================

AMBIGUOUS_TERMS = (
    "fast",
    "easy",
    "user-friendly",
    "robust",
    "scalable",
    "seamless",
    "efficient",
    "quickly",
    "simple",
)

AMBIGUITY_PENALTY = 5
MISSING_FEATURE_PENALTY = 15
UNMEASURABLE_NFR_PENALTY = 10
NO_ACCEPTANCE_CRITERIA_PENALTY = 20
EMPTY_CRITERIA_PENALTY = 10

# =============================================================================
# Diff
# =============================================================================

DIFF_TEXT_FIELDS = ("inputText",)
DIFF_LIST_FIELDS = (
    "functionalRequirements",
    "nonFunctionalRequirements",
    "userStories",
)
