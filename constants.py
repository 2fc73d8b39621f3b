"""
Application constants for StatTrack.
Centralized table names, integrity caps, and search defaults.
"""

# =============================================================================
# DATABASE TABLES
# =============================================================================
CREATOR_TABLE = "creators"
CREATOR_STATS_TABLE = "creator_stats"
# One row per running maintenance job; "name" carries a unique constraint
MAINTENANCE_LOCK_TABLE = "maintenance_locks"

# Column sets fetched by the integrity core (keep payloads small)
CREATOR_COLUMNS = "id,platform,platform_id,username,display_name,created_at"
STATS_COLUMNS = "id,creator_id,recorded_at,subscribers,followers,total_views,total_posts"

# Conflict target for the (creator, day) uniqueness constraint
STATS_CONFLICT_FIELDS = ["creator_id", "recorded_at"]

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION_CODE = "23505"

# =============================================================================
# PLATFORMS
# =============================================================================
PLATFORMS = ["youtube", "twitch", "kick", "instagram", "bluesky", "tiktok"]

# Kick reports paid subscribers, which can legitimately be 0
ZERO_METRIC_EXEMPT_PLATFORMS = {"kick"}

# =============================================================================
# USERNAMES
# =============================================================================
USERNAME_MAX_LENGTH = 50
PLATFORM_ID_FALLBACK_LENGTH = 24
# Platform id characters appended, in turn, when a restored username is taken
USERNAME_COLLISION_SUFFIX_LENGTHS = (4, 8, 24)
USERNAME_PATTERN = r"^[a-z0-9]{1,50}$"

# Placeholder written over usernames during the account compromise
CORRUPTED_USERNAME_SENTINEL = "hacked"

# =============================================================================
# SEARCH
# =============================================================================
SEARCH_DEFAULT_LIMIT = 20
SEARCH_MIN_QUERY_LENGTH = 2
SEARCH_PAGE_SIZE = 1000  # PostgREST default max rows per response

# Characters ignored when comparing punctuation-insensitive forms
SEARCH_SEPARATOR_PATTERN = r"[._\-\s]"

# =============================================================================
# INTEGRITY SWEEP / BATCH LIMITS
# =============================================================================
MAX_FETCH_BATCH_SIZE = 1000  # rows fetched per round
MAX_MUTATION_BATCH_SIZE = 50  # ids per delete/update (PostgREST URL length)

# A sweep lock older than this is treated as abandoned by a crashed run
DEFAULT_SWEEP_LOCK_TTL_SECONDS = 6 * 60 * 60

DEFAULT_STATS_TIMEZONE = "America/New_York"

# =============================================================================
# HISTORY AUDIT THRESHOLDS
# =============================================================================
AUDIT_WINDOW_DAYS = 30
AUDIT_STALE_DAYS = 2
AUDIT_SWING_WARN_PCT = 30.0
AUDIT_MAX_GAP_WARN = 3  # consecutive missing days tolerated before FAIL
