"""
Application-wide constants for the trade history sync engine.

Centralizes magic numbers and configuration values to improve maintainability.
"""

# =============================================================================
# Network Timeouts (seconds)
# =============================================================================

# Connect timeout for the trade history endpoint
API_TIMEOUT_CONNECT = 10

# Read timeout for the trade history endpoint (history payloads can be large)
API_TIMEOUT_READ = 12

# Upper bound for a whole fetch, including retries inside the transport
FETCH_TIMEOUT_DEFAULT = 30


# =============================================================================
# Rate Limiting
# =============================================================================

# Conservative floor between two remote history fetches (milliseconds)
GLOBAL_MIN_INTERVAL_MS = 300_000

# Cool-down applied when the server rate limits without a usable Retry-After
RETRY_AFTER_DEFAULT_SECONDS = 30

# Extra margin added on top of a bucket's reset time (milliseconds)
BUCKET_RESET_MARGIN_MS = 500

# Numeric timestamps below this are seconds-epoch, at or above are ms-epoch
SECONDS_EPOCH_CUTOFF = 2_000_000_000


# =============================================================================
# Auto Refresh
# =============================================================================

# Delay before the first scheduled refresh after start (seconds)
AUTO_REFRESH_INITIAL_DELAY = 3.0

# Base cadence between scheduled refreshes (seconds) - 15 minutes
AUTO_REFRESH_INTERVAL = 15 * 60


# =============================================================================
# Persistence
# =============================================================================

# Directory (under the user's home) holding config, logs and history files
APP_DIR_NAME = ".poe_trade_history"

# Prefix of per-league history files: trade-history-<game>-<league>.json
HISTORY_FILE_PREFIX = "trade-history"

# Folder for rolling backups of history files
BACKUP_DIR_NAME = "history-backups"

# Backups kept per game/league file
MAX_BACKUPS_PER_FILE = 10
