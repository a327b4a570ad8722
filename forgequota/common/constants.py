"""Constants for ForgeQuota."""

# Default server port
DEFAULT_SERVER_PORT = 3380

# Versioned API prefix (mirrors the forge's /api/v1 surface)
API_PREFIX = "/api/v1"

# Service token header name (presented by the forge front-end)
AUTH_HEADER = "X-API-Token"

# Principal the forge authenticated, as "<kind>:<id>" (e.g. "user:42")
PRINCIPAL_HEADER = "X-Forge-Principal"

# Principal that will own the written bytes when it differs from the caller
# (repo creation inside an organisation, forks, pushes to someone else's repo)
TARGET_HEADER = "X-Forge-Target"

# Repository visibility hint for git pushes: "public" or "private"
VISIBILITY_HEADER = "X-Forge-Repo-Visibility"

# Pagination
DEFAULT_PAGE_SIZE = 30
MAX_PAGE_SIZE = 100
TOTAL_COUNT_HEADER = "X-Total-Count"

# Limit sentinels
LIMIT_UNLIMITED = -1
LIMIT_DENY = 0

# Config file discovery
CONFIG_ENV_VAR = "FORGEQUOTA_CONFIG"
CONFIG_DIR_NAME = ".forgequota"
