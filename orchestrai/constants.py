"""Default values shared across orchestrai."""

DEFAULT_API_URL = "http://localhost:8001"
DEFAULT_TIMEOUT = 10.0

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_RECONNECT_DELAY = 5.0
DEFAULT_RECONNECT_BUDGET = 3
DEFAULT_DEDUP_WINDOW = 20

DEFAULT_REPOSITORY_HOSTS = ("github.com",)

CREATE_WORKFLOW_PATH = "/api/workflow"
WORKFLOWS_PATH = "/api/workflows"
SUBSCRIBE_PATH = "/ws/workflows"
HEALTH_PATH = "/health"
CONTEXT_SEARCH_PATH = "/api/context/search"
CONTEXT_CONFIG_PATH = "/api/admin/config"
