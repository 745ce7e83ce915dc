"""Centralized constants"""

# Redis TTLs
REDIS_KEY_TTL_SECONDS = 7 * 24 * 60 * 60  # 7 days

# Timeouts
DEFAULT_NODE_TIMEOUT_SECONDS = 300  # 5 minutes
MAX_NODE_TIMEOUT_SECONDS = 3600     # 1 hour
MIN_NODE_TIMEOUT_SECONDS = 0.01
DEFAULT_FLOW_TIMEOUT_SECONDS = 900  # 15 minutes
CANCEL_GRACE_SECONDS = 1.0

# Concurrency
DEFAULT_MAX_CONCURRENCY = 8

# Limits
MAX_NODES_PER_FLOW = 1000
MAX_CONFIG_SIZE_BYTES = 10 * 1024   # 10KB
MAX_TEMPLATE_LENGTH = 500
MAX_PROJECT_EXECUTIONS = 100       # newest execution ids kept per project

# Secret scrubbing
REDACTION_MARKER = "[REDACTED]"
MIN_SECRET_SCRUB_LENGTH = 4

# Retry configuration (used by plugins that retry their own calls)
MAX_RETRY_ATTEMPTS = 3
INITIAL_RETRY_DELAY_SECONDS = 1
MAX_RETRY_DELAY_SECONDS = 60

# Retryable HTTP Status Codes
RETRYABLE_HTTP_STATUS_CODES = {500, 502, 503, 504, 408, 429}

# Template namespaces
VARIABLES_NAMESPACE = "variables"
SECRETS_NAMESPACE = "secrets"
RESERVED_NAMESPACES = {VARIABLES_NAMESPACE, SECRETS_NAMESPACE}
