# Fixed per-call timeouts (seconds) for calls to the resource broker.
# Only acquisition has a caller-visible timeout.
HEARTBEAT_TIMEOUT = 10
RELEASE_TIMEOUT = 30
# Upper bound for a single acquire request, the remaining acquisition budget is used when smaller
ACQUIRE_REQUEST_TIMEOUT = 30

# How often to ask the broker again when no resource is free
ACQUIRE_POLL_INTERVAL = 3
# Consecutive transient broker failures tolerated while acquiring
ACQUIRE_MAX_TRANSIENT_RETRIES = 5
ACQUIRE_MAX_BACKOFF = 30

# Consecutive heartbeat failures (other than a lost lease) after which the lease is treated as lost
HEARTBEAT_MAX_FAILURES = 3

STATE_FREE = "free"
STATE_BUSY = "busy"
STATE_DIRTY = "dirty"
