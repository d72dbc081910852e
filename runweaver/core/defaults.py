"""Shared default constants for runweaver."""

# How long an operation waits for a run's lock before giving up.
# Matches the window a completion callback is allowed to wait for its run.
DEFAULT_LOCK_TIMEOUT_MS: int = 120_000  # 2 minutes

# Sleep between non-blocking lock attempts on backends that poll.
DEFAULT_LOCK_POLL_INTERVAL_MS: int = 50

# Port used when a connection or artifact does not name one.
DEFAULT_PORT: str = 'default'
