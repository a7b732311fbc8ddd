# -*- coding: utf-8 -*-
"""
Configuration data: server defaults, timeouts, retry limits.
Pure data only - no side effects at import time.
"""

from dataclasses import dataclass
from dataclasses import field
from typing import Optional

# ============================================================================
# SERVER SETTINGS
# ============================================================================

default_imap_port = 993
default_mailbox = "inbox"

# Environment variable consulted before --password and the prompt
password_env_var = "IMAP_PASSWORD"

# ============================================================================
# TRANSPORT SETTINGS
# ============================================================================

# Seconds without any data before the connection counts as stalled
default_read_timeout = 120

# Maximum plaintext handed to the line splitter per read
default_chunk_size = 2048

# Longest unterminated line accepted before the connection is dropped
default_max_line_length = 64 * 1024

# ============================================================================
# RECONNECT SETTINGS
# ============================================================================

# Fixed wait after a dropped or stalled connection
default_reconnect_delay = 10

# Exponential backoff while the server cannot be reached
default_backoff_initial = 1
default_backoff_max = 30 * 60

# ============================================================================
# INTERVAL TIMER SETTINGS
# ============================================================================

# Timer wait while disconnected; reconnecting wakes the timer early
default_fallback_wait = 30 * 60


@dataclass(frozen=True)
class SessionConfig:
    """Settings for one daemon run, shared read-only by every connection attempt"""

    server: str
    username: str
    password: str = field(repr=False)
    command: str
    port: int = default_imap_port
    interval: Optional[int] = None
    verbose: int = 0
    mailbox: str = default_mailbox
    read_timeout: float = default_read_timeout
    chunk_size: int = default_chunk_size
    max_line_length: int = default_max_line_length
    reconnect_delay: float = default_reconnect_delay
    backoff_initial: float = default_backoff_initial
    backoff_max: float = default_backoff_max
    fallback_wait: float = default_fallback_wait
