"""File-backed storage for balls, sessions, locks and run history."""

from .ball_store import BallStore
from .session_store import SessionStore
from .history import AgentHistory
from .lock import SessionLock, acquire_session_lock, is_session_locked
from .ids import (
    compute_minimal_unique_ids,
    minimal_unique_prefixes,
    match_prefix,
    resolve_by_prefix,
)
from .dependencies import detect_circular_dependencies

__all__ = [
    "BallStore",
    "SessionStore",
    "AgentHistory",
    "SessionLock",
    "acquire_session_lock",
    "is_session_locked",
    "compute_minimal_unique_ids",
    "minimal_unique_prefixes",
    "match_prefix",
    "resolve_by_prefix",
    "detect_circular_dependencies",
]
