"""Custom exceptions for juggler."""

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models.run import RunResult


class JugglerError(Exception):
    """Base exception for juggler errors."""

    def __init__(self, message: str, retryable: bool = False, original_error: Optional[Exception] = None):
        """
        Initialize juggler error.

        Args:
            message: Error message
            retryable: Whether this error is retryable
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.retryable = retryable
        self.original_error = original_error


class NotFoundError(JugglerError):
    """A ball or session reference could not be resolved."""

    def __init__(self, kind: str, ref: str):
        super().__init__(f"{kind} not found: {ref}")
        self.kind = kind
        self.ref = ref


class AmbiguousError(JugglerError):
    """A prefix matched more than one ball."""

    def __init__(self, query: str, candidates: List[str]):
        message = f"ambiguous id '{query}' matches {len(candidates)} balls: {', '.join(candidates)}"
        super().__init__(message)
        self.query = query
        self.candidates = list(candidates)


class InvalidStateTransitionError(JugglerError):
    """Ball state change not allowed by the state machine."""

    def __init__(self, ball_id: str, from_state: str, to_state: str, reason: str = ""):
        message = f"Ball {ball_id}: cannot transition from {from_state} to {to_state}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.ball_id = ball_id
        self.from_state = from_state
        self.to_state = to_state


class CycleError(JugglerError):
    """Dependency mutation would introduce a cycle."""

    def __init__(self, cycle: List[str]):
        super().__init__(f"circular dependency detected: {' → '.join(cycle)}")
        self.cycle = list(cycle)


class AlreadyLockedError(JugglerError):
    """Another agent run holds the session lock."""

    def __init__(self, session_id: str, pid: Optional[int] = None, hostname: str = ""):
        if pid:
            holder = f"PID {pid}"
            if hostname:
                holder += f" on {hostname}"
            message = f"session {session_id} is already locked by another agent ({holder})"
        else:
            message = f"session {session_id} is already locked by another agent"
        super().__init__(message)
        self.session_id = session_id
        self.pid = pid
        self.hostname = hostname


class SessionExistsError(JugglerError):
    """Session directory already exists."""

    def __init__(self, session_id: str):
        super().__init__(f"session already exists: {session_id}")
        self.session_id = session_id


class RunnerError(JugglerError):
    """The agent process could not be invoked at all."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message, retryable=False, original_error=original_error)


class RunOutcomeError(JugglerError):
    """A finished run ended in an outcome the caller asked to treat as an error."""

    def __init__(self, message: str, result: "RunResult"):
        super().__init__(message)
        self.result = result


class IterationTimeoutError(RunOutcomeError):
    """An agent iteration exceeded its timeout."""

    def __init__(self, result: "RunResult"):
        message = (
            f"{result.timeout_message or 'iteration timed out'} "
            f"(after {result.iterations} iterations)"
        )
        super().__init__(message, result)


class RateLimitBudgetExceededError(RunOutcomeError):
    """Waiting for rate limits would exceed the configured budget."""

    def __init__(self, result: "RunResult"):
        message = (
            f"rate limit wait budget exceeded after {result.iterations} iterations "
            f"({result.total_wait_time:.0f}s waited)"
        )
        super().__init__(message, result)


class StoreError(JugglerError):
    """Error related to the on-disk store."""

    def __init__(self, message: str, retryable: bool = False, original_error: Optional[Exception] = None):
        super().__init__(message, retryable=retryable, original_error=original_error)


class StoreCorruptionError(StoreError):
    """Error when a store file cannot be parsed."""

    def __init__(self, filename: str, original_error: Optional[Exception] = None):
        message = f"Store file corrupted: {filename}"
        super().__init__(message, retryable=False, original_error=original_error)
