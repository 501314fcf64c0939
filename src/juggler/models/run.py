"""Run result and history record models."""

import time
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..exceptions import IterationTimeoutError, RateLimitBudgetExceededError


class RunOutcome(str, Enum):
    """How an orchestrator run ended."""
    COMPLETE = "complete"
    BLOCKED = "blocked"
    TIMEOUT = "timeout"
    MAX_ITERATIONS = "max_iterations"
    RATE_LIMIT = "rate_limit"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class RunResult:
    """Summary of one orchestrator run. Built once when the run ends."""
    session_id: str
    iterations: int = 0
    complete: bool = False
    blocked: bool = False
    blocked_reason: str = ""
    timed_out: bool = False
    timeout_message: str = ""
    rate_limit_exceeded: bool = False
    balls_complete: int = 0
    balls_blocked: int = 0
    balls_total: int = 0
    total_wait_time: float = 0.0
    overload_retries: int = 0
    started_at: Optional[str] = None
    ended_at: Optional[str] = None

    @property
    def outcome(self) -> RunOutcome:
        if self.complete:
            return RunOutcome.COMPLETE
        if self.blocked:
            return RunOutcome.BLOCKED
        if self.timed_out:
            return RunOutcome.TIMEOUT
        if self.rate_limit_exceeded:
            return RunOutcome.RATE_LIMIT
        return RunOutcome.MAX_ITERATIONS

    def raise_for_outcome(self) -> "RunResult":
        """Raise for timeout or exhausted wait budget, otherwise return self."""
        if self.timed_out:
            raise IterationTimeoutError(self)
        if self.rate_limit_exceeded:
            raise RateLimitBudgetExceededError(self)
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


@dataclass
class AgentRunRecord:
    """One line of .juggle/agent_history.jsonl."""
    id: str
    session_id: str
    project_dir: str = ""
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    iterations: int = 0
    max_iterations: int = 0
    result: RunOutcome = RunOutcome.MAX_ITERATIONS
    blocked_reason: str = ""
    timeout_message: str = ""
    error_message: str = ""
    balls_complete: int = 0
    balls_blocked: int = 0
    balls_total: int = 0
    total_wait_time: float = 0.0
    output_file: str = ""

    def __post_init__(self):
        if not isinstance(self.result, RunOutcome):
            try:
                self.result = RunOutcome(self.result)
            except ValueError:
                self.result = RunOutcome.ERROR

    @classmethod
    def from_result(
        cls,
        result: RunResult,
        project_dir: str = "",
        max_iterations: int = 0,
        output_file: str = "",
    ) -> "AgentRunRecord":
        """Build a history record from a finished run."""
        return cls(
            id=str(time.time_ns()),
            session_id=result.session_id,
            project_dir=project_dir,
            started_at=result.started_at,
            ended_at=result.ended_at,
            iterations=result.iterations,
            max_iterations=max_iterations,
            result=result.outcome,
            blocked_reason=result.blocked_reason,
            timeout_message=result.timeout_message,
            balls_complete=result.balls_complete,
            balls_blocked=result.balls_blocked,
            balls_total=result.balls_total,
            total_wait_time=result.total_wait_time,
            output_file=output_file,
        )

    @classmethod
    def interrupted(
        cls,
        session_id: str,
        outcome: RunOutcome,
        started_at: str,
        iterations: int,
        error_message: str = "",
        project_dir: str = "",
        max_iterations: int = 0,
        output_file: str = "",
    ) -> "AgentRunRecord":
        """Build a record for a run that ended by cancellation or error."""
        return cls(
            id=str(time.time_ns()),
            session_id=session_id,
            project_dir=project_dir,
            started_at=started_at,
            ended_at=datetime.now().isoformat(),
            iterations=iterations,
            max_iterations=max_iterations,
            result=outcome,
            error_message=error_message,
            output_file=output_file,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["result"] = self.result.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentRunRecord":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)
