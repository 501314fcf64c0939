"""Abstract agent runner and its request/response types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RunMode(str, Enum):
    """How the agent process is attached to the terminal."""
    HEADLESS = "headless"
    INTERACTIVE = "interactive"

    @classmethod
    def from_string(cls, value: str) -> "RunMode":
        try:
            return cls(value.lower())
        except (AttributeError, ValueError):
            return cls.HEADLESS


class PermissionMode(str, Enum):
    """How much the agent may do without asking."""
    ACCEPT_EDITS = "acceptEdits"
    PLAN = "plan"
    BYPASS = "bypass"

    @classmethod
    def from_string(cls, value: str) -> "PermissionMode":
        aliases = {
            "acceptedits": cls.ACCEPT_EDITS,
            "accept_edits": cls.ACCEPT_EDITS,
            "plan": cls.PLAN,
            "bypass": cls.BYPASS,
            "trust": cls.BYPASS,
        }
        return aliases.get((value or "").lower(), cls.ACCEPT_EDITS)


@dataclass
class RunOptions:
    """Input for one agent invocation."""
    prompt: str
    mode: RunMode = RunMode.HEADLESS
    permission: PermissionMode = PermissionMode.ACCEPT_EDITS
    model: Optional[str] = None
    timeout: Optional[float] = None  # seconds; None or 0 = no timeout
    working_dir: Optional[str] = None
    system_prompt: Optional[str] = None
    session_id: str = ""


@dataclass
class RunnerResult:
    """Output of one agent invocation plus the signals parsed from it.

    Signals are the agent's own claims; the orchestrator checks them against
    the progress log before acting on them.
    """
    output: str = ""
    exit_code: int = 0
    error: str = ""
    complete: bool = False
    continue_: bool = False
    blocked: bool = False
    blocked_reason: str = ""
    commit_message: str = ""
    rate_limited: bool = False
    retry_after: Optional[float] = None  # seconds
    overload_exhausted: bool = False
    timed_out: bool = False

    @property
    def signaled(self) -> bool:
        return self.complete or self.continue_ or self.blocked


class AgentRunner(ABC):
    """Abstract base class for agent runners.

    This interface allows switching between the claude CLI and test doubles.
    """

    @abstractmethod
    def run(self, options: RunOptions) -> RunnerResult:
        """
        Invoke the agent once.

        Args:
            options: Prompt and invocation settings

        Returns:
            Output and parsed signals. Timeouts and rate limits are reported
            in the result, not raised.

        Raises:
            RunnerError: The agent process could not be started
        """
        pass
