"""Agent runner layer.

Runners invoke the external coding agent and report its output together
with the signals parsed from it.
"""

from .base import AgentRunner, PermissionMode, RunMode, RunOptions, RunnerResult
from .claude_cli import ClaudeCLIRunner
from .mock import MockRunner
from .factory import RunnerFactory
from .signals import parse_signals, parse_retry_after

__all__ = [
    "AgentRunner",
    "PermissionMode",
    "RunMode",
    "RunOptions",
    "RunnerResult",
    "ClaudeCLIRunner",
    "MockRunner",
    "RunnerFactory",
    "parse_signals",
    "parse_retry_after",
]
