"""Core orchestration: policies, prompt generation and the agent loop."""

from .aggregator import TerminalCounts, aggregate_terminal_states, count_workable
from .backoff import iteration_delay, overload_wait, rate_limit_wait
from .validator import progress_advanced
from .prompt import PromptGenerator
from .loop import Orchestrator, RunConfig, run_agent_loop

__all__ = [
    "TerminalCounts",
    "aggregate_terminal_states",
    "count_workable",
    "iteration_delay",
    "overload_wait",
    "rate_limit_wait",
    "progress_advanced",
    "PromptGenerator",
    "Orchestrator",
    "RunConfig",
    "run_agent_loop",
]
