"""Scripted runner for tests and dry runs."""

from typing import Callable, List, Optional

from .base import AgentRunner, RunOptions, RunnerResult

Effect = Optional[Callable[[RunOptions], None]]


class MockRunner(AgentRunner):
    """
    Returns queued results in order and records every call.

    Each result can be paired with an effect, a callable run before the
    result is returned. Tests use effects to play the agent's part: append
    to the progress log, change ball states.
    """

    def __init__(self, *results: RunnerResult, effects: Optional[List[Effect]] = None):
        self.results: List[RunnerResult] = list(results)
        self.effects: List[Effect] = list(effects or [])
        self.calls: List[RunOptions] = []

    def run(self, options: RunOptions) -> RunnerResult:
        index = len(self.calls)
        self.calls.append(options)

        if index < len(self.effects) and self.effects[index] is not None:
            self.effects[index](options)

        if index < len(self.results):
            return self.results[index]
        return RunnerResult(blocked=True, blocked_reason="MockRunner exhausted")

    def reset(self) -> None:
        self.calls = []
