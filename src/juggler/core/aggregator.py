"""Terminal-state aggregation over a set of balls."""

from dataclasses import dataclass
from typing import Dict, Iterable

from ..models.ball import Ball


@dataclass(frozen=True)
class TerminalCounts:
    """Counts of balls that reached a finished state.

    complete includes researched balls; terminal is complete plus blocked.
    """
    terminal: int = 0
    complete: int = 0
    blocked: int = 0
    total: int = 0

    @property
    def all_terminal(self) -> bool:
        return self.terminal == self.total

    def to_dict(self) -> Dict[str, int]:
        return {
            "terminal": self.terminal,
            "complete": self.complete,
            "blocked": self.blocked,
            "total": self.total,
        }


def aggregate_terminal_states(balls: Iterable[Ball]) -> TerminalCounts:
    """Count complete, blocked and total balls."""
    complete = blocked = total = 0
    for ball in balls:
        total += 1
        if ball.is_complete():
            complete += 1
        elif ball.is_blocked():
            blocked += 1
    return TerminalCounts(
        terminal=complete + blocked,
        complete=complete,
        blocked=blocked,
        total=total,
    )


def count_workable(balls: Iterable[Ball]) -> int:
    """Balls the agent can still act on (pending or in progress)."""
    return sum(1 for ball in balls if ball.is_workable())
