"""Dependency graph checks for balls."""

from typing import Dict, Iterable, List, Optional

from ..exceptions import CycleError
from ..models.ball import Ball

_VISITING = 1
_VISITED = 2


def detect_circular_dependencies(balls: Iterable[Ball]) -> None:
    """
    Check the depends_on graph for cycles.

    Dependencies are looked up by full id first, then by short id. Ids that
    do not belong to the candidate set are ignored.

    Raises:
        CycleError: The graph contains a cycle; the error carries its path
    """
    balls = list(balls)
    by_id: Dict[str, Ball] = {}
    by_short: Dict[str, Ball] = {}
    for ball in balls:
        by_id[ball.id] = ball
        by_short.setdefault(ball.short_id, ball)

    def lookup(ref: str) -> Optional[Ball]:
        return by_id.get(ref) or by_short.get(ref)

    marks: Dict[str, int] = {}
    stack: List[str] = []

    def visit(ball: Ball) -> None:
        marks[ball.id] = _VISITING
        stack.append(ball.id)
        for ref in ball.depends_on:
            dep = lookup(ref)
            if dep is None:
                continue
            mark = marks.get(dep.id)
            if mark == _VISITING:
                start = stack.index(dep.id)
                raise CycleError(stack[start:] + [dep.id])
            if mark is None:
                visit(dep)
        stack.pop()
        marks[ball.id] = _VISITED

    for ball in balls:
        if ball.id not in marks:
            visit(ball)
