"""Build the prompt handed to the agent on each iteration."""

from typing import List, Optional

from ..exceptions import NotFoundError
from ..models.ball import Ball, BallState
from ..store.ball_store import BallStore
from ..store.ids import resolve_by_prefix
from ..store.session_store import SessionStore

PROGRESS_TAIL_LINES = 50

_STATE_ORDER = {
    BallState.IN_PROGRESS: 0,
    BallState.PENDING: 1,
    BallState.BLOCKED: 2,
}

SESSION_INSTRUCTIONS = """\
You are working through the balls (tasks) listed above, one at a time.

1. Pick the first ball that is in_progress, otherwise the highest priority
   pending ball whose dependencies are complete.
2. Mark it in progress, implement it, and verify every acceptance criterion
   including the global ones.
3. Append a short entry describing what you did to the session progress log.
   Iterations that add nothing to the progress log are not counted as work.
4. Update the ball state: complete when all criteria pass, blocked with a
   reason when you cannot proceed.

Finish your turn with exactly one signal:
- `<promise>CONTINUE: summary</promise>` - a ball was finished, more remain
- `<promise>COMPLETE: summary</promise>` - every ball is complete
- `<promise>BLOCKED: reason</promise>` - no ball can make progress
"""

TASK_INSTRUCTIONS = """\
You are working on a single task. Complete the acceptance criteria above and
append a short entry to the session progress log describing what you did.

When done, output one of these signals:
- `<promise>COMPLETE</promise>` - Task is finished
- `<promise>BLOCKED: reason</promise>` - Task cannot proceed
"""


def tail_lines(text: str, n: int) -> str:
    """Last n lines of text, without a trailing newline."""
    if not text:
        return ""
    lines = text.splitlines()
    return "\n".join(lines[-n:])


def sort_for_agent(balls: List[Ball]) -> List[Ball]:
    """in_progress first, then pending, then blocked; higher priority first within a state."""
    return sorted(balls, key=lambda b: (_STATE_ORDER.get(b.state, 3), -b.priority.weight()))


def format_ball(ball: Ball) -> str:
    header = f"## {ball.id} [{ball.state.value}] (priority: {ball.priority.value})"
    if ball.model_size.value:
        header += f" (model: {ball.model_size.value})"
    lines = [header, f"Title: {ball.title}"]
    if ball.acceptance_criteria:
        lines.append("Acceptance Criteria:")
        for i, criterion in enumerate(ball.acceptance_criteria, start=1):
            lines.append(f"  {i}. {criterion}")
    if ball.depends_on:
        lines.append(f"Depends On: {', '.join(ball.depends_on)}")
    if ball.state == BallState.BLOCKED and ball.blocked_reason:
        lines.append(f"Blocked: {ball.blocked_reason}")
    if ball.tags:
        lines.append(f"Tags: {', '.join(ball.tags)}")
    return "\n".join(lines) + "\n"


class PromptGenerator:
    """Renders session context, progress and balls into the agent prompt."""

    def __init__(self, ball_store: BallStore, session_store: SessionStore):
        self.ball_store = ball_store
        self.session_store = session_store

    def target_balls(self, session_id: str, ball_id: Optional[str] = None) -> List[Ball]:
        """
        Balls a run works on: one ball when ball_id is given, otherwise every
        ball of the session (archived ones included).
        """
        balls = self.ball_store.session_balls(session_id, include_archived=True)
        if ball_id:
            return [resolve_by_prefix(balls, ball_id)]
        return balls

    def generate(self, session_id: str, ball_id: Optional[str] = None) -> str:
        """
        Build the prompt for one iteration.

        Raises:
            NotFoundError: Unknown session, or ball_id does not match a session ball
        """
        session = self.session_store.load_session(session_id)
        progress = tail_lines(self.session_store.load_progress(session_id), PROGRESS_TAIL_LINES)

        balls = [b for b in self.target_balls(session_id, ball_id) if not b.is_complete()]
        balls = sort_for_agent(balls)
        single = ball_id is not None and len(balls) == 1
        if ball_id is not None and not balls:
            raise NotFoundError("workable ball", ball_id)

        parts = ["<context>\n"]
        if session.description:
            parts.append(f"# {session.description}\n\n")
        if session.context:
            parts.append(session.context.rstrip("\n") + "\n")
        parts.append("</context>\n\n")

        parts.append(f"<session>\n{session_id}\n</session>\n\n")

        parts.append("<progress>\n")
        if progress:
            parts.append(progress + "\n")
        parts.append("</progress>\n\n")

        if session.acceptance_criteria:
            parts.append("<global-acceptance-criteria>\n")
            parts.append("These criteria apply to ALL tasks in this session:\n\n")
            for i, criterion in enumerate(session.acceptance_criteria, start=1):
                parts.append(f"  {i}. {criterion}\n")
            parts.append("</global-acceptance-criteria>\n\n")

        if single:
            parts.append("<task>\nThis is your task:\n\n")
            parts.append(format_ball(balls[0]))
            parts.append("</task>\n\n")
        else:
            parts.append("<balls>\n")
            parts.append("\n".join(format_ball(b) for b in balls))
            parts.append("</balls>\n\n")

        parts.append("<instructions>\n")
        parts.append(TASK_INSTRUCTIONS if single else SESSION_INSTRUCTIONS)
        parts.append("</instructions>\n")

        return "".join(parts)
