"""Data models for juggler."""

from .ball import (
    BallState,
    Priority,
    ModelSize,
    Ball,
    TRANSITIONS,
    new_ball_id,
    short_id,
)
from .session import Session
from .run import (
    RunOutcome,
    RunResult,
    AgentRunRecord,
)

__all__ = [
    # Ball models
    "BallState",
    "Priority",
    "ModelSize",
    "Ball",
    "TRANSITIONS",
    "new_ball_id",
    "short_id",
    # Session models
    "Session",
    # Run models
    "RunOutcome",
    "RunResult",
    "AgentRunRecord",
]
