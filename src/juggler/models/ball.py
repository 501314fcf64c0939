"""Ball (task) data model and state machine."""

import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import InvalidStateTransitionError


class BallState(str, Enum):
    """Ball state enumeration."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETE = "complete"
    RESEARCHED = "researched"

    @classmethod
    def from_string(cls, value: str) -> "BallState":
        """Create from string, defaulting to PENDING if invalid."""
        try:
            return cls(value.lower())
        except (AttributeError, ValueError):
            return cls.PENDING


class Priority(str, Enum):
    """Ball priority enumeration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def from_string(cls, value: str) -> "Priority":
        """Create from string, defaulting to MEDIUM if invalid."""
        try:
            return cls(value.lower())
        except (AttributeError, ValueError):
            return cls.MEDIUM

    def weight(self) -> int:
        """Numeric weight (higher is more important)."""
        weight_map = {
            Priority.LOW: 1,
            Priority.MEDIUM: 2,
            Priority.HIGH: 3,
            Priority.URGENT: 4,
        }
        return weight_map.get(self, 2)


class ModelSize(str, Enum):
    """Preferred model size for working on a ball."""
    BLANK = ""
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "ModelSize":
        """Create from string; accepts sizes and model names, blank if unknown."""
        if not value:
            return cls.BLANK
        value = value.lower()
        aliases = {"haiku": cls.SMALL, "sonnet": cls.MEDIUM, "opus": cls.LARGE}
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            return cls.BLANK

    def model_name(self) -> Optional[str]:
        """Model name understood by the claude CLI, None for blank."""
        return {
            ModelSize.SMALL: "haiku",
            ModelSize.MEDIUM: "sonnet",
            ModelSize.LARGE: "opus",
        }.get(self)


# Allowed ball state transitions
TRANSITIONS = {
    BallState.PENDING: {BallState.IN_PROGRESS},
    BallState.IN_PROGRESS: {BallState.BLOCKED, BallState.COMPLETE, BallState.RESEARCHED},
    BallState.BLOCKED: {BallState.IN_PROGRESS},
    BallState.COMPLETE: set(),
    BallState.RESEARCHED: set(),
}

WORKABLE_STATES = (BallState.PENDING, BallState.IN_PROGRESS)


def new_ball_id(project_dir: str) -> str:
    """Generate a ball id of the form <project-name>-<8 hex chars>."""
    project_name = os.path.basename(os.path.normpath(str(project_dir))) or "juggle"
    return f"{project_name}-{uuid.uuid4().hex[:8]}"


def short_id(ball_id: str) -> str:
    """Return the part of a ball id after its last hyphen."""
    return ball_id.rsplit("-", 1)[-1]


@dataclass
class Ball:
    """A unit of agent work."""
    id: str
    title: str
    priority: Priority = Priority.MEDIUM
    state: BallState = BallState.PENDING
    acceptance_criteria: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    blocked_reason: str = ""
    output: str = ""
    completion_note: str = ""
    depends_on: List[str] = field(default_factory=list)
    model_size: ModelSize = ModelSize.BLANK
    working_dir: str = ""
    started_at: Optional[str] = None
    last_activity: Optional[str] = None
    completed_at: Optional[str] = None
    update_count: int = 0

    def __post_init__(self):
        """Normalize enum fields and fill timestamps."""
        if not isinstance(self.priority, Priority):
            self.priority = Priority.from_string(self.priority)
        if not isinstance(self.state, BallState):
            self.state = BallState.from_string(self.state)
        if not isinstance(self.model_size, ModelSize):
            self.model_size = ModelSize.from_string(self.model_size)
        if self.started_at is None:
            self.started_at = datetime.now().isoformat()
        if self.last_activity is None:
            self.last_activity = self.started_at

    @property
    def short_id(self) -> str:
        return short_id(self.id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            "id": self.id,
            "title": self.title,
            "priority": self.priority.value,
            "state": self.state.value,
            "started_at": self.started_at,
            "last_activity": self.last_activity,
            "update_count": self.update_count,
        }

        # Only include optional fields if they have values
        if self.acceptance_criteria:
            data["acceptance_criteria"] = list(self.acceptance_criteria)
        if self.tags:
            data["tags"] = list(self.tags)
        if self.blocked_reason:
            data["blocked_reason"] = self.blocked_reason
        if self.output:
            data["output"] = self.output
        if self.completion_note:
            data["completion_note"] = self.completion_note
        if self.depends_on:
            data["depends_on"] = list(self.depends_on)
        if self.model_size != ModelSize.BLANK:
            data["model_size"] = self.model_size.value
        if self.working_dir:
            data["working_dir"] = self.working_dir
        if self.completed_at:
            data["completed_at"] = self.completed_at

        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ball":
        """Create Ball from dictionary."""
        if not data.get("id"):
            raise ValueError("ball record has no id")
        return cls(
            id=data["id"],
            # Older records stored the title as "intent"
            title=data.get("title") or data.get("intent", ""),
            priority=Priority.from_string(data.get("priority", "medium")),
            state=BallState.from_string(data.get("state", "pending")),
            acceptance_criteria=list(data.get("acceptance_criteria") or []),
            tags=list(dict.fromkeys(data.get("tags") or [])),
            blocked_reason=data.get("blocked_reason", ""),
            output=data.get("output", ""),
            completion_note=data.get("completion_note", ""),
            depends_on=list(data.get("depends_on") or []),
            model_size=ModelSize.from_string(data.get("model_size")),
            working_dir=data.get("working_dir", ""),
            started_at=data.get("started_at"),
            last_activity=data.get("last_activity"),
            completed_at=data.get("completed_at"),
            update_count=int(data.get("update_count", 0)),
        )

    def is_workable(self) -> bool:
        """Pending or in progress: something the agent can still act on."""
        return self.state in WORKABLE_STATES

    def is_complete(self) -> bool:
        """Complete or researched."""
        return self.state in (BallState.COMPLETE, BallState.RESEARCHED)

    def is_blocked(self) -> bool:
        return self.state == BallState.BLOCKED

    def is_terminal(self) -> bool:
        return self.is_complete() or self.is_blocked()

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def add_tag(self, tag: str) -> None:
        if tag and tag not in self.tags:
            self.tags.append(tag)

    def remove_tag(self, tag: str) -> None:
        if tag in self.tags:
            self.tags.remove(tag)

    def touch(self) -> None:
        """Record a mutating write."""
        self.last_activity = datetime.now().isoformat()
        self.update_count += 1

    def _transition(self, target: BallState, reason: str = "") -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(self.id, self.state.value, target.value, reason)
        self.state = target

    def start(self) -> None:
        """pending -> in_progress"""
        self._transition(BallState.IN_PROGRESS)

    def block(self, reason: str) -> None:
        """in_progress -> blocked; a reason is required."""
        if not reason or not reason.strip():
            raise InvalidStateTransitionError(
                self.id, self.state.value, BallState.BLOCKED.value, "blocked reason is required"
            )
        self._transition(BallState.BLOCKED)
        self.blocked_reason = reason.strip()

    def resume(self) -> None:
        """blocked -> in_progress"""
        self._transition(BallState.IN_PROGRESS)
        self.blocked_reason = ""

    def complete(self, note: str = "") -> None:
        """
        in_progress -> complete.

        The store archives completed balls; use BallStore.complete_ball
        instead of calling this directly on a stored ball.
        """
        self._transition(BallState.COMPLETE)
        self.completed_at = datetime.now().isoformat()
        self.completion_note = note

    def mark_researched(self, output: str) -> None:
        """in_progress -> researched, recording the findings."""
        self._transition(BallState.RESEARCHED)
        self.output = output
        self.completed_at = datetime.now().isoformat()

    def transition_to(self, target: BallState, reason: str = "", output: str = "") -> None:
        """Apply a transition by target state."""
        target = BallState(target)
        if target == BallState.IN_PROGRESS and self.state == BallState.BLOCKED:
            self.resume()
        elif target == BallState.IN_PROGRESS:
            self.start()
        elif target == BallState.BLOCKED:
            self.block(reason)
        elif target == BallState.COMPLETE:
            self.complete(reason)
        elif target == BallState.RESEARCHED:
            self.mark_researched(output)
        else:
            raise InvalidStateTransitionError(self.id, self.state.value, target.value)

    def reset_to_pending(self) -> None:
        """Restore an archived ball to the active set's initial state."""
        self.state = BallState.PENDING
        self.completed_at = None
        self.completion_note = ""
        self.blocked_reason = ""
