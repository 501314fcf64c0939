"""Session data model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .ball import ModelSize


@dataclass
class Session:
    """A named group of balls sharing context.

    A ball belongs to the session when the session id is one of its tags.
    """
    id: str
    description: str = ""
    context: str = ""
    default_model: ModelSize = ModelSize.BLANK
    acceptance_criteria: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.default_model, ModelSize):
            self.default_model = ModelSize.from_string(self.default_model)
        if self.created_at is None:
            self.created_at = datetime.now().isoformat()
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        data: Dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.context:
            data["context"] = self.context
        if self.default_model != ModelSize.BLANK:
            data["default_model"] = self.default_model.value
        if self.acceptance_criteria:
            data["acceptance_criteria"] = list(self.acceptance_criteria)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        """Create Session from dictionary."""
        # Hand-edited YAML may carry unquoted timestamps, which load as datetime
        created_at = data.get("created_at")
        updated_at = data.get("updated_at")
        if isinstance(created_at, datetime):
            created_at = created_at.isoformat()
        if isinstance(updated_at, datetime):
            updated_at = updated_at.isoformat()
        return cls(
            id=data.get("id", ""),
            description=data.get("description") or "",
            context=data.get("context") or "",
            default_model=ModelSize.from_string(data.get("default_model")),
            acceptance_criteria=list(data.get("acceptance_criteria") or []),
            created_at=created_at,
            updated_at=updated_at,
        )
