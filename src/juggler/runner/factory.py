"""Factory for agent runners."""

from typing import Optional, TYPE_CHECKING

from .base import AgentRunner
from .claude_cli import ClaudeCLIRunner
from .mock import MockRunner

if TYPE_CHECKING:
    from ..logger import AgentLogger


class RunnerFactory:
    """Factory for creating agent runners."""

    @staticmethod
    def create(
        backend: str = "claude",
        project_dir: str = ".",
        command: str = "claude",
        logger: Optional["AgentLogger"] = None,
    ) -> AgentRunner:
        """
        Create an agent runner.

        Args:
            backend: "claude" or "mock"
            project_dir: Working directory for the agent
            command: Executable for the claude backend
            logger: Logger for streaming raw output

        Returns:
            AgentRunner instance
        """
        if backend == "claude":
            return ClaudeCLIRunner(project_dir=project_dir, command=command, logger=logger)
        if backend == "mock":
            return MockRunner()
        raise ValueError(f"Unknown agent backend: {backend}")
