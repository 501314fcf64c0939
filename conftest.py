"""Shared fixtures for juggler tests."""

import pytest

from juggler.logger import AgentLogger
from juggler.store.ball_store import BallStore
from juggler.store.history import AgentHistory
from juggler.store.session_store import SessionStore


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "myproj"
    path.mkdir()
    return path


@pytest.fixture
def logger(tmp_path):
    return AgentLogger(log_dir=str(tmp_path / "logs"), log_level="DEBUG")


@pytest.fixture
def ball_store(project_dir, logger):
    return BallStore(str(project_dir), logger=logger)


@pytest.fixture
def session_store(project_dir):
    return SessionStore(str(project_dir))


@pytest.fixture
def history(project_dir):
    return AgentHistory(str(project_dir))


class SleepRecorder:
    """Stand-in for time.sleep that only records durations."""

    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)

    @property
    def total(self):
        return sum(self.calls)


@pytest.fixture
def sleeper():
    return SleepRecorder()
