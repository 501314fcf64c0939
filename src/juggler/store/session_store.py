"""Session storage: session.yaml, progress log and last agent output."""

import fcntl
import shutil
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import yaml

from ..exceptions import JugglerError, NotFoundError, SessionExistsError, StoreCorruptionError
from ..models.ball import ModelSize
from ..models.session import Session
from .lock import SessionLock, acquire_session_lock, is_session_locked

SESSIONS_DIR = "sessions"
SESSION_FILE = "session.yaml"
PROGRESS_FILE = "progress.txt"
OUTPUT_FILE = "last_output.txt"


def validate_session_id(session_id: str) -> None:
    if not session_id or not session_id.strip():
        raise JugglerError("session id must not be empty")
    if "/" in session_id or "\\" in session_id or session_id.startswith("."):
        raise JugglerError(f"invalid session id: {session_id}")


class SessionStore:
    """Manages sessions under <project>/.juggle/sessions/<id>/."""

    def __init__(self, project_dir: str = ".", juggle_dir: str = ".juggle"):
        """
        Initialize SessionStore.

        Args:
            project_dir: Project directory
            juggle_dir: Store directory name inside the project
        """
        self.project_dir = Path(project_dir).resolve()
        self.sessions_dir = self.project_dir / juggle_dir / SESSIONS_DIR
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def session_dir(self, session_id: str) -> Path:
        validate_session_id(session_id)
        return self.sessions_dir / session_id

    def progress_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / PROGRESS_FILE

    def output_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / OUTPUT_FILE

    # ------------------------------------------------------------------
    # Sessions

    def create_session(
        self,
        session_id: str,
        description: str = "",
        context: str = "",
        default_model: Optional[ModelSize] = None,
        acceptance_criteria: Optional[List[str]] = None,
    ) -> Session:
        """
        Create a session directory with an empty progress log.

        Raises:
            SessionExistsError: The session already exists
        """
        session_dir = self.session_dir(session_id)
        if (session_dir / SESSION_FILE).exists():
            raise SessionExistsError(session_id)
        session_dir.mkdir(parents=True, exist_ok=True)

        session = Session(
            id=session_id,
            description=description,
            context=context,
            default_model=default_model or ModelSize.BLANK,
            acceptance_criteria=list(acceptance_criteria or []),
        )
        self._write_session(session)
        (session_dir / PROGRESS_FILE).touch()
        return session

    def _write_session(self, session: Session) -> None:
        path = self.session_dir(session.id) / SESSION_FILE
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(
                session.to_dict(),
                f,
                allow_unicode=True,
                default_flow_style=False,
                sort_keys=False
            )

    def load_session(self, session_id: str) -> Session:
        """
        Load a session.

        Raises:
            NotFoundError: The session does not exist
            StoreCorruptionError: session.yaml cannot be parsed
        """
        path = self.session_dir(session_id) / SESSION_FILE
        if not path.exists():
            raise NotFoundError("session", session_id)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise StoreCorruptionError(str(path), e)
        if not isinstance(data, dict):
            raise StoreCorruptionError(str(path))
        data.setdefault("id", session_id)
        return Session.from_dict(data)

    def session_exists(self, session_id: str) -> bool:
        return (self.session_dir(session_id) / SESSION_FILE).exists()

    def update_session(self, session: Session) -> Session:
        """Persist changes to an existing session."""
        if not self.session_exists(session.id):
            raise NotFoundError("session", session.id)
        session.updated_at = datetime.now().isoformat()
        self._write_session(session)
        return session

    def list_sessions(self) -> List[Session]:
        """All sessions, sorted by id."""
        sessions = []
        for path in sorted(self.sessions_dir.glob(f"*/{SESSION_FILE}")):
            sessions.append(self.load_session(path.parent.name))
        return sessions

    def delete_session(self, session_id: str) -> None:
        """Remove a session directory and everything in it."""
        session_dir = self.session_dir(session_id)
        if not session_dir.exists():
            raise NotFoundError("session", session_id)
        shutil.rmtree(session_dir)

    # ------------------------------------------------------------------
    # Progress log

    @contextmanager
    def _progress_lock(self, session_id: str):
        lock_path = self.session_dir(session_id) / f"{PROGRESS_FILE}.lock"
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(lock_path, 'w') as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def append_progress(self, session_id: str, entry: str) -> None:
        """
        Append an entry to the session's progress log.

        The log is append-only; an entry always starts on a fresh line.
        """
        if not self.session_exists(session_id):
            raise NotFoundError("session", session_id)
        path = self.progress_path(session_id)
        with self._progress_lock(session_id):
            needs_newline = path.exists() and path.stat().st_size > 0 and not self._ends_with_newline(path)
            with open(path, 'a', encoding='utf-8') as f:
                if needs_newline:
                    f.write('\n')
                f.write(entry)
                if not entry.endswith('\n'):
                    f.write('\n')

    @staticmethod
    def _ends_with_newline(path: Path) -> bool:
        with open(path, 'rb') as f:
            f.seek(-1, 2)
            return f.read(1) == b'\n'

    def load_progress(self, session_id: str) -> str:
        path = self.progress_path(session_id)
        if not path.exists():
            return ""
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def progress_line_count(self, session_id: str) -> int:
        """Number of lines in the progress log; 0 when it does not exist."""
        return len(self.load_progress(session_id).splitlines())

    def clear_progress(self, session_id: str) -> None:
        """Truncate the progress log. Not used during a run."""
        if not self.session_exists(session_id):
            raise NotFoundError("session", session_id)
        with self._progress_lock(session_id):
            self.progress_path(session_id).write_text("", encoding='utf-8')

    # ------------------------------------------------------------------
    # Run artifacts

    def save_output(self, session_id: str, output: str) -> Path:
        """Overwrite the last agent output artifact."""
        path = self.output_path(session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(output)
        return path

    def acquire_lock(self, session_id: str) -> SessionLock:
        return acquire_session_lock(self.session_dir(session_id), session_id)

    def is_locked(self, session_id: str) -> bool:
        return is_session_locked(self.session_dir(session_id))
