"""Advisory per-session lock so only one agent runs a session at a time."""

import fcntl
import json
import os
import socket
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..exceptions import AlreadyLockedError, StoreError

LOCK_FILE = "agent.lock"
LOCK_INFO_FILE = "agent.lock.info"


def read_lock_info(session_dir: Path) -> Optional[Dict[str, Any]]:
    """Read the holder metadata written next to a lock file."""
    info_path = Path(session_dir) / LOCK_INFO_FILE
    try:
        with open(info_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError):
        return None


class SessionLock:
    """
    Exclusive flock held on <session_dir>/agent.lock.

    The kernel drops the lock when the process exits, so a crashed run never
    leaves a session locked. agent.lock itself is never deleted: every run
    must flock the same inode. Use as a context manager or call release().
    """

    def __init__(self, session_id: str, session_dir: Path, fd: int):
        self.session_id = session_id
        self.session_dir = Path(session_dir)
        self.lock_path = self.session_dir / LOCK_FILE
        self.info_path = self.session_dir / LOCK_INFO_FILE
        self._fd: Optional[int] = fd

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        """Release the lock. Safe to call more than once."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
            try:
                self.info_path.unlink()
            except FileNotFoundError:
                pass

    def __enter__(self) -> "SessionLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def acquire_session_lock(session_dir: Path, session_id: str) -> SessionLock:
    """
    Take the session lock without waiting.

    Args:
        session_dir: Directory of the session (.juggle/sessions/<id>)
        session_id: Session id, used in error messages

    Returns:
        A held SessionLock

    Raises:
        AlreadyLockedError: Another run holds the lock
    """
    session_dir = Path(session_dir)
    session_dir.mkdir(parents=True, exist_ok=True)
    lock_path = session_dir / LOCK_FILE

    try:
        fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR, 0o644)
    except OSError as e:
        raise StoreError(f"Failed to open lock file {lock_path}: {e}", original_error=e)

    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        os.close(fd)
        info = read_lock_info(session_dir) or {}
        raise AlreadyLockedError(session_id, pid=info.get("pid"), hostname=info.get("hostname", ""))

    info = {
        "pid": os.getpid(),
        "hostname": socket.gethostname(),
        "started_at": datetime.now().isoformat(),
    }
    lock = SessionLock(session_id, session_dir, fd)
    try:
        with open(lock.info_path, 'w', encoding='utf-8') as f:
            json.dump(info, f)
    except OSError as e:
        lock.release()
        raise StoreError(f"Failed to write lock info for session {session_id}: {e}", original_error=e)

    return lock


def is_session_locked(session_dir: Path) -> bool:
    """Probe whether a run currently holds the session lock."""
    lock_path = Path(session_dir) / LOCK_FILE
    if not lock_path.exists():
        return False
    try:
        fd = os.open(str(lock_path), os.O_RDWR)
    except FileNotFoundError:
        return False
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return True
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)
        return False
    finally:
        os.close(fd)
