"""Durable ball storage under <project>/.juggle/."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..exceptions import NotFoundError, StoreError
from ..models.ball import Ball, BallState, ModelSize, Priority, new_ball_id, short_id
from ..models.session import Session
from .dependencies import detect_circular_dependencies
from .ids import resolve_by_prefix

BALLS_FILE = "balls.jsonl"
ARCHIVE_DIR = "archive"


def write_jsonl_atomic(path: Path, records: Iterable[dict]) -> None:
    """
    Replace a JSONL file with the given records.

    Data is written to a temporary file in the same directory, fsynced and
    renamed over the target, so readers see either the old or the new file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            for record in records:
                f.write(json.dumps(record, ensure_ascii=False) + '\n')
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise StoreError(f"Failed to write {path}: {e}", original_error=e)


class BallStore:
    """Manages the active and archived balls of one project."""

    def __init__(self, project_dir: str = ".", juggle_dir: str = ".juggle", logger=None):
        """
        Initialize BallStore.

        Args:
            project_dir: Project directory; ball ids are prefixed with its name
            juggle_dir: Store directory name inside the project
            logger: AgentLogger or stdlib logger for warnings
        """
        self.project_dir = Path(project_dir).resolve()
        self.juggle_dir = self.project_dir / juggle_dir
        self.balls_path = self.juggle_dir / BALLS_FILE
        self.archive_path = self.juggle_dir / ARCHIVE_DIR / BALLS_FILE
        self.logger = logger or logging.getLogger("juggler")

        self.juggle_dir.mkdir(parents=True, exist_ok=True)
        (self.juggle_dir / ARCHIVE_DIR).mkdir(exist_ok=True)

    # ------------------------------------------------------------------
    # File access

    def _read(self, path: Path) -> List[Ball]:
        if not path.exists():
            return []

        balls = []
        with open(path, 'r', encoding='utf-8') as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    balls.append(Ball.from_dict(json.loads(line)))
                except (json.JSONDecodeError, ValueError, TypeError) as e:
                    self.logger.warning(f"Skipping malformed ball at {path.name}:{lineno}: {e}")
        return balls

    def _write(self, path: Path, balls: List[Ball]) -> None:
        write_jsonl_atomic(path, (b.to_dict() for b in balls))

    def load_balls(self) -> List[Ball]:
        """Load the active balls."""
        return self._read(self.balls_path)

    def load_archive(self) -> List[Ball]:
        """Load archived balls."""
        return self._read(self.archive_path)

    def _all_ids(self) -> set:
        return {b.id for b in self.load_balls()} | {b.id for b in self.load_archive()}

    # ------------------------------------------------------------------
    # Ball CRUD

    def create_ball(
        self,
        title: str,
        priority: Priority = Priority.MEDIUM,
        *,
        session: Optional[Session] = None,
        acceptance_criteria: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        depends_on: Optional[List[str]] = None,
        model_size: Optional[ModelSize] = None,
    ) -> Ball:
        """
        Create and persist a new pending ball.

        When a session is given the ball is tagged with it and inherits the
        session's acceptance criteria and default model unless they are
        passed explicitly.
        """
        existing = self._all_ids()
        ball_id = new_ball_id(str(self.project_dir))
        while ball_id in existing:
            ball_id = new_ball_id(str(self.project_dir))

        ball = Ball(
            id=ball_id,
            title=title,
            priority=Priority.from_string(priority) if isinstance(priority, str) else priority,
            working_dir=str(self.project_dir),
        )
        for tag in tags or []:
            ball.add_tag(tag)

        if session is not None:
            ball.add_tag(session.id)
            if acceptance_criteria is None:
                acceptance_criteria = list(session.acceptance_criteria)
            if model_size is None:
                model_size = session.default_model
        ball.acceptance_criteria = list(acceptance_criteria or [])
        ball.model_size = ModelSize.from_string(model_size) if model_size else ModelSize.BLANK

        balls = self.load_balls()
        if depends_on:
            ball.depends_on = self._resolve_refs(balls, depends_on)
            self._check_graph(balls + [ball])

        balls.append(ball)
        self._write(self.balls_path, balls)
        return ball

    def get_ball(self, ball_id: str) -> Ball:
        """Get an active ball by exact id."""
        for ball in self.load_balls():
            if ball.id == ball_id:
                return ball
        raise NotFoundError("ball", ball_id)

    def resolve_ball(self, query: str, include_archived: bool = False) -> Ball:
        """Resolve a full id, short id or prefix to one ball."""
        balls = self.load_balls()
        if include_archived:
            balls += self.load_archive()
        return resolve_by_prefix(balls, query)

    def save_ball(self, ball: Ball) -> Ball:
        """
        Insert or replace a ball in the active set.

        Every save counts as a mutation: update_count is incremented and
        last_activity refreshed.
        """
        ball.touch()
        balls = self.load_balls()
        for i, existing in enumerate(balls):
            if existing.id == ball.id:
                balls[i] = ball
                break
        else:
            balls.append(ball)
        self._write(self.balls_path, balls)
        return ball

    def update_ball(self, ball_id: str, mutate: Callable[[Ball], None]) -> Ball:
        """Load a ball, apply a mutation and save it."""
        ball = self.get_ball(ball_id)
        mutate(ball)
        return self.save_ball(ball)

    def delete_ball(self, ball_id: str) -> None:
        """Remove a ball from the active set."""
        balls = self.load_balls()
        remaining = [b for b in balls if b.id != ball_id]
        if len(remaining) == len(balls):
            raise NotFoundError("ball", ball_id)
        self._write(self.balls_path, remaining)

    # ------------------------------------------------------------------
    # Archive

    def archive_ball(self, ball: Ball) -> None:
        """Move a ball from the active set to the archive."""
        archive = [b for b in self.load_archive() if b.id != ball.id]
        archive.append(ball)
        self._write(self.archive_path, archive)

        balls = self.load_balls()
        remaining = [b for b in balls if b.id != ball.id]
        if len(remaining) != len(balls):
            self._write(self.balls_path, remaining)

    def complete_ball(self, ball_id: str, note: str = "") -> Ball:
        """Mark an in-progress ball complete and archive it."""
        ball = self.get_ball(ball_id)
        ball.complete(note)
        ball.touch()
        self.archive_ball(ball)
        return ball

    def unarchive_ball(self, ball_id: str) -> Ball:
        """
        Restore an archived ball to the active set as pending.

        Args:
            ball_id: Full or short id of the archived ball

        Raises:
            NotFoundError: The ball is not in the archive
            CycleError: Restoring the ball would close a dependency cycle
        """
        archive = self.load_archive()
        target = None
        for ball in archive:
            if ball.id == ball_id or ball.short_id == ball_id:
                target = ball
                break
        if target is None:
            raise NotFoundError("archived ball", ball_id)

        target.reset_to_pending()
        self._check_graph(self.load_balls() + [target], archive)
        self.save_ball(target)
        self._write(self.archive_path, [b for b in archive if b.id != target.id])
        return target

    # ------------------------------------------------------------------
    # Dependencies

    def _check_graph(self, active: List[Ball], archive: Optional[List[Ball]] = None) -> None:
        """Cycle check over the given active balls and the archive; active records win."""
        if archive is None:
            archive = self.load_archive()
        active_ids = {b.id for b in active}
        detect_circular_dependencies(active + [b for b in archive if b.id not in active_ids])

    def _resolve_refs(self, balls: List[Ball], refs: List[str]) -> List[str]:
        candidates = balls + self.load_archive()
        resolved = []
        for ref in refs:
            dep_id = resolve_by_prefix(candidates, ref).id
            if dep_id not in resolved:
                resolved.append(dep_id)
        return resolved

    def _mutate_dependencies(self, ball_id: str, compute: Callable[[Ball, List[Ball]], List[str]]) -> Ball:
        balls = self.load_balls()
        target = resolve_by_prefix(balls, ball_id)
        proposed = compute(target, balls)

        # Check the graph with the proposed edges before anything is written
        updated = Ball.from_dict(target.to_dict())
        updated.depends_on = proposed
        self._check_graph([updated if b.id == target.id else b for b in balls])

        return self.save_ball(updated)

    def add_dependency(self, ball_id: str, dependency: str) -> Ball:
        """Add a dependency; rejected if it would create a cycle."""
        def compute(target: Ball, balls: List[Ball]) -> List[str]:
            dep_id = self._resolve_refs(balls, [dependency])[0]
            deps = list(target.depends_on)
            if dep_id not in deps:
                deps.append(dep_id)
            return deps

        return self._mutate_dependencies(ball_id, compute)

    def remove_dependency(self, ball_id: str, dependency: str) -> Ball:
        """Remove a dependency."""
        def compute(target: Ball, balls: List[Ball]) -> List[str]:
            for dep in target.depends_on:
                if dep == dependency or short_id(dep) == dependency:
                    return [d for d in target.depends_on if d != dep]
            raise NotFoundError("dependency", dependency)

        return self._mutate_dependencies(ball_id, compute)

    def set_dependencies(self, ball_id: str, dependencies: List[str]) -> Ball:
        """Replace all dependencies of a ball."""
        def compute(target: Ball, balls: List[Ball]) -> List[str]:
            return self._resolve_refs(balls, dependencies)

        return self._mutate_dependencies(ball_id, compute)

    # ------------------------------------------------------------------
    # Queries

    def session_balls(self, session_id: str, include_archived: bool = True) -> List[Ball]:
        """Balls tagged with a session id."""
        balls = [b for b in self.load_balls() if b.has_tag(session_id)]
        if include_archived:
            active_ids = {b.id for b in balls}
            balls += [
                b for b in self.load_archive()
                if b.has_tag(session_id) and b.id not in active_ids
            ]
        return balls

    def balls_in_state(self, state: BallState) -> List[Ball]:
        return [b for b in self.load_balls() if b.state == state]
