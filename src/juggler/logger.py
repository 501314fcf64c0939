"""Logging utilities for juggler."""

import json
import logging
import os
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models.run import RunResult


class AgentLogger:
    """Logger for agent runs: console, rotating text log and JSONL records."""

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: str = "INFO",
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        sync: bool = False,
        name: str = "juggler",
    ):
        """
        Initialize logger.

        Args:
            log_dir: Directory for log files
            log_level: Log level (DEBUG, INFO, WARNING, ERROR)
            max_bytes: Maximum size of log file before rotation (default: 10MB)
            backup_count: Number of backup files to keep (default: 5)
            sync: Flush and fsync JSONL writes so they are visible immediately
            name: Name of the underlying stdlib logger
        """
        self.log_dir = Path(log_dir)
        self.sync = sync
        self.log_dir.mkdir(parents=True, exist_ok=True)
        level = getattr(logging, log_level.upper())

        log_file = self.log_dir / f"run_{datetime.now().strftime('%Y%m%d')}.log"
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )

        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
        )

        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        # A second AgentLogger for the same name replaces the previous handlers
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        self.logger.addHandler(file_handler)
        self.logger.addHandler(console_handler)
        self.logger.propagate = False

    def _flush_and_sync(self, file_obj) -> None:
        """Ensure log contents are flushed to disk when sync is enabled."""
        if not self.sync:
            return
        try:
            file_obj.flush()
            os.fsync(file_obj.fileno())
        except OSError:
            # Some filesystems do not support fsync
            pass

    def _append_jsonl(self, prefix: str, entry: Dict[str, Any]) -> None:
        log_file = self.log_dir / f"{prefix}_{datetime.now().strftime('%Y%m%d')}.jsonl"
        with open(log_file, 'a', encoding='utf-8') as f:
            f.write(json.dumps(entry, ensure_ascii=False) + '\n')
            self._flush_and_sync(f)

    def log_iteration(
        self,
        session_id: str,
        iteration: int,
        prompt: str,
        output: str,
        duration: float,
        **kwargs
    ) -> None:
        """
        Log a single runner invocation.

        Args:
            session_id: Session the run belongs to
            iteration: Iteration number
            prompt: Prompt sent to the agent
            output: Output received
            duration: Duration in seconds
            **kwargs: Additional metadata (signals, rate limit flags...)
        """
        entry = {
            'timestamp': datetime.now().isoformat(),
            'session_id': session_id,
            'iteration': iteration,
            'prompt_length': len(prompt),
            'output_length': len(output),
            'duration_seconds': round(duration, 3),
            **kwargs
        }
        self._append_jsonl("iterations", entry)

        self.logger.info(
            f"[{session_id}] Iteration {iteration} finished in {duration:.2f}s "
            f"(prompt: {len(prompt)} chars, output: {len(output)} chars)"
        )

    def log_run_result(self, result: "RunResult") -> None:
        """Log the summary of a finished run."""
        entry = {
            'timestamp': datetime.now().isoformat(),
            **result.to_dict(),
        }
        self._append_jsonl("runs", entry)

        self.logger.info(
            f"[{result.session_id}] Run finished: {result.outcome.value} after "
            f"{result.iterations} iterations, "
            f"{result.balls_complete}/{result.balls_total} complete, "
            f"{result.balls_blocked} blocked, waited {result.total_wait_time:.0f}s"
        )

    def log_error_with_traceback(
        self,
        component: str,
        error: Exception,
        context: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log error with full traceback and context.

        Args:
            component: Name of the component that failed
            error: Exception that occurred
            context: Additional context information
        """
        entry = {
            'timestamp': datetime.now().isoformat(),
            'component': component,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': traceback.format_exc(),
            'context': context or {}
        }
        self._append_jsonl("errors", entry)

        self.logger.error(f"[{component}] Error: {type(error).__name__}: {error}")
        self.logger.debug(f"[{component}] Traceback:\n{traceback.format_exc()}")

    def info(self, message: str) -> None:
        """Log info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log debug message."""
        self.logger.debug(message)

    def exception(self, message: str, exc_info: bool = True) -> None:
        """Log exception with traceback."""
        self.logger.exception(message, exc_info=exc_info)

    def start_output_stream(
        self,
        session_id: str,
        command: Optional[str] = None
    ) -> "_OutputLogStream":
        """
        Start a log file for raw agent output.
        Returns a stream object that can be written to incrementally.
        """
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S_%f')
        safe_session = "".join(c if c.isalnum() or c in ('-', '_') else '_' for c in session_id)
        log_file = self.log_dir / f"agent_{safe_session}_{timestamp}.log"

        stream = _OutputLogStream(log_file=log_file, logger=self)
        stream.write(f"Session: {session_id}\n")
        stream.write(f"Timestamp: {datetime.now().isoformat()}\n")
        if command:
            stream.write(f"Command: {command}\n")
        stream.write(f"{'=' * 60}\n\n")
        return stream


class _OutputLogStream:
    """Streaming writer for agent output log files."""

    def __init__(self, log_file: Path, logger: AgentLogger):
        self.log_file = log_file
        self._logger = logger
        self._file = open(log_file, 'w', encoding='utf-8')
        self._closed = False

    def write(self, text: str) -> None:
        if self._closed:
            return
        self._file.write(text)
        self._logger._flush_and_sync(self._file)

    def close(self) -> None:
        if self._closed:
            return
        self._file.write(f"\n{'=' * 60}\n")
        self._file.write("End of output\n")
        self._logger._flush_and_sync(self._file)
        self._file.close()
        self._closed = True
