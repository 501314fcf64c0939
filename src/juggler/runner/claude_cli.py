"""Claude CLI runner implementation."""

import subprocess
import sys
import threading
from pathlib import Path
from typing import List, Optional, TYPE_CHECKING

from ..exceptions import RunnerError
from .base import AgentRunner, PermissionMode, RunMode, RunOptions, RunnerResult
from .signals import parse_signals

if TYPE_CHECKING:
    from ..logger import AgentLogger

# Seconds to wait for the stdin/stdout pump threads once the agent exited
OUTPUT_JOIN_TIMEOUT = 5


def permission_flags(permission: PermissionMode) -> List[str]:
    """Map a permission level to claude CLI flags."""
    if permission == PermissionMode.BYPASS:
        return ["--dangerously-skip-permissions"]
    if permission == PermissionMode.PLAN:
        return ["--permission-mode", "plan"]
    return ["--permission-mode", "acceptEdits"]


class ClaudeCLIRunner(AgentRunner):
    """Runs the agent through the `claude` command line tool."""

    def __init__(
        self,
        project_dir: str = ".",
        command: str = "claude",
        logger: Optional["AgentLogger"] = None,
        echo: bool = True,
    ):
        """
        Initialize Claude CLI runner.

        Args:
            project_dir: Working directory for the agent process
            command: Executable name or path
            logger: Logger used to stream raw output to a log file
            echo: Mirror agent output to stdout while it runs
        """
        self.project_dir = Path(project_dir).resolve()
        if not self.project_dir.is_dir():
            raise NotADirectoryError(f"Project directory does not exist: {self.project_dir}")
        self.command = command
        self.logger = logger
        self.echo = echo

    def build_command(self, options: RunOptions) -> List[str]:
        """Command line for an invocation; headless mode reads the prompt from stdin."""
        cmd = [self.command, "--disable-slash-commands"]
        if options.system_prompt:
            cmd.extend(["--append-system-prompt", options.system_prompt])
        if options.model:
            cmd.extend(["--model", options.model])
        cmd.extend(permission_flags(options.permission))
        if options.mode == RunMode.INTERACTIVE:
            cmd.append(options.prompt)
        else:
            cmd.extend(["-p", "-"])
        return cmd

    def run(self, options: RunOptions) -> RunnerResult:
        if options.mode == RunMode.INTERACTIVE:
            return self._run_interactive(options)
        return self._run_headless(options)

    def _cwd(self, options: RunOptions) -> str:
        return str(Path(options.working_dir).resolve()) if options.working_dir else str(self.project_dir)

    def _start(self, cmd: List[str], **popen_kwargs) -> subprocess.Popen:
        try:
            return subprocess.Popen(cmd, **popen_kwargs)
        except FileNotFoundError as e:
            raise RunnerError(
                f"Agent command not found: {self.command}. "
                "Install the claude CLI or set AGENT_COMMAND.",
                original_error=e
            )
        except OSError as e:
            raise RunnerError(f"Failed to start {self.command}: {e}", original_error=e)

    def _run_headless(self, options: RunOptions) -> RunnerResult:
        cmd = self.build_command(options)
        command_str = ' '.join(cmd)

        log_stream = None
        if self.logger:
            try:
                log_stream = self.logger.start_output_stream(options.session_id or "agent", command_str)
            except OSError as log_error:
                self.logger.warning(f"Failed to start output log stream: {log_error}")

        # stdout and stderr are merged into a single stream
        process = self._start(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            cwd=self._cwd(options),
            bufsize=1,
        )

        collected_output: List[str] = []

        def _writer():
            try:
                process.stdin.write(options.prompt)
            except BrokenPipeError:
                pass
            finally:
                try:
                    process.stdin.close()
                except BrokenPipeError:
                    pass

        def _reader():
            if process.stdout is None:
                return
            for line in process.stdout:
                collected_output.append(line)
                if self.echo:
                    sys.stdout.write(line)
                    sys.stdout.flush()
                if log_stream:
                    try:
                        log_stream.write(line)
                    except OSError:
                        # Log file trouble must not break the run
                        pass

        writer_thread = threading.Thread(target=_writer, daemon=True)
        reader_thread = threading.Thread(target=_reader, daemon=True)
        writer_thread.start()
        reader_thread.start()

        timeout = options.timeout or None
        result = RunnerResult()
        try:
            result.exit_code = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            result.timed_out = True
            result.error = f"iteration timed out after {timeout:g}s"
        finally:
            writer_thread.join(timeout=OUTPUT_JOIN_TIMEOUT)
            reader_thread.join(timeout=OUTPUT_JOIN_TIMEOUT)
            if reader_thread.is_alive() and self.logger:
                # A child of the agent still holds stdout open
                self.logger.warning(
                    f"Agent output reader still running {OUTPUT_JOIN_TIMEOUT}s after exit; output may be truncated"
                )
            if log_stream:
                log_stream.close()

        result.output = ''.join(collected_output)
        if result.timed_out:
            return result

        if result.exit_code != 0:
            result.error = f"{self.command} exited with code {result.exit_code}"
        return parse_signals(result)

    def _run_interactive(self, options: RunOptions) -> RunnerResult:
        """Run with the terminal attached; output is not captured."""
        cmd = self.build_command(options)
        process = self._start(cmd, cwd=self._cwd(options))

        timeout = options.timeout or None
        result = RunnerResult()
        try:
            result.exit_code = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            result.timed_out = True
            result.error = f"session timed out after {timeout:g}s"
            return result

        if result.exit_code != 0:
            result.error = f"{self.command} exited with code {result.exit_code}"
        return result
