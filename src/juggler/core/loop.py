"""Agent iteration loop for one session."""

import random
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, List, Optional

from .. import config
from ..exceptions import JugglerError
from ..logger import AgentLogger
from ..models.ball import Ball
from ..models.run import AgentRunRecord, RunOutcome, RunResult
from ..runner.base import AgentRunner, PermissionMode, RunMode, RunOptions, RunnerResult
from ..store.ball_store import BallStore
from ..store.history import AgentHistory
from ..store.session_store import SessionStore
from .aggregator import TerminalCounts, aggregate_terminal_states, count_workable
from .backoff import iteration_delay, overload_wait, rate_limit_wait
from .prompt import PromptGenerator
from .validator import progress_advanced

COUNTDOWN_STEP = 60.0  # seconds between "still waiting" log lines


@dataclass
class RunConfig:
    """Parameters of one orchestrator run."""
    session_id: str
    project_dir: str = "."
    juggle_dir: str = ".juggle"
    ball_id: Optional[str] = None
    max_iterations: int = 10
    permission: PermissionMode = PermissionMode.ACCEPT_EDITS
    mode: RunMode = RunMode.HEADLESS
    model: Optional[str] = None
    timeout: Optional[float] = None  # seconds per iteration
    iteration_delay_minutes: float = 0.0
    iteration_delay_fuzz: float = 0.0
    max_wait: Optional[float] = None  # seconds of rate-limit waiting allowed; None = unlimited
    overload_retry_minutes: float = 10.0

    @classmethod
    def from_env(cls, session_id: str, **overrides) -> "RunConfig":
        """Defaults from juggler.config (environment / .env), then overrides."""
        base = cls(
            session_id=session_id,
            project_dir=str(config.PROJECT_DIR),
            juggle_dir=config.JUGGLE_DIR,
            max_iterations=config.MAX_ITERATIONS,
            permission=PermissionMode.from_string(config.AGENT_PERMISSION),
            mode=RunMode.from_string(config.AGENT_MODE),
            model=config.AGENT_MODEL,
            timeout=config.ITERATION_TIMEOUT_MINUTES * 60 or None,
            iteration_delay_minutes=config.ITERATION_DELAY_MINUTES,
            iteration_delay_fuzz=config.ITERATION_DELAY_FUZZ,
            max_wait=config.MAX_WAIT_MINUTES * 60 or None,
            overload_retry_minutes=config.OVERLOAD_RETRY_MINUTES,
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(base, **overrides)


@dataclass
class _RunState:
    """Mutable bookkeeping while a run is in flight."""
    started_at: str
    iterations: int = 0
    total_wait: float = 0.0
    overload_retries: int = 0
    counts: TerminalCounts = field(default_factory=TerminalCounts)


class Orchestrator:
    """
    Drives the agent over a session until its balls reach terminal states.

    The agent's own signals are only believed when the session progress log
    grew during the iteration; the ball store is checked independently after
    every iteration.
    """

    def __init__(
        self,
        run_config: RunConfig,
        runner: AgentRunner,
        logger: Optional[AgentLogger] = None,
        ball_store: Optional[BallStore] = None,
        session_store: Optional[SessionStore] = None,
        history: Optional[AgentHistory] = None,
        prompt_generator: Optional[PromptGenerator] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            run_config: Run parameters
            runner: Agent runner
            logger: Logger instance (defaults to one configured from juggler.config)
            ball_store: Ball store (defaults to the project's)
            session_store: Session store (defaults to the project's)
            history: Run history (defaults to the project's)
            prompt_generator: Prompt generator (defaults to one over the stores)
            sleep: Blocking sleep used for rate-limit waits and pacing
            rng: Random source for the iteration delay fuzz
        """
        self.config = run_config
        self.runner = runner
        self.logger = logger or AgentLogger(
            log_dir=config.LOG_DIR,
            log_level=config.LOG_LEVEL,
            sync=config.LOG_FSYNC,
        )
        project_dir = run_config.project_dir
        self.ball_store = ball_store or BallStore(project_dir, run_config.juggle_dir, logger=self.logger)
        self.session_store = session_store or SessionStore(project_dir, run_config.juggle_dir)
        self.history = history or AgentHistory(project_dir, run_config.juggle_dir, logger=self.logger)
        self.prompts = prompt_generator or PromptGenerator(self.ball_store, self.session_store)
        self.sleep = sleep
        self.rng = rng
        self._session = None

    # ------------------------------------------------------------------
    # Public API

    def run(self) -> RunResult:
        """
        Run the loop to a terminal outcome.

        Returns:
            RunResult for every outcome, including timeouts, exhausted wait
            budgets and max iterations. Use RunResult.raise_for_outcome() to
            turn the former two into exceptions.

        Raises:
            NotFoundError: The session does not exist
            AlreadyLockedError: Another run holds the session lock
            RunnerError: The agent process could not be started
        """
        cfg = self.config
        self._session = self.session_store.load_session(cfg.session_id)
        lock = self.session_store.acquire_lock(cfg.session_id)
        state = _RunState(started_at=datetime.now().isoformat())

        self.logger.info(
            f"[{cfg.session_id}] Starting agent run "
            f"(max iterations: {cfg.max_iterations}, permission: {cfg.permission.value}, mode: {cfg.mode.value})"
        )
        try:
            result = self._run_locked(state)
        except KeyboardInterrupt:
            self.logger.warning(f"[{cfg.session_id}] Run interrupted after {state.iterations} iterations")
            self._record(AgentRunRecord.interrupted(
                cfg.session_id, RunOutcome.CANCELLED, state.started_at, state.iterations,
                error_message="interrupted", **self._record_context(),
            ))
            raise
        except Exception as e:
            self.logger.log_error_with_traceback(
                "Orchestrator", e,
                context={"session_id": cfg.session_id, "iteration": state.iterations}
            )
            self._record(AgentRunRecord.interrupted(
                cfg.session_id, RunOutcome.ERROR, state.started_at, state.iterations,
                error_message=str(e), **self._record_context(),
            ))
            raise
        finally:
            lock.release()

        self.logger.log_run_result(result)
        self._record(AgentRunRecord.from_result(result, **self._record_context()))
        return result

    # ------------------------------------------------------------------
    # Loop

    def _run_locked(self, state: _RunState) -> RunResult:
        cfg = self.config
        balls = self._target_balls()
        state.counts = aggregate_terminal_states(balls)

        if count_workable(balls) == 0:
            self.logger.info(
                f"[{cfg.session_id}] No workable balls "
                f"({state.counts.complete} complete, {state.counts.blocked} blocked); not starting the agent"
            )
            if state.counts.blocked:
                return self._finish(state, blocked=True, blocked_reason=self._blocked_summary(balls))
            return self._finish(state, complete=True)

        retry_count = 0
        iteration = 1
        while iteration <= cfg.max_iterations:
            state.iterations = iteration
            self.logger.info(f"[{cfg.session_id}] === Iteration {iteration}/{cfg.max_iterations} ===")

            before = self.session_store.progress_line_count(cfg.session_id)
            prompt = self.prompts.generate(cfg.session_id, cfg.ball_id)
            outcome = self._invoke(iteration, prompt)

            if outcome.overload_exhausted or outcome.rate_limited:
                if outcome.overload_exhausted:
                    tag = "OVERLOAD_529"
                    wait = overload_wait(cfg.overload_retry_minutes)
                    state.overload_retries += 1
                    reason = "agent exhausted its retries on API overload"
                else:
                    tag = "RATE_LIMIT"
                    wait = rate_limit_wait(outcome.retry_after, retry_count)
                    retry_count += 1
                    reason = "rate limited"

                if cfg.max_wait and state.total_wait + wait > cfg.max_wait:
                    self._note(
                        tag,
                        f"Iteration {iteration}: {reason}; waiting {wait:.0f}s would exceed "
                        f"max wait of {cfg.max_wait:.0f}s ({state.total_wait:.0f}s already waited), stopping"
                    )
                    return self._finish(state, rate_limit_exceeded=True)

                self._note(tag, f"Iteration {iteration}: {reason}, waiting {wait:.0f}s before retrying")
                self._wait(wait)
                state.total_wait += wait
                # Same iteration index is retried
                continue

            retry_count = 0

            if outcome.timed_out:
                message = outcome.error or "iteration timed out"
                self._note("TIMEOUT", f"Iteration {iteration} timed out: {message}")
                return self._finish(state, timed_out=True, timeout_message=message)

            self._save_output(outcome.output)

            after = self.session_store.progress_line_count(cfg.session_id)
            advanced = progress_advanced(before, after)
            state.counts = aggregate_terminal_states(self._target_balls())
            counts = state.counts

            if advanced and outcome.complete:
                if counts.all_terminal:
                    self.logger.info(f"[{cfg.session_id}] Agent signaled COMPLETE, all {counts.total} balls terminal")
                    return self._finish(state, complete=True)
                self._note(
                    "WARNING",
                    f"Iteration {iteration}: agent signaled COMPLETE but work incomplete "
                    f"({counts.terminal}/{counts.total} balls terminal)"
                )
            elif advanced and outcome.blocked:
                self.logger.info(f"[{cfg.session_id}] Agent signaled BLOCKED: {outcome.blocked_reason}")
                return self._finish(state, blocked=True, blocked_reason=outcome.blocked_reason)
            elif advanced and outcome.continue_:
                self.logger.info(
                    f"[{cfg.session_id}] Agent signaled CONTINUE "
                    f"({counts.complete}/{counts.total} complete)"
                )
            elif outcome.signaled:
                self._note(
                    "WARNING",
                    f"Iteration {iteration}: agent signaled {self._signal_name(outcome)} "
                    f"but no progress recorded; signal ignored"
                )
            elif outcome.error:
                self.logger.warning(f"[{cfg.session_id}] Iteration {iteration}: {outcome.error}")

            if counts.all_terminal:
                self.logger.info(
                    f"[{cfg.session_id}] All {counts.total} balls reached a terminal state "
                    f"({counts.complete} complete, {counts.blocked} blocked)"
                )
                return self._finish(state, complete=True)

            self.logger.info(f"[{cfg.session_id}] Progress: {counts.complete}/{counts.total} balls complete")

            if iteration < cfg.max_iterations:
                delay = iteration_delay(cfg.iteration_delay_minutes, cfg.iteration_delay_fuzz, self.rng)
                if delay > 0:
                    self.logger.info(f"[{cfg.session_id}] Waiting {delay:.0f}s before next iteration")
                    self.sleep(delay)
            iteration += 1

        self.logger.info(f"[{cfg.session_id}] Max iterations ({cfg.max_iterations}) reached")
        return self._finish(state)

    def _invoke(self, iteration: int, prompt: str) -> RunnerResult:
        cfg = self.config
        options = RunOptions(
            prompt=prompt,
            mode=cfg.mode,
            permission=cfg.permission,
            model=cfg.model or self._default_model(),
            timeout=cfg.timeout,
            working_dir=str(self.ball_store.project_dir),
            session_id=cfg.session_id,
        )
        start = time.monotonic()
        outcome = self.runner.run(options)
        try:
            self.logger.log_iteration(
                cfg.session_id,
                iteration,
                prompt,
                outcome.output,
                time.monotonic() - start,
                complete=outcome.complete,
                continue_=outcome.continue_,
                blocked=outcome.blocked,
                rate_limited=outcome.rate_limited,
                overload_exhausted=outcome.overload_exhausted,
                timed_out=outcome.timed_out,
                exit_code=outcome.exit_code,
            )
        except OSError as e:
            self.logger.warning(f"Failed to write iteration log: {e}")
        return outcome

    # ------------------------------------------------------------------
    # Helpers

    def _target_balls(self) -> List[Ball]:
        return self.prompts.target_balls(self.config.session_id, self.config.ball_id)

    def _default_model(self) -> Optional[str]:
        """Model asked for by the targeted ball, else by the session."""
        if self.config.ball_id:
            balls = self._target_balls()
            if balls and balls[0].model_size.model_name():
                return balls[0].model_size.model_name()
        return self._session.default_model.model_name()

    @staticmethod
    def _signal_name(outcome: RunnerResult) -> str:
        if outcome.complete:
            return "COMPLETE"
        if outcome.blocked:
            return "BLOCKED"
        return "CONTINUE"

    @staticmethod
    def _blocked_summary(balls: List[Ball]) -> str:
        reasons = [f"{b.id}: {b.blocked_reason}" for b in balls if b.is_blocked() and b.blocked_reason]
        return "; ".join(reasons) or "all remaining balls are blocked"

    def _note(self, tag: str, message: str) -> None:
        """Write a tagged entry to the progress log and the logger. Best-effort."""
        entry = f"[{tag}] {message}"
        if tag == "WARNING" or tag == "TIMEOUT":
            self.logger.warning(f"[{self.config.session_id}] {entry}")
        else:
            self.logger.info(f"[{self.config.session_id}] {entry}")
        try:
            self.session_store.append_progress(self.config.session_id, entry)
        except (OSError, JugglerError) as e:
            self.logger.warning(f"Failed to write progress entry: {e}")

    def _wait(self, seconds: float) -> None:
        remaining = seconds
        while remaining > 0:
            step = min(COUNTDOWN_STEP, remaining)
            self.logger.info(f"[{self.config.session_id}] Waiting... {remaining:.0f}s remaining")
            self.sleep(step)
            remaining -= step

    def _save_output(self, output: str) -> None:
        try:
            self.session_store.save_output(self.config.session_id, output)
        except OSError as e:
            self.logger.warning(f"Failed to save agent output: {e}")

    def _finish(self, state: _RunState, **flags) -> RunResult:
        counts = state.counts
        return RunResult(
            session_id=self.config.session_id,
            iterations=state.iterations,
            balls_complete=counts.complete,
            balls_blocked=counts.blocked,
            balls_total=counts.total,
            total_wait_time=state.total_wait,
            overload_retries=state.overload_retries,
            started_at=state.started_at,
            ended_at=datetime.now().isoformat(),
            **flags,
        )

    def _record_context(self) -> dict:
        return {
            "project_dir": str(self.ball_store.project_dir),
            "max_iterations": self.config.max_iterations,
            "output_file": str(self.session_store.output_path(self.config.session_id)),
        }

    def _record(self, record: AgentRunRecord) -> None:
        try:
            self.history.append(record)
        except OSError as e:
            self.logger.warning(f"Failed to write agent history: {e}")


def run_agent_loop(run_config: RunConfig, runner: AgentRunner, **kwargs) -> RunResult:
    """Convenience wrapper: build an Orchestrator and run it."""
    return Orchestrator(run_config, runner, **kwargs).run()
