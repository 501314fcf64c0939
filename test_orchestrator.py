"""Tests for the agent iteration loop.

The agent is played by MockRunner: each scripted result can carry an effect
that writes to the progress log and changes ball states the way a real agent
would during its turn.
"""

import pytest

from juggler.core.loop import Orchestrator, RunConfig
from juggler.exceptions import (
    AlreadyLockedError,
    IterationTimeoutError,
    NotFoundError,
    RateLimitBudgetExceededError,
)
from juggler.models import BallState, ModelSize, RunOutcome
from juggler.runner import MockRunner, RunnerResult


@pytest.fixture
def session(session_store):
    return session_store.create_session("s1", description="test session")


@pytest.fixture
def balls(ball_store, session):
    return [
        ball_store.create_ball("first", session=session),
        ball_store.create_ball("second", session=session),
    ]


@pytest.fixture
def make_orchestrator(project_dir, logger, ball_store, session_store, history, sleeper):
    def make(runner, **overrides):
        settings = {"session_id": "s1", "project_dir": str(project_dir), "max_iterations": 3}
        settings.update(overrides)
        return Orchestrator(
            RunConfig(**settings),
            runner,
            logger=logger,
            ball_store=ball_store,
            session_store=session_store,
            history=history,
            sleep=sleeper,
        )
    return make


def _complete(ball_store, ball_id):
    ball_store.update_ball(ball_id, lambda b: b.start())
    ball_store.complete_ball(ball_id)


def _block(ball_store, ball_id, reason):
    def mutate(ball):
        ball.start()
        ball.block(reason)
    ball_store.update_ball(ball_id, mutate)


def _work(ball_store, session_store, complete=(), note="worked"):
    """Effect: log progress and complete the given balls."""
    def effect(options):
        session_store.append_progress("s1", note)
        for ball in complete:
            _complete(ball_store, ball.id)
    return effect


def _progress(session_store):
    return session_store.load_progress("s1")


# ----------------------------------------------------------------------
# Pre-loop check


def test_all_complete_before_start_runs_nothing(make_orchestrator, ball_store, balls):
    for ball in balls:
        _complete(ball_store, ball.id)
    runner = MockRunner()

    result = make_orchestrator(runner).run()

    assert result.complete
    assert result.iterations == 0
    assert result.balls_complete == 2
    assert runner.calls == []


def test_all_blocked_before_start_reports_blocked(make_orchestrator, ball_store, balls):
    _complete(ball_store, balls[0].id)
    _block(ball_store, balls[1].id, "needs API key")
    runner = MockRunner()

    result = make_orchestrator(runner).run()

    assert result.blocked
    assert "needs API key" in result.blocked_reason
    assert result.iterations == 0
    assert result.balls_blocked == 1
    assert runner.calls == []


def test_empty_session_is_complete(make_orchestrator, session):
    runner = MockRunner()
    result = make_orchestrator(runner).run()
    assert result.complete
    assert result.balls_total == 0
    assert runner.calls == []


# ----------------------------------------------------------------------
# Signals


def test_complete_signal_with_progress_is_accepted(make_orchestrator, ball_store, session_store, balls):
    runner = MockRunner(
        RunnerResult(output="done <promise>COMPLETE</promise>", complete=True),
        effects=[_work(ball_store, session_store, complete=balls)],
    )

    result = make_orchestrator(runner).run()

    assert result.complete
    assert result.iterations == 1
    assert result.balls_complete == 2
    assert result.outcome == RunOutcome.COMPLETE
    assert "s1" in runner.calls[0].prompt
    assert session_store.output_path("s1").read_text(encoding='utf-8') == "done <promise>COMPLETE</promise>"


def test_premature_complete_is_not_believed(make_orchestrator, ball_store, session_store, balls):
    runner = MockRunner(
        RunnerResult(complete=True),
        RunnerResult(complete=True),
        effects=[
            _work(ball_store, session_store, complete=balls[:1]),
            _work(ball_store, session_store, complete=balls[1:]),
        ],
    )

    result = make_orchestrator(runner).run()

    assert result.complete
    assert result.iterations == 2
    progress = _progress(session_store)
    assert "[WARNING]" in progress
    assert "1/2 balls terminal" in progress


def test_signal_without_progress_is_ignored(make_orchestrator, session_store, balls):
    runner = MockRunner(
        RunnerResult(blocked=True, blocked_reason="tired"),
        RunnerResult(complete=True),
    )

    result = make_orchestrator(runner, max_iterations=2).run()

    assert not result.blocked
    assert not result.complete
    assert result.iterations == 2
    assert result.outcome == RunOutcome.MAX_ITERATIONS
    progress = _progress(session_store)
    assert "signaled BLOCKED but no progress recorded" in progress
    assert "signaled COMPLETE but no progress recorded" in progress


def test_blocked_signal_with_progress_stops(make_orchestrator, ball_store, session_store, balls):
    runner = MockRunner(
        RunnerResult(blocked=True, blocked_reason="need database credentials"),
        effects=[_work(ball_store, session_store)],
    )

    result = make_orchestrator(runner).run()

    assert result.blocked
    assert result.blocked_reason == "need database credentials"
    assert result.iterations == 1


def test_continue_then_complete(make_orchestrator, ball_store, session_store, balls):
    runner = MockRunner(
        RunnerResult(continue_=True),
        RunnerResult(complete=True),
        effects=[
            _work(ball_store, session_store, complete=balls[:1]),
            _work(ball_store, session_store, complete=balls[1:]),
        ],
    )

    result = make_orchestrator(runner).run()

    assert result.complete
    assert result.iterations == 2
    # Completed balls drop out of the next prompt
    assert balls[0].id in runner.calls[0].prompt
    assert balls[0].id not in runner.calls[1].prompt


def test_all_terminal_without_signal_completes(make_orchestrator, ball_store, session_store, balls):
    def effect(options):
        _complete(ball_store, balls[0].id)
        _block(ball_store, balls[1].id, "waiting on design")

    runner = MockRunner(RunnerResult(output="no signal"), effects=[effect])

    result = make_orchestrator(runner).run()

    assert result.complete
    assert result.iterations == 1
    assert result.balls_complete == 1
    assert result.balls_blocked == 1


def test_max_iterations(make_orchestrator, ball_store, session_store, balls):
    runner = MockRunner(
        *[RunnerResult(continue_=True) for _ in range(3)],
        effects=[_work(ball_store, session_store) for _ in range(3)],
    )

    result = make_orchestrator(runner).run()

    assert result.outcome == RunOutcome.MAX_ITERATIONS
    assert result.iterations == 3
    assert len(runner.calls) == 3
    result.raise_for_outcome()


# ----------------------------------------------------------------------
# Rate limits, overload and timeouts


def test_rate_limit_does_not_consume_iterations(make_orchestrator, ball_store, session_store, sleeper, balls):
    runner = MockRunner(
        RunnerResult(rate_limited=True),
        RunnerResult(rate_limited=True, retry_after=10),
        RunnerResult(complete=True),
        effects=[None, None, _work(ball_store, session_store, complete=balls)],
    )

    result = make_orchestrator(runner, max_iterations=1).run()

    assert result.complete
    assert result.iterations == 1
    assert len(runner.calls) == 3
    assert result.total_wait_time == 45
    assert sleeper.total == 45
    assert _progress(session_store).count("[RATE_LIMIT]") == 2


def test_rate_limit_wait_budget(make_orchestrator, session_store, sleeper, balls):
    runner = MockRunner(*[RunnerResult(rate_limited=True) for _ in range(5)])

    result = make_orchestrator(runner, max_wait=100).run()

    # 30s + 60s fit in the budget, the next 120s wait does not
    assert result.rate_limit_exceeded
    assert result.total_wait_time == 90
    assert sleeper.total == 90
    assert len(runner.calls) == 3
    assert "would exceed max wait" in _progress(session_store)
    with pytest.raises(RateLimitBudgetExceededError):
        result.raise_for_outcome()


def test_long_waits_are_slept_in_steps(make_orchestrator, ball_store, session_store, sleeper, balls):
    runner = MockRunner(
        RunnerResult(rate_limited=True, retry_after=145),
        RunnerResult(complete=True),
        effects=[None, _work(ball_store, session_store, complete=balls)],
    )

    make_orchestrator(runner).run()

    assert sleeper.calls == [60, 60, 30]


def test_overload_waits_fixed_time(make_orchestrator, ball_store, session_store, sleeper, balls):
    runner = MockRunner(
        RunnerResult(overload_exhausted=True, rate_limited=True, exit_code=1),
        RunnerResult(complete=True),
        effects=[None, _work(ball_store, session_store, complete=balls)],
    )

    result = make_orchestrator(runner, overload_retry_minutes=1).run()

    assert result.complete
    assert result.iterations == 1
    assert result.overload_retries == 1
    assert result.total_wait_time == 60
    assert "[OVERLOAD_529]" in _progress(session_store)


def test_rate_limit_backoff_resets_after_a_normal_iteration(make_orchestrator, ball_store, session_store, sleeper, balls):
    runner = MockRunner(
        RunnerResult(rate_limited=True),
        RunnerResult(continue_=True),
        RunnerResult(rate_limited=True),
        RunnerResult(complete=True),
        effects=[None, _work(ball_store, session_store), None, _work(ball_store, session_store, complete=balls)],
    )

    result = make_orchestrator(runner).run()

    assert result.complete
    assert result.iterations == 2
    assert sleeper.calls == [30, 30]
    assert result.total_wait_time == 60


def test_overload_does_not_reset_rate_limit_backoff(make_orchestrator, ball_store, session_store, sleeper, balls):
    runner = MockRunner(
        RunnerResult(rate_limited=True),
        RunnerResult(overload_exhausted=True, rate_limited=True, exit_code=1),
        RunnerResult(rate_limited=True),
        RunnerResult(complete=True),
        effects=[None, None, None, _work(ball_store, session_store, complete=balls)],
    )

    result = make_orchestrator(runner, overload_retry_minutes=1).run()

    assert result.complete
    assert result.iterations == 1
    assert result.overload_retries == 1
    # 30s, fixed 60s overload wait, then the second rate-limit step
    assert sleeper.calls == [30, 60, 60]
    assert result.total_wait_time == 150
    progress = _progress(session_store)
    assert progress.count("[RATE_LIMIT]") == 2
    assert progress.count("[OVERLOAD_529]") == 1


def test_timeout_stops_the_run(make_orchestrator, session_store, balls):
    runner = MockRunner(RunnerResult(timed_out=True, error="iteration timed out after 60s"))

    result = make_orchestrator(runner).run()

    assert result.timed_out
    assert result.iterations == 1
    assert "[TIMEOUT] Iteration 1 timed out" in _progress(session_store)
    with pytest.raises(IterationTimeoutError) as exc_info:
        result.raise_for_outcome()
    assert "60s" in str(exc_info.value)


# ----------------------------------------------------------------------
# Pacing


def test_delay_only_between_iterations(make_orchestrator, ball_store, session_store, sleeper, balls):
    runner = MockRunner(
        *[RunnerResult(continue_=True) for _ in range(3)],
        effects=[_work(ball_store, session_store) for _ in range(3)],
    )

    make_orchestrator(runner, iteration_delay_minutes=1).run()

    assert sleeper.calls == [60, 60]


def test_no_delay_after_completion(make_orchestrator, ball_store, session_store, sleeper, balls):
    runner = MockRunner(
        RunnerResult(complete=True),
        effects=[_work(ball_store, session_store, complete=balls)],
    )

    make_orchestrator(runner, iteration_delay_minutes=5).run()

    assert sleeper.calls == []


# ----------------------------------------------------------------------
# Targeting and model selection


def test_single_ball_run(make_orchestrator, ball_store, session_store, balls):
    runner = MockRunner(
        RunnerResult(complete=True),
        effects=[_work(ball_store, session_store, complete=balls[:1])],
    )

    result = make_orchestrator(runner, ball_id=balls[0].short_id).run()

    assert result.complete
    assert result.balls_total == 1
    assert "<task>" in runner.calls[0].prompt
    assert ball_store.get_ball(balls[1].id).state == BallState.PENDING


def test_model_defaults_to_session_model(make_orchestrator, session_store, ball_store):
    session = session_store.create_session("big", default_model=ModelSize.LARGE)
    ball_store.create_ball("t", session=session)
    runner = MockRunner(RunnerResult())

    make_orchestrator(runner, session_id="big", max_iterations=1).run()

    assert runner.calls[0].model == "opus"


def test_explicit_model_wins(make_orchestrator, session_store, ball_store):
    session = session_store.create_session("big", default_model=ModelSize.LARGE)
    ball_store.create_ball("t", session=session)
    runner = MockRunner(RunnerResult())

    make_orchestrator(runner, session_id="big", max_iterations=1, model="sonnet").run()

    assert runner.calls[0].model == "sonnet"


# ----------------------------------------------------------------------
# Lock and history


def test_missing_session(make_orchestrator):
    runner = MockRunner()
    with pytest.raises(NotFoundError) as exc_info:
        make_orchestrator(runner, session_id="nope").run()
    assert "not found" in str(exc_info.value)
    assert runner.calls == []


def test_lock_held_during_run_and_released_after(make_orchestrator, ball_store, session_store, balls):
    seen = []

    def effect(options):
        seen.append(session_store.is_locked("s1"))
        _work(ball_store, session_store, complete=balls)(options)

    runner = MockRunner(RunnerResult(complete=True), effects=[effect])
    make_orchestrator(runner).run()

    assert seen == [True]
    assert not session_store.is_locked("s1")


def test_second_run_is_rejected(make_orchestrator, session_store, balls):
    runner = MockRunner()
    with session_store.acquire_lock("s1"):
        with pytest.raises(AlreadyLockedError):
            make_orchestrator(runner).run()
    assert runner.calls == []


def test_lock_released_and_error_recorded(make_orchestrator, session_store, history, balls):
    def explode(options):
        raise RuntimeError("boom")

    runner = MockRunner(RunnerResult(), effects=[explode])

    with pytest.raises(RuntimeError):
        make_orchestrator(runner).run()

    assert not session_store.is_locked("s1")
    record = history.load("s1")[0]
    assert record.result == RunOutcome.ERROR
    assert record.error_message == "boom"
    assert record.iterations == 1


def test_interrupt_recorded_as_cancelled(make_orchestrator, session_store, history, balls):
    def interrupt(options):
        raise KeyboardInterrupt

    runner = MockRunner(RunnerResult(), effects=[interrupt])

    with pytest.raises(KeyboardInterrupt):
        make_orchestrator(runner).run()

    assert not session_store.is_locked("s1")
    assert history.load("s1")[0].result == RunOutcome.CANCELLED


def test_finished_run_is_recorded(make_orchestrator, ball_store, session_store, history, balls):
    runner = MockRunner(
        RunnerResult(complete=True),
        effects=[_work(ball_store, session_store, complete=balls)],
    )

    make_orchestrator(runner).run()

    records = history.load("s1")
    assert len(records) == 1
    assert records[0].result == RunOutcome.COMPLETE
    assert records[0].balls_complete == 2
    assert records[0].max_iterations == 3
    assert records[0].output_file.endswith("last_output.txt")


def test_next_run_after_finished_run(make_orchestrator, ball_store, session_store, balls):
    first = MockRunner(RunnerResult(continue_=True), effects=[_work(ball_store, session_store)])
    make_orchestrator(first, max_iterations=1).run()

    second = MockRunner(
        RunnerResult(complete=True),
        effects=[_work(ball_store, session_store, complete=balls)],
    )
    result = make_orchestrator(second).run()

    assert result.complete
    assert len(second.calls) == 1
