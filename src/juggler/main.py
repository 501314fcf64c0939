"""Main entry point for juggler."""

import argparse
import sys
from typing import List, Optional

from . import config
from .core.loop import Orchestrator, RunConfig
from .exceptions import JugglerError, RunOutcomeError
from .logger import AgentLogger
from .models.run import RunResult
from .runner.base import PermissionMode, RunMode
from .runner.factory import RunnerFactory
from .store.history import AgentHistory
from .store.session_store import SessionStore


def print_configuration(run_config: RunConfig) -> None:
    """Print the settings a run starts with."""
    print("=" * 60)
    print(f"Session: {run_config.session_id}")
    if run_config.ball_id:
        print(f"Ball: {run_config.ball_id}")
    print(f"Project: {run_config.project_dir}")
    print(f"Max iterations: {run_config.max_iterations}")
    print(f"Permission: {run_config.permission.value}")
    print(f"Mode: {run_config.mode.value}")
    print(f"Model: {run_config.model or '(default)'}")
    if run_config.timeout:
        print(f"Iteration timeout: {run_config.timeout:.0f}s")
    if run_config.iteration_delay_minutes or run_config.iteration_delay_fuzz:
        print(f"Iteration delay: {run_config.iteration_delay_minutes}m ± {run_config.iteration_delay_fuzz}m")
    if run_config.max_wait:
        print(f"Max rate-limit wait: {run_config.max_wait:.0f}s")
    print("=" * 60)


def print_summary(result: RunResult, output_file: str) -> None:
    print()
    print("=== Summary ===")
    print(f"Iterations: {result.iterations}")
    print(f"Balls completed: {result.balls_complete}/{result.balls_total}")
    print(f"Balls blocked: {result.balls_blocked}")
    if result.total_wait_time:
        print(f"Rate limit wait: {result.total_wait_time:.0f}s")

    if result.complete:
        print("Status: COMPLETE")
    elif result.blocked:
        print(f"Status: BLOCKED ({result.blocked_reason})")
    elif result.timed_out:
        print(f"Status: TIMEOUT ({result.timeout_message})")
    elif result.rate_limit_exceeded:
        print("Status: RATE LIMIT (max wait exceeded)")
    else:
        print("Status: Max iterations reached")
    print(f"\nOutput saved to: {output_file}")


def cmd_run(args: argparse.Namespace) -> int:
    permission = None
    if args.trust:
        permission = PermissionMode.BYPASS
    elif args.plan:
        permission = PermissionMode.PLAN

    run_config = RunConfig.from_env(
        args.session,
        ball_id=args.ball,
        max_iterations=args.iterations,
        permission=permission,
        mode=RunMode.INTERACTIVE if args.interactive else None,
        model=args.model,
        timeout=args.timeout * 60 if args.timeout else None,
        iteration_delay_minutes=args.delay,
        iteration_delay_fuzz=args.fuzz,
        max_wait=args.max_wait * 60 if args.max_wait else None,
    )

    if run_config.permission == PermissionMode.BYPASS:
        print("WARNING: running with full permissions. The agent can do anything your user can.")
    print_configuration(run_config)

    logger = AgentLogger(log_dir=config.LOG_DIR, log_level=config.LOG_LEVEL, sync=config.LOG_FSYNC)
    runner = RunnerFactory.create(
        backend=config.AGENT_BACKEND,
        project_dir=run_config.project_dir,
        command=config.AGENT_COMMAND,
        logger=logger,
    )
    orchestrator = Orchestrator(run_config, runner, logger=logger)

    result = orchestrator.run()
    print_summary(result, str(orchestrator.session_store.output_path(run_config.session_id)))
    try:
        result.raise_for_outcome()
    except RunOutcomeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 0 if result.complete else 1


def cmd_history(args: argparse.Namespace) -> int:
    history = AgentHistory(str(config.PROJECT_DIR), config.JUGGLE_DIR)
    records = history.load(session_id=args.session, limit=args.limit)
    if not records:
        print("No agent runs recorded.")
        return 0
    for record in records:
        line = (
            f"{record.started_at}  {record.session_id:<20} {record.result.value:<15} "
            f"{record.iterations}/{record.max_iterations} iterations  "
            f"{record.balls_complete}/{record.balls_total} complete"
        )
        if record.blocked_reason:
            line += f"  blocked: {record.blocked_reason}"
        if record.error_message:
            line += f"  error: {record.error_message}"
        print(line)
    return 0


def cmd_sessions(args: argparse.Namespace) -> int:
    store = SessionStore(str(config.PROJECT_DIR), config.JUGGLE_DIR)
    sessions = store.list_sessions()
    if not sessions:
        print("No sessions.")
        return 0
    for session in sessions:
        locked = " (agent running)" if store.is_locked(session.id) else ""
        print(f"{session.id:<20} {session.description}{locked}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="juggler", description="Run an AI coding agent over a session's balls")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the agent loop for a session")
    run.add_argument("session", help="Session id")
    run.add_argument("--ball", help="Work on a single ball (id or prefix)")
    run.add_argument("-n", "--iterations", type=int, help="Maximum iterations")
    run.add_argument("--trust", action="store_true", help="Skip all permission prompts")
    run.add_argument("--plan", action="store_true", help="Run the agent in plan mode")
    run.add_argument("--interactive", action="store_true", help="Attach the agent to this terminal")
    run.add_argument("--model", help="Model to use")
    run.add_argument("--timeout", type=float, help="Per-iteration timeout in minutes")
    run.add_argument("--delay", type=float, help="Minutes to wait between iterations")
    run.add_argument("--fuzz", type=float, help="Random +/- minutes added to the delay")
    run.add_argument("--max-wait", type=float, help="Maximum total minutes to wait on rate limits")
    run.set_defaults(func=cmd_run)

    history = subparsers.add_parser("history", help="Show recent agent runs")
    history.add_argument("session", nargs="?", help="Only show runs of this session")
    history.add_argument("-l", "--limit", type=int, default=20, help="Number of runs to show")
    history.set_defaults(func=cmd_history)

    sessions = subparsers.add_parser("sessions", help="List sessions")
    sessions.set_defaults(func=cmd_sessions)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments and dispatch to a command."""
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except JugglerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
