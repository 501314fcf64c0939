"""Parse completion, rate-limit and overload signals from agent output."""

import re
from typing import Optional, Tuple

from .base import RunnerResult

_PROMISE_RE = {
    "complete": re.compile(r"<promise>\s*COMPLETE(?P<body>[^<]*)</promise>"),
    "continue": re.compile(r"<promise>\s*CONTINUE(?P<body>[^<]*)</promise>"),
    "blocked": re.compile(r"<promise>\s*BLOCKED:(?P<body>[^<]*)</promise>"),
}

RATE_LIMIT_PATTERNS = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "429",
    "overloaded",
    "capacity",
    "try again",
    "throttl",
)

OVERLOAD_PATTERNS = (
    re.compile(r"529"),
    re.compile(r"overloaded_error"),
    re.compile(r"api is overloaded"),
    re.compile(r"exhausted.*retr"),
    re.compile(r"maximum.*retries.*overload"),
)

_RETRY_AFTER_RE = re.compile(r"(\d+)\s*(second|sec|minute|min|hour|hr)s?\b")
_UNIT_SECONDS = {
    "second": 1, "sec": 1,
    "minute": 60, "min": 60,
    "hour": 3600, "hr": 3600,
}


def _promise_message(body: str) -> str:
    body = body.strip()
    if body.startswith(":"):
        body = body[1:]
    return body.strip()


def parse_promise(output: str, name: str) -> Tuple[bool, str]:
    """Find a <promise>NAME[: message]</promise> tag; returns (found, message)."""
    match = _PROMISE_RE[name].search(output)
    if not match:
        return False, ""
    return True, _promise_message(match.group("body"))


def parse_retry_after(output: str) -> Optional[float]:
    """Extract a wait hint like "retry in 30 seconds" (in seconds)."""
    match = _RETRY_AFTER_RE.search(output.lower())
    if not match:
        return None
    value = int(match.group(1))
    if value <= 0:
        return None
    return float(value * _UNIT_SECONDS[match.group(2)])


def is_rate_limited(text: str) -> bool:
    text = text.lower()
    return any(pattern in text for pattern in RATE_LIMIT_PATTERNS)


def is_overload_exhausted(output: str, exit_code: int) -> bool:
    """A non-zero exit after the agent gave up on 529 overload responses."""
    if exit_code == 0:
        return False
    text = output.lower()
    if any(p.search(text) for p in OVERLOAD_PATTERNS):
        return True
    return "overloaded" in text


def parse_signals(result: RunnerResult) -> RunnerResult:
    """
    Fill the signal fields of a result from its output.

    Rate limiting is only reported when the agent emitted no promise tag:
    output that got as far as a signal came from a completed turn, even if
    it mentions "429" or "try again" in passing.
    """
    output = result.output

    found, message = parse_promise(output, "complete")
    if found:
        result.complete = True
        result.commit_message = message

    found, message = parse_promise(output, "continue")
    if found:
        result.continue_ = True
        result.commit_message = message

    found, reason = parse_promise(output, "blocked")
    if found:
        result.blocked = True
        result.blocked_reason = reason

    if not result.signaled:
        if is_rate_limited(output) or (result.error and is_rate_limited(result.error)):
            result.rate_limited = True
            result.retry_after = parse_retry_after(output)
        result.overload_exhausted = is_overload_exhausted(output, result.exit_code)

    return result
