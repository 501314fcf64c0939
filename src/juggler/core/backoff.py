"""Wait-time policies: rate-limit backoff, overload retry, iteration pacing."""

import random
from typing import Optional

RATE_LIMIT_BASE_WAIT = 30.0  # seconds
RATE_LIMIT_MAX_WAIT = 16 * 60.0
RETRY_AFTER_BUFFER = 5.0


def rate_limit_wait(retry_after: Optional[float], retry_count: int) -> float:
    """
    Seconds to wait before retrying a rate-limited invocation.

    An explicit retry-after hint wins and gets a 5 second buffer. Without a
    hint the wait doubles per consecutive rate-limited attempt starting at
    30s, capped at 16 minutes.
    """
    if retry_after is not None and retry_after > 0:
        return retry_after + RETRY_AFTER_BUFFER
    # Cap the exponent too so huge retry counts cannot overflow
    wait = RATE_LIMIT_BASE_WAIT * (2 ** min(max(retry_count, 0), 16))
    return min(wait, RATE_LIMIT_MAX_WAIT)


def overload_wait(retry_minutes: float) -> float:
    """Fixed wait after the agent gave up on 529 overload responses."""
    return max(retry_minutes, 0.0) * 60.0


def iteration_delay(base_minutes: float, fuzz_minutes: float = 0.0, rng: Optional[random.Random] = None) -> float:
    """
    Seconds to pause between iterations: base +/- a uniform fuzz, never negative.
    """
    if base_minutes <= 0 and fuzz_minutes <= 0:
        return 0.0
    rng = rng or random
    delay = base_minutes
    if fuzz_minutes > 0:
        delay += rng.uniform(-fuzz_minutes, fuzz_minutes)
    return max(delay, 0.0) * 60.0
