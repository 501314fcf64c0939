"""Ball id helpers: minimal unique prefixes and prefix resolution."""

from typing import Dict, Iterable, List

from ..exceptions import AmbiguousError, NotFoundError
from ..models.ball import Ball, short_id


def _common_prefix_length(a: str, b: str) -> int:
    n = 0
    for x, y in zip(a, b):
        if x != y:
            break
        n += 1
    return n


def minimal_unique_prefixes(ids: Iterable[str]) -> Dict[str, str]:
    """
    Compute the shortest distinguishing prefix of each id's short id.

    Comparison is case-insensitive. Each prefix is one character longer than
    the longest prefix shared with any other id in the set, capped at the
    short id's full length. Results depend only on the set passed in, so the
    same ball can get a different short id in a different grouping.

    Args:
        ids: Full ball ids

    Returns:
        Mapping of full id to its minimal short id
    """
    unique_ids = list(dict.fromkeys(ids))
    shorts = {ball_id: short_id(ball_id) for ball_id in unique_ids}
    lowered = {ball_id: s.lower() for ball_id, s in shorts.items()}

    result = {}
    for ball_id in unique_ids:
        mine = lowered[ball_id]
        longest = 0
        for other_id in unique_ids:
            if other_id == ball_id:
                continue
            longest = max(longest, _common_prefix_length(mine, lowered[other_id]))
        length = min(len(mine), longest + 1)
        result[ball_id] = shorts[ball_id][:length]
    return result


def compute_minimal_unique_ids(balls: Iterable[Ball]) -> Dict[str, str]:
    """Minimal unique short ids for a display grouping of balls."""
    return minimal_unique_prefixes(ball.id for ball in balls)


def match_prefix(balls: Iterable[Ball], query: str) -> List[Ball]:
    """
    Return the balls a query refers to.

    An exact full-id or short-id match wins over prefix matches. Otherwise
    every ball whose short id or full id starts with the query matches.
    Matching is case-insensitive.
    """
    query = query.strip().lower()
    if not query:
        return []
    balls = list(balls)

    exact = [b for b in balls if b.id.lower() == query or b.short_id.lower() == query]
    if exact:
        return exact

    matches = []
    seen = set()
    for ball in balls:
        if ball.id in seen:
            continue
        if ball.short_id.lower().startswith(query) or ball.id.lower().startswith(query):
            matches.append(ball)
            seen.add(ball.id)
    return matches


def resolve_by_prefix(balls: Iterable[Ball], query: str) -> Ball:
    """
    Resolve a query to exactly one ball.

    Raises:
        NotFoundError: No ball matches
        AmbiguousError: More than one ball matches; carries every candidate id
    """
    matches = match_prefix(balls, query)
    if not matches:
        raise NotFoundError("ball", query)
    if len(matches) > 1:
        raise AmbiguousError(query, [b.id for b in matches])
    return matches[0]
