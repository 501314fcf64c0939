"""Progress-advancement check used to verify agent signals."""


def progress_advanced(before: int, after: int) -> bool:
    """True iff the progress log gained lines during the iteration."""
    return after > before
