MAX_POINTS = 1000
MIN_POINTS = 100
DECAY_PER_SECOND = 10


def award(time_limit: int, elapsed_seconds: float, is_correct: bool) -> int:
    """Points for one answer.

    A correct answer is worth 1000 minus 10 per elapsed second, never less
    than 100. The question's time limit does not affect the result.
    """
    if not is_correct:
        return 0
    elapsed = max(0, int(elapsed_seconds))
    return max(MIN_POINTS, MAX_POINTS - elapsed * DECAY_PER_SECOND)
