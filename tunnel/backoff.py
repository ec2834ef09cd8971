"""
Retry delay calculation for tunnel reconnects.
"""

import math
import random

# start at 1s, cap at 30s
BASE_DELAY_MS = 1000
MAX_DELAY_MS = 30000
JITTER_MS = 500


def backoff_delay(attempt: int, base_ms: int = BASE_DELAY_MS, cap_ms: int = MAX_DELAY_MS,
                  jitter_ms: int = JITTER_MS, rand=random.random) -> int:
    """
    Compute how long to wait before the next connect attempt.

    Exponential in the attempt number and capped, with jitter in
    [0, jitter_ms) added after the cap so concurrent clients don't retry
    in lockstep. The result can therefore be slightly above cap_ms.

    Args:
        attempt: 1-based attempt number
        base_ms: Delay for the first attempt
        cap_ms: Upper bound for the exponential part
        jitter_ms: Exclusive upper bound for the random part
        rand: Callable returning a float in [0, 1)

    Returns:
        Delay in milliseconds
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    exp = min(cap_ms, base_ms * 2 ** (attempt - 1))
    jitter = math.floor(rand() * jitter_ms)
    return exp + jitter
