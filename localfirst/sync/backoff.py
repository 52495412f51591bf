from __future__ import annotations

import random
from collections.abc import Callable

DEFAULT_BASE_S = 1.0
DEFAULT_CAP_S = 300.0
DEFAULT_JITTER = 0.2


def backoff_delay(
    attempt: int,
    *,
    base_s: float = DEFAULT_BASE_S,
    cap_s: float = DEFAULT_CAP_S,
    jitter: float = DEFAULT_JITTER,
    previous_s: float = 0.0,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number ``attempt`` (1-based).

    The base delay doubles per attempt up to ``cap_s`` and is scaled by a
    random factor in ``[1 - jitter, 1 + jitter]``. The result never drops
    below ``previous_s`` so successive intervals are non-decreasing even
    once the cap flattens the curve.
    """

    if attempt < 1:
        return 0.0
    raw = min(cap_s, base_s * (2 ** min(attempt - 1, 62)))
    factor = 1.0 + jitter * (2.0 * rand() - 1.0)
    return max(raw * factor, previous_s)
