"""Numeric helpers for baseline statistics.

Plain functions over sequences of byte counts. All of them are total:
empty or short inputs produce 0 instead of raising.
"""

import math
from typing import Optional, Sequence


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean of the values.

    Args:
        values: Numbers to average

    Returns:
        float: The mean, or 0.0 for an empty input. Callers must not read
            a 0.0 here as a real baseline.
    """
    if not values:
        return 0.0
    return sum(values) / len(values)


def std_dev(values: Sequence[float], mean_hint: Optional[float] = None) -> float:
    """Population standard deviation (divides by N, not N - 1).

    Args:
        values: Numbers to measure
        mean_hint: Precomputed mean of ``values``, if the caller has one

    Returns:
        float: Standard deviation, or 0.0 with fewer than 2 values
    """
    if len(values) < 2:
        return 0.0
    m = mean_hint if mean_hint is not None else mean(values)
    variance = sum((v - m) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile of an ascending sequence.

    The index is ``ceil(p / 100 * n) - 1`` clamped to ``[0, n - 1]``. The
    input is not sorted here; passing unsorted data gives a wrong answer.

    Args:
        sorted_values: Values sorted ascending
        p: Percentile in the range 0-100

    Returns:
        float: The percentile value, or 0 for an empty input
    """
    n = len(sorted_values)
    if n == 0:
        return 0
    index = math.ceil((p / 100) * n) - 1
    return sorted_values[max(0, min(index, n - 1))]
