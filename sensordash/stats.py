import math
from typing import Dict, Mapping

from .metrics_store import MetricStore


def percent_change(current: float, previous: float) -> float:
    """Percent change from ``previous`` to ``current``, rounded half-up to 0.1.

    A zero baseline yields 0, which also covers a baseline window with no data.
    """
    if previous == 0:
        return 0
    change = (current - previous) / previous * 100
    return math.floor(change * 10 + 0.5) / 10


def trailing_percent_changes(
    store: MetricStore,
    mapping: Mapping[str, str],
    now_ms: int,
    window_ms: int,
) -> Dict[str, float]:
    """Compare the last ``window_ms`` against the window before it for each metric.

    ``mapping`` is name -> storage key; the result is keyed by name.
    """
    current_start = now_ms - window_ms
    previous_start = now_ms - 2 * window_ms
    result: Dict[str, float] = {}
    for name, key in mapping.items():
        current = store.average_over(key, current_start, now_ms)
        previous = store.average_over(key, previous_start, current_start)
        result[name] = percent_change(current, previous)
    return result
