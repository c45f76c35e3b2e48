"""Polling backoff for callers that refresh external snapshots."""

import math
from typing import Optional

from comms_kernel.clock import js_round

INITIAL_RETRY_DELAY_MS = 20_000
MAX_RETRY_DELAY_MS = 120_000
RETRY_BACKOFF_FACTOR = 1.6


def next_retry_delay_ms(previous_ms: Optional[float] = None) -> int:
    """
    Exponential backoff: min(round(previous * 1.6), 120000), floor 20000.

    A missing or non-positive previous delay returns the initial delay.
    """
    try:
        previous = float(previous_ms) if previous_ms is not None else 0.0
    except (TypeError, ValueError):
        previous = 0.0
    if math.isnan(previous) or previous <= 0:
        return INITIAL_RETRY_DELAY_MS
    if math.isinf(previous):
        return MAX_RETRY_DELAY_MS
    scaled = min(js_round(previous * RETRY_BACKOFF_FACTOR), MAX_RETRY_DELAY_MS)
    return max(INITIAL_RETRY_DELAY_MS, scaled)
