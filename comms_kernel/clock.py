"""
Clock helpers shared by the scoring functions.

All engine timestamps are integer epoch milliseconds. The wall clock is only
read when a caller omits now_ms.
"""

import math
import sys
import time
from datetime import datetime, timezone
from typing import Optional, Union


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def resolve_now_ms(value: Optional[Union[int, float]]) -> int:
    """Use the injected time when it is a finite number, else the wall clock."""
    if isinstance(value, bool) or value is None:
        return now_ms()
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return now_ms()
    if not math.isfinite(parsed):
        return now_ms()
    return int(parsed)


def js_round(value: float) -> int:
    """
    Round half up, matching the calibration of the scoring constants.

    NaN rounds to 0 and infinities saturate at the largest float, so callers
    clamping the result still land on their bounds.
    """
    if value != value:
        return 0
    if math.isinf(value):
        value = math.copysign(sys.float_info.max, value)
    return int(math.floor(value + 0.5))


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def parse_timestamp_ms(value: Optional[Union[datetime, str]]) -> Optional[int]:
    """Parse an ISO-8601 string or datetime into epoch ms. Naive means UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        token = str(value).strip()
        if not token:
            return None
        if token.endswith("Z"):
            token = token[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(token)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def event_ms(created_at: Optional[Union[datetime, str]], fallback_ms: int) -> int:
    parsed = parse_timestamp_ms(created_at)
    return parsed if parsed is not None else fallback_ms


def iso_from_ms(value_ms: int) -> datetime:
    return datetime.fromtimestamp(value_ms / 1000, tz=timezone.utc)
