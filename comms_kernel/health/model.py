"""
Channel Health Model — projects raw channel stats into a bounded health score.

Pure projection, no side effects:
  discipline  SATURATED >= 0.72 intensity, BUSY >= 0.42, else CLEAR
  quality_pct clamp(round(99 - members*1.6 - intensity*38), 36, 99)
  latency_ms  clamp(round(18 + members*3.2 + intensity*96), 18, 220)
"""

import re
from typing import Iterable, List, Optional

from comms_kernel.clock import clamp, js_round
from comms_kernel.models.channel import (
    ChannelDirective,
    ChannelHealth,
    ChannelInput,
    DisciplineTier,
)
from comms_kernel.models.coerce import coerce_records

UNSCOPED_CHANNEL = "UNSCOPED"

SATURATED_INTENSITY = 0.72
BUSY_INTENSITY = 0.42

_DIRECTIVE_BY_DISCIPLINE = {
    DisciplineTier.SATURATED: ChannelDirective.REROUTE_MONITOR,
    DisciplineTier.BUSY: ChannelDirective.LIMIT_NON_ESSENTIAL,
    DisciplineTier.CLEAR: ChannelDirective.NORMAL,
}


def lane_label(channel_id: str) -> str:
    """Human label for a channel that did not supply one."""
    normalized = (channel_id or "").strip()
    if not normalized or normalized == UNSCOPED_CHANNEL:
        return "Unscoped Lane"
    if normalized.startswith("op-"):
        return f"Op {normalized[3:]}"
    return re.sub(r"[-_]", " ", normalized)


def classify_discipline(intensity: float) -> DisciplineTier:
    if intensity >= SATURATED_INTENSITY:
        return DisciplineTier.SATURATED
    if intensity >= BUSY_INTENSITY:
        return DisciplineTier.BUSY
    return DisciplineTier.CLEAR


def score_channel(channel: ChannelInput) -> ChannelHealth:
    """Project a single channel."""
    members = channel.membership_count
    intensity = channel.intensity
    discipline = classify_discipline(intensity)
    channel_id = channel.id or UNSCOPED_CHANNEL
    return ChannelHealth(
        channel_id=channel_id,
        label=channel.label or lane_label(channel_id),
        membership_count=members,
        intensity=intensity,
        quality_pct=int(clamp(js_round(99 - members * 1.6 - intensity * 38), 36, 99)),
        latency_ms=int(clamp(js_round(18 + members * 3.2 + intensity * 96), 18, 220)),
        discipline=discipline,
        directive=_DIRECTIVE_BY_DISCIPLINE[discipline],
    )


def build_channel_health(channels: Optional[Iterable]) -> List[ChannelHealth]:
    """Score every channel; duplicate ids keep their first occurrence."""
    seen = set()
    health = []
    for channel in coerce_records(channels, ChannelInput):
        key = channel.id or UNSCOPED_CHANNEL
        if key in seen:
            continue
        seen.add(key)
        health.append(score_channel(channel))
    return health


def count_degraded_channels(health: Iterable[ChannelHealth]) -> int:
    return sum(1 for entry in health if entry.discipline != DisciplineTier.CLEAR)
