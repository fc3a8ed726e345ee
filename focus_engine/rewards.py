"""Reward calculator: productivity score and XP for a completed focus session.

Pure and deterministic; the server calls it at completion time and never
trusts reward numbers sent by a client.

Productivity starts at 100 and loses points for:

* interruptions: the k-th interruption (0-based) costs
  ``interruption_penalty * interruption_decay**k``, so each extra one hurts
  less than the previous, and the total is capped at
  ``max_interruption_penalty``;
* shortfall: ``100 * shortfall_weight * (1 - actual / planned)`` when the
  session ran short of its planned length;
* paused time: ``100 * pause_weight * min(1, paused / planned)``.

The result is rounded and clamped to ``[min_productivity, 100]``. Holding the
other inputs fixed, more interruptions, a larger shortfall or more paused
time never raise the score; a full-length session with no interruptions and
no pause scores exactly 100.

XP is ``round(base_xp_per_minute * actual * xp_multiplier * factor)`` where
``factor`` rises linearly from ``min_productivity_factor`` at productivity 0
to 1.0 at productivity 100.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

MAX_PRODUCTIVITY = 100


@dataclass(frozen=True)
class RewardPolicy:
    base_xp_per_minute: float = 5.0
    interruption_penalty: float = 10.0
    interruption_decay: float = 0.8
    max_interruption_penalty: float = 50.0
    shortfall_weight: float = 1.0
    pause_weight: float = 0.5
    interruption_overhead_minutes: int = 0
    min_productivity: int = 0
    min_productivity_factor: float = 0.5


DEFAULT_POLICY = RewardPolicy()


@dataclass(frozen=True)
class Rewards:
    productivity: int
    xp: int


def interruption_penalty(interruptions: int, policy: RewardPolicy = DEFAULT_POLICY) -> float:
    """Geometric, capped penalty for n interruptions."""
    n = max(0, interruptions)
    if n == 0:
        return 0.0
    p, d = policy.interruption_penalty, policy.interruption_decay
    if d == 1:
        total = p * n
    else:
        total = p * (1 - d ** n) / (1 - d)
    return min(policy.max_interruption_penalty, total)


def compute_productivity(
    planned: int,
    actual: int,
    interruptions: int = 0,
    paused: int = 0,
    policy: RewardPolicy = DEFAULT_POLICY,
) -> int:
    """Score 0-100 for a session; all durations in minutes."""
    if planned <= 0:
        raise ValueError(f"planned duration must be positive, got {planned}")

    shortfall = max(0.0, 1 - max(0, actual) / planned)
    pause_ratio = min(1.0, max(0, paused) / planned)

    score = (
        MAX_PRODUCTIVITY
        - interruption_penalty(interruptions, policy)
        - MAX_PRODUCTIVITY * policy.shortfall_weight * shortfall
        - MAX_PRODUCTIVITY * policy.pause_weight * pause_ratio
    )
    return int(min(MAX_PRODUCTIVITY, max(policy.min_productivity, round(score))))


def productivity_factor(productivity: int, policy: RewardPolicy = DEFAULT_POLICY) -> float:
    clamped = min(MAX_PRODUCTIVITY, max(0, productivity))
    floor = policy.min_productivity_factor
    return floor + (1 - floor) * clamped / MAX_PRODUCTIVITY


def compute_xp(
    actual: int,
    productivity: int,
    xp_multiplier: float = 1.0,
    policy: RewardPolicy = DEFAULT_POLICY,
) -> int:
    xp = policy.base_xp_per_minute * max(0, actual) * xp_multiplier
    return max(0, round(xp * productivity_factor(productivity, policy)))


def compute_actual_duration(
    start_time: datetime,
    end_time: datetime,
    paused_minutes: int = 0,
    interruptions: int = 0,
    reported: int | None = None,
    policy: RewardPolicy = DEFAULT_POLICY,
) -> int:
    """Focused minutes for a session.

    Wall-clock elapsed minus paused minutes bounds the result; a
    client-reported figure can only lower it. The per-interruption overhead
    from the policy is subtracted last.
    """
    elapsed = math.floor(max(0.0, (end_time - start_time).total_seconds()) / 60)
    ceiling = max(0, elapsed - max(0, paused_minutes))
    base = ceiling if reported is None else min(max(0, reported), ceiling)
    overhead = policy.interruption_overhead_minutes * max(0, interruptions)
    return max(0, base - overhead)


def compute_rewards(
    session: Mapping[str, Any],
    xp_multiplier: float = 1.0,
    policy: RewardPolicy = DEFAULT_POLICY,
) -> Rewards:
    """Rewards for a session row (keys: duration, actual_duration, interruptions, paused_time)."""
    actual = int(session.get("actual_duration") or 0)
    productivity = compute_productivity(
        planned=int(session["duration"]),
        actual=actual,
        interruptions=int(session.get("interruptions") or 0),
        paused=int(session.get("paused_time") or 0),
        policy=policy,
    )
    return Rewards(
        productivity=productivity,
        xp=compute_xp(actual, productivity, xp_multiplier, policy),
    )
