"""Flag-aware pace analysis over a competitor's lap history.

Laps run behind a yellow or red flag say nothing about a car's speed, so
every figure here is computed from green-flag laps unless stated otherwise.
Laps with an unknown (zero) time are kept in their flag bucket but left out
of every average.
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass
from typing import Sequence

from pitwall.models.unified import FlagStatus, UnifiedLap

OUTLIER_FACTOR = 1.5


@dataclass(frozen=True)
class FlagBreakdown:
    green_laps: tuple[UnifiedLap, ...]
    yellow_laps: tuple[UnifiedLap, ...]
    red_laps: tuple[UnifiedLap, ...]
    average_green_lap_time: float
    average_yellow_lap_time: float
    average_red_lap_time: float
    fastest_green_lap: UnifiedLap | None
    yellow_lap_count: int
    green_lap_percentage: float


@dataclass(frozen=True)
class TruePace:
    true_pace: float
    consistency: float
    sample_size: int


@dataclass(frozen=True)
class PaceComparison:
    my_true_pace: float
    their_true_pace: float
    pace_advantage: float
    estimated_gap_change_per_lap: float


def _timed(laps: Sequence[UnifiedLap]) -> list[int]:
    return [lap.lap_time for lap in laps if lap.lap_time > 0]


def _mean(times: list[int]) -> float:
    return statistics.fmean(times) if times else 0.0


def analyze_laps_by_flag(history: Sequence[UnifiedLap]) -> FlagBreakdown:
    """Split *history* into green/yellow/red buckets with per-bucket averages."""
    green = tuple(lap for lap in history if lap.flag_status is FlagStatus.GREEN)
    yellow = tuple(lap for lap in history if lap.flag_status is FlagStatus.YELLOW)
    red = tuple(lap for lap in history if lap.flag_status is FlagStatus.RED)
    timed_green = [lap for lap in green if lap.lap_time > 0]

    return FlagBreakdown(
        green_laps=green,
        yellow_laps=yellow,
        red_laps=red,
        average_green_lap_time=_mean(_timed(green)),
        average_yellow_lap_time=_mean(_timed(yellow)),
        average_red_lap_time=_mean(_timed(red)),
        fastest_green_lap=min(timed_green, key=lambda lap: lap.lap_time, default=None),
        yellow_lap_count=len(yellow),
        green_lap_percentage=len(green) / len(history) * 100 if history else 0.0,
    )


def calculate_true_pace(history: Sequence[UnifiedLap], exclude_outliers: bool = True) -> TruePace:
    """Mean green-flag lap time, optionally without outliers.

    An outlier is a green lap slower than 1.5x the unfiltered green mean.
    The filter is a single pass. Consistency is the population standard
    deviation of the laps that were kept.
    """
    times = _timed([lap for lap in history if lap.flag_status is FlagStatus.GREEN])
    if not times:
        return TruePace(true_pace=0.0, consistency=0.0, sample_size=0)

    if exclude_outliers:
        limit = statistics.fmean(times) * OUTLIER_FACTOR
        times = [t for t in times if t <= limit]

    return TruePace(
        true_pace=statistics.fmean(times),
        consistency=statistics.pstdev(times),
        sample_size=len(times),
    )


def compare_true_pace(
    my_history: Sequence[UnifiedLap], their_history: Sequence[UnifiedLap],
) -> PaceComparison:
    """Positive advantage means the first car is faster per green lap."""
    mine = calculate_true_pace(my_history)
    theirs = calculate_true_pace(their_history)
    advantage = theirs.true_pace - mine.true_pace
    return PaceComparison(
        my_true_pace=mine.true_pace,
        their_true_pace=theirs.true_pace,
        pace_advantage=advantage,
        estimated_gap_change_per_lap=advantage,
    )


def project_gap(gap_ms: float, comparison: PaceComparison, laps: int) -> float:
    """Gap to the other car after *laps* more green laps (negative = ahead of them).

    *gap_ms* is how far the first car is behind; it shrinks by the pace
    advantage every lap.
    """
    return gap_ms - comparison.estimated_gap_change_per_lap * laps


def laps_to_close(gap_ms: float, comparison: PaceComparison) -> int | None:
    """Green laps needed to close *gap_ms*, or None if the first car is not faster."""
    if gap_ms <= 0:
        return 0
    per_lap = comparison.estimated_gap_change_per_lap
    if per_lap <= 0:
        return None
    laps = int(gap_ms // per_lap)
    return laps if laps * per_lap >= gap_ms else laps + 1
