"""Stint, pit-window and rival analysis for endurance race strategy.

Everything here is a pure calculation over numbers already held by the
session: lap counts, the lap the car last pitted on, a representative lap
time and the time left in the race. Times are integer milliseconds.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from pitwall.models.redmist import ControlLogEntry

DEFAULT_STINT_LAPS = 45
DEFAULT_PIT_TIME_SECONDS = 180
MAX_DRIVER_STINT_MINUTES = 120
FUEL_STOP_PENALTY_SECONDS = 300

# Assumed lap time when a car has no timed lap yet
DEFAULT_LAP_TIME_MS = 150_000

PIT_WINDOW_BUFFER_LAPS = 5
STINT_WARNING_MS = 20 * 60 * 1000
STINT_CRITICAL_MS = 10 * 60 * 1000
YELLOW_PIT_STINT_PERCENT = 50.0

GAP_TREND_THRESHOLD_MS = 1000

INCIDENT_KEYWORDS = ("incident", "penalty", "black flag", "warning")
MAX_INCIDENTS = 10


@dataclass(frozen=True)
class StintTiming:
    last_pit_lap: int
    current_lap: int
    laps_since_pit: int
    time_since_pit_ms: int
    max_stint_ms: int
    stint_time_remaining_ms: int
    stint_time_used_percent: float
    effective_pit_time_seconds: int
    stints_remaining: int
    pits_remaining: int
    pit_window_start_lap: int
    pit_window_end_lap: int
    race_time_remaining_ms: int

    @property
    def is_warning(self) -> bool:
        return self.stint_time_remaining_ms < STINT_WARNING_MS

    @property
    def is_critical(self) -> bool:
        return self.stint_time_remaining_ms < STINT_CRITICAL_MS


@dataclass(frozen=True)
class PitWindow:
    current_lap: int
    last_pit_lap: int
    laps_since_pit: int
    laps_until_pit: int
    time_until_pit_ms: int
    projected_pit_lap: int


@dataclass(frozen=True)
class CompetitorPitEstimate:
    current_lap: int
    pit_count: int
    last_pit_lap: int
    laps_since_pit: int
    estimated_stint_length: int
    laps_until_pit: int


class GapTrend(str, Enum):
    """Direction the gap to a rival is moving, judged from last lap times."""

    CLOSING = "closing"
    OPENING = "opening"
    STABLE = "stable"


def stint_timing(
    current_lap: int,
    last_pit_lap: int,
    lap_time_ms: int,
    race_time_remaining_ms: int,
    max_stint_minutes: int = MAX_DRIVER_STINT_MINUTES,
    stint_length: int = DEFAULT_STINT_LAPS,
    pit_time_seconds: int = DEFAULT_PIT_TIME_SECONDS,
    taking_fuel: bool = False,
) -> StintTiming:
    """Where the current driver is in their stint and how many stops are left.

    Time in the stint is estimated as laps since the last stop times
    *lap_time_ms* (``DEFAULT_LAP_TIME_MS`` when that is 0). The stints
    still needed cover *race_time_remaining_ms* with stints of
    *max_stint_minutes*, the current stint included. The pit window opens
    ``PIT_WINDOW_BUFFER_LAPS`` before *stint_length* laps from now.
    """
    lap_time_ms = lap_time_ms or DEFAULT_LAP_TIME_MS
    laps_since_pit = current_lap - last_pit_lap
    time_since_pit = laps_since_pit * lap_time_ms
    max_stint_ms = max_stint_minutes * 60 * 1000
    stints_remaining = math.ceil(race_time_remaining_ms / max_stint_ms) if max_stint_ms else 0

    return StintTiming(
        last_pit_lap=last_pit_lap,
        current_lap=current_lap,
        laps_since_pit=laps_since_pit,
        time_since_pit_ms=time_since_pit,
        max_stint_ms=max_stint_ms,
        stint_time_remaining_ms=max(0, max_stint_ms - time_since_pit),
        stint_time_used_percent=min(100.0, time_since_pit / max_stint_ms * 100) if max_stint_ms else 100.0,
        effective_pit_time_seconds=pit_time_seconds + (FUEL_STOP_PENALTY_SECONDS if taking_fuel else 0),
        stints_remaining=stints_remaining,
        pits_remaining=max(0, stints_remaining - 1),
        pit_window_start_lap=current_lap + max(0, stint_length - PIT_WINDOW_BUFFER_LAPS),
        pit_window_end_lap=current_lap + stint_length,
        race_time_remaining_ms=race_time_remaining_ms,
    )


def should_pit_under_yellow(timing: StintTiming, is_yellow: bool) -> bool:
    """Pit under a yellow once the stint is past half used or near its limit."""
    return is_yellow and (timing.stint_time_used_percent > YELLOW_PIT_STINT_PERCENT or timing.is_warning)


def project_pit_window(
    current_lap: int,
    last_pit_lap: int,
    lap_time_ms: int,
    stint_length: int = DEFAULT_STINT_LAPS,
) -> PitWindow:
    laps_since_pit = current_lap - last_pit_lap
    laps_until_pit = max(0, stint_length - laps_since_pit)
    return PitWindow(
        current_lap=current_lap,
        last_pit_lap=last_pit_lap,
        laps_since_pit=laps_since_pit,
        laps_until_pit=laps_until_pit,
        time_until_pit_ms=laps_until_pit * lap_time_ms,
        projected_pit_lap=current_lap + laps_until_pit,
    )


def estimate_competitor_pit(
    current_lap: int,
    pit_count: int,
    last_pit_lap: int,
    default_stint_length: int = DEFAULT_STINT_LAPS,
) -> CompetitorPitEstimate:
    """Guess a rival's stint length from their stops so far and when they stop next.

    With no stops yet the rival is assumed to run *default_stint_length*.
    """
    if pit_count > 0:
        # half-up rounding
        estimated = int(current_lap / pit_count + 0.5)
    else:
        estimated = default_stint_length
    laps_since_pit = current_lap - last_pit_lap
    return CompetitorPitEstimate(
        current_lap=current_lap,
        pit_count=pit_count,
        last_pit_lap=last_pit_lap,
        laps_since_pit=laps_since_pit,
        estimated_stint_length=estimated,
        laps_until_pit=max(0, estimated - laps_since_pit),
    )


def gap_trend(
    my_last_lap_ms: int | None,
    their_last_lap_ms: int | None,
    threshold_ms: int = GAP_TREND_THRESHOLD_MS,
) -> GapTrend:
    """Closing when my last lap beat theirs by more than *threshold_ms*.

    A missing lap time on either side reads as stable.
    """
    if not my_last_lap_ms or not their_last_lap_ms:
        return GapTrend.STABLE
    diff = my_last_lap_ms - their_last_lap_ms
    if diff > threshold_ms:
        return GapTrend.OPENING
    if diff < -threshold_ms:
        return GapTrend.CLOSING
    return GapTrend.STABLE


def _involves(entry: ControlLogEntry, car_number: str) -> bool:
    if not car_number:
        return False
    car = car_number.lower()
    cars = {(entry.car1 or "").lower(), (entry.car2 or "").lower()}
    return car in cars or f"#{car}" in cars


def relevant_incidents(
    entries: Iterable[ControlLogEntry],
    car_number: str,
    limit: int = MAX_INCIDENTS,
) -> list[ControlLogEntry]:
    """Control log entries naming *car_number*, plus any matching ``INCIDENT_KEYWORDS``.

    Order is kept; at most *limit* entries are returned.
    """
    found: list[ControlLogEntry] = []
    for entry in entries:
        if len(found) >= limit:
            break
        text = " ".join((entry.note or "", entry.action or "", entry.status or "")).lower()
        if _involves(entry, car_number) or any(word in text for word in INCIDENT_KEYWORDS):
            found.append(entry)
    return found
