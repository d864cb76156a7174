"""Lap-by-lap standings reconstruction from per-car lap histories.

Each call to :func:`positions_at_lap` rebuilds the table from scratch; no
state is kept between laps, so the same inputs always give the same rows.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping, Sequence

from pitwall.models.redmist import CarPosition
from pitwall.models.replay import ReplayRow, ReplaySnapshot
from pitwall.models.unified import FlagStatus, UnifiedLap
from pitwall.timefmt import parse_time_ms

# Recorded position meaning "not known"
UNKNOWN_POSITION = 999


@dataclass(frozen=True)
class Found:
    lap: UnifiedLap


@dataclass(frozen=True)
class CarriedForward:
    """Car has not reached the lap; its last completed lap stands in."""

    lap: UnifiedLap
    last_lap_number: int


@dataclass(frozen=True)
class NoData:
    pass


LapLookup = Found | CarriedForward | NoData


def _effective_lap_number(history: Sequence[UnifiedLap], index: int) -> int:
    return history[index].lap_number or index + 1


def lookup_lap(history: Sequence[UnifiedLap], lap_number: int) -> LapLookup:
    """Find a car's record for *lap_number*.

    A record's lap number is its explicit ``lap_number``, or its place in
    the list when that is unset. The list index is tried first, then every
    record. A car that has not reached the lap carries forward its
    highest-numbered record below it; records numbered past the lap are
    never used.
    """
    if 1 <= lap_number <= len(history) and _effective_lap_number(history, lap_number - 1) == lap_number:
        return Found(history[lap_number - 1])
    numbered = [(_effective_lap_number(history, i), lap) for i, lap in enumerate(history)]
    for number, lap in numbered:
        if number == lap_number:
            return Found(lap)
    earlier = [(number, lap) for number, lap in numbered if number < lap_number]
    if not earlier:
        return NoData()
    number, lap = max(earlier, key=lambda item: item[0])
    return CarriedForward(lap, number)


def _sort_key(row: ReplayRow, recorded_position: int | None) -> tuple[int, float, float, str]:
    position = (
        math.inf
        if recorded_position is None or recorded_position == UNKNOWN_POSITION
        else recorded_position
    )
    lap_time = row.lap_time if row.lap_time > 0 else math.inf
    return (-row.laps_completed, position, lap_time, row.car_number)


def positions_at_lap(
    lap_number: int,
    histories: Mapping[str, Sequence[UnifiedLap]],
    classes: Mapping[str, str] | None = None,
) -> ReplaySnapshot:
    """Standings as of *lap_number*.

    Order: laps completed (most first), recorded position (unknown last),
    lap time (missing last), car number. Positions are then renumbered
    from 1; the recorded position only decides order.
    """
    classes = classes or {}
    candidates: list[tuple[ReplayRow, int | None]] = []

    for car_number, history in histories.items():
        result = lookup_lap(history, lap_number)
        if isinstance(result, Found):
            lap, completed, carried = result.lap, lap_number, False
        elif isinstance(result, CarriedForward):
            lap, completed, carried = result.lap, result.last_lap_number, True
        else:
            continue
        row = ReplayRow(
            car_number=car_number,
            position=0,
            lap_time=lap.lap_time,
            flag_status=lap.flag_status,
            laps_completed=completed,
            carried_forward=carried,
            class_name=classes.get(car_number),
        )
        candidates.append((row, lap.position))

    candidates.sort(key=lambda item: _sort_key(*item))
    rows = tuple(
        row.model_copy(update={"position": index})
        for index, (row, _) in enumerate(candidates, start=1)
    )
    return ReplaySnapshot(lap_number=lap_number, rows=rows)


def max_lap(histories: Mapping[str, Sequence[UnifiedLap]]) -> int:
    """Highest lap number recorded by any car."""
    return max(
        (_effective_lap_number(h, i) for h in histories.values() for i in range(len(h))),
        default=0,
    )


_FLAG_STATUS = {
    1: FlagStatus.GREEN,
    2: FlagStatus.YELLOW,
    3: FlagStatus.RED,
    5: FlagStatus.CHECKERED,
}


def _first_set(*values: int | None) -> int | None:
    return next((v for v in values if v is not None), None)


def laps_from_redmist(car_laps: Sequence[CarPosition]) -> list[UnifiedLap]:
    """Convert RedMist per-car lap records into lap records.

    The position at a lap is taken from ``llo``, ``ovp``, ``p`` then
    ``llp``, the first that is set.
    """
    laps = []
    for index, record in enumerate(car_laps):
        laps.append(UnifiedLap(
            transponder=str(record.transponder) if record.transponder else None,
            car_number=record.number,
            lap_number=record.resolved_laps or index + 1,
            lap_time=parse_time_ms(record.last_time) or record.last_lap_ms or 0,
            position=_first_set(
                record.last_lap_overall_position,
                record.overall_position,
                record.position,
                record.last_lap_position,
            ),
            flag_status=_FLAG_STATUS.get(record.flag, FlagStatus.UNKNOWN),
            source="redmist",
        ))
    return laps
