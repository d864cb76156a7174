"""Cross-source reconciliation: provider records -> one canonical competitor per car.

Conversion functions map each provider's shape into
:class:`~pitwall.models.unified.UnifiedCompetitor`; :func:`merge` combines
two views of the same car with a fixed per-field policy, and
:class:`Reconciler` owns the canonical map for a session.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from pitwall.models.racemonitor import RMCompetitor, RMLapTime, RMLiveCompetitor
from pitwall.models.redmist import CarPosition, SessionState
from pitwall.models.unified import (
    FlagStatus,
    Sources,
    TransponderMapping,
    UnifiedCompetitor,
    UnifiedLap,
)
from pitwall.store import TransponderRegistry
from pitwall.timefmt import parse_time_ms

_LOGGER = logging.getLogger(__name__)

_FLAG_NAMES = {
    1: "green",
    2: "yellow",
    3: "red",
    4: "white",
    5: "checkered",
    6: "black",
    7: "blue",
}

_RM_FLAGS = {
    "green": FlagStatus.GREEN,
    "1": FlagStatus.GREEN,
    "yellow": FlagStatus.YELLOW,
    "2": FlagStatus.YELLOW,
    "red": FlagStatus.RED,
    "3": FlagStatus.RED,
    "finish": FlagStatus.CHECKERED,
    "checkered": FlagStatus.CHECKERED,
    "4": FlagStatus.CHECKERED,
}

_TEAM_PATTERN = re.compile(r"team[:\s]+(.+)", re.IGNORECASE)


def flag_name(code: int | None) -> str:
    """Provider A flag code to name; unrecognised codes are ``unknown``."""
    return _FLAG_NAMES.get(code, "unknown")


def normalize_flag_status(status: str | int | None) -> FlagStatus:
    """Provider B flag text (``"Green "``, ``"Finish"``, ``"2"``...) to :class:`FlagStatus`."""
    if status is None:
        return FlagStatus.UNKNOWN
    return _RM_FLAGS.get(str(status).strip().lower(), FlagStatus.UNKNOWN)


def extract_team(additional_data: str | None) -> str | None:
    """Pull a team name out of Race-Monitor's free-form ``AdditionalData``."""
    if not additional_data:
        return None
    match = _TEAM_PATTERN.search(additional_data)
    if match:
        return match.group(1).strip()
    if len(additional_data) < 50:
        return additional_data.strip() or None
    return None


def _int_or_none(value: str | None) -> int | None:
    """Positive integer from a provider string, None for blank, zero or junk."""
    if not value:
        return None
    try:
        number = int(value)
    except ValueError:
        return None
    return number if number > 0 else None


def _ms_or_none(value: str | None) -> int | None:
    return parse_time_ms(value) or None


# ── Conversion ─────────────────────────────────────────────────


def redmist_to_unified(car: CarPosition, session_state: SessionState | None = None) -> UnifiedCompetitor:
    return UnifiedCompetitor(
        transponder=str(car.transponder) if car.transponder else None,
        car_number=car.number or None,
        driver_name=car.driver_name or None,
        team_name=session_state.team_for(car.number) if session_state else None,
        class_name=car.resolved_class,
        position=car.resolved_position,
        class_position=car.resolved_class_position,
        laps=car.resolved_laps or 0,
        last_lap_time=_ms_or_none(car.last_time) or car.last_lap_ms or None,
        best_lap_time=_ms_or_none(car.best_time) or car.best_lap_ms or None,
        pit_count=car.pit_count if car.pit_count is not None else car.pit_lap,
        last_pit_lap=car.pit_lap,
        in_pit=car.in_pit,
        flag_status=flag_name(car.flag) if car.flag is not None else None,
        sources=Sources(redmist=True),
    )


def racemonitor_lap(lap: RMLapTime, transponder: str | None, car_number: str | None) -> UnifiedLap:
    return UnifiedLap(
        transponder=transponder,
        car_number=car_number,
        lap_number=_int_or_none(lap.lap),
        lap_time=parse_time_ms(lap.lap_time),
        position=_int_or_none(lap.position),
        flag_status=normalize_flag_status(lap.flag_status),
        total_time=parse_time_ms(lap.total_time),
        source="racemonitor",
    )


def racemonitor_to_unified(
    competitor: RMCompetitor | RMLiveCompetitor,
    lap_times: Iterable[RMLapTime] | None = None,
) -> UnifiedCompetitor:
    """Convert a Race-Monitor competitor.

    *lap_times* defaults to the competitor's own ``LapTimes`` when the
    session details were fetched with lap times included.
    """
    transponder = competitor.transponder or None
    car_number = competitor.number or None
    if lap_times is None and isinstance(competitor, RMCompetitor):
        lap_times = competitor.lap_times
    history = tuple(racemonitor_lap(lap, transponder, car_number) for lap in lap_times or ())
    class_name = competitor.category if isinstance(competitor, RMCompetitor) else None
    return UnifiedCompetitor(
        transponder=transponder,
        car_number=car_number,
        driver_name=competitor.driver_name or None,
        team_name=extract_team(competitor.additional_data),
        class_name=class_name or competitor.class_id or None,
        position=_int_or_none(competitor.position),
        laps=_int_or_none(competitor.laps) or 0,
        last_lap_time=_ms_or_none(competitor.last_lap_time),
        best_lap_time=_ms_or_none(competitor.best_lap_time),
        total_time=_ms_or_none(competitor.total_time),
        lap_history=history,
        sources=Sources(racemonitor=True),
    )


# ── Merge ──────────────────────────────────────────────────────


def _ranked(
    a: UnifiedCompetitor, b: UnifiedCompetitor, provider: str,
) -> tuple[UnifiedCompetitor, UnifiedCompetitor]:
    """Order (a, b) so the record owning *provider*'s fields comes first.

    When both or neither carry the provider, the one received from it most
    recently wins; equal markers favour *b*, the incoming record.
    """
    a_has = getattr(a.sources, provider)
    b_has = getattr(b.sources, provider)
    if a_has != b_has:
        return (a, b) if a_has else (b, a)
    seq = f"{provider}_seq"
    return (a, b) if getattr(a, seq) > getattr(b, seq) else (b, a)


def _first(*values: Any) -> Any:
    return next((v for v in values if v is not None), None)


def _history(a: UnifiedCompetitor, b: UnifiedCompetitor) -> tuple[UnifiedLap, ...]:
    candidates = [c for c in (a, b) if c.sources.racemonitor and c.lap_history]
    if not candidates:
        candidates = [c for c in (a, b) if c.lap_history]
    if not candidates:
        return ()
    best = candidates[0]
    for c in candidates[1:]:
        if len(c.lap_history) > len(best.lap_history):
            best = c
    return best.lap_history


def merge(a: UnifiedCompetitor, b: UnifiedCompetitor) -> UnifiedCompetitor:
    """Combine two views of the same car.

    Identity fields come from the Race-Monitor view when both have a value;
    live timing fields come from the RedMist view. ``laps`` and
    ``total_time`` take the maximum, ``best_lap_time`` the smallest
    non-zero value, ``sources`` the union. Between two records from the same
    provider the newer one (higher arrival marker, else *b*) wins. The lap
    history is taken whole from one record, never interleaved.
    """
    ident, ident_other = _ranked(a, b, "racemonitor")
    live, live_other = _ranked(a, b, "redmist")

    bests = [t for t in (a.best_lap_time, b.best_lap_time) if t]
    totals = [t for t in (a.total_time, b.total_time) if t is not None]

    return UnifiedCompetitor(
        transponder=_first(ident.transponder, ident_other.transponder),
        car_number=_first(ident.car_number, ident_other.car_number),
        driver_name=_first(ident.driver_name, ident_other.driver_name),
        team_name=_first(ident.team_name, ident_other.team_name),
        class_name=_first(ident.class_name, ident_other.class_name),
        position=_first(live.position, live_other.position),
        class_position=_first(live.class_position, live_other.class_position),
        laps=max(a.laps, b.laps),
        last_lap_time=_first(live.last_lap_time, live_other.last_lap_time),
        best_lap_time=min(bests) if bests else None,
        total_time=max(totals) if totals else None,
        pit_count=_first(live.pit_count, live_other.pit_count),
        last_pit_lap=_first(live.last_pit_lap, live_other.last_pit_lap),
        in_pit=_first(live.in_pit, live_other.in_pit),
        flag_status=_first(live.flag_status, live_other.flag_status),
        lap_history=_history(a, b),
        sources=a.sources | b.sources,
        redmist_seq=max(a.redmist_seq, b.redmist_seq),
        racemonitor_seq=max(a.racemonitor_seq, b.racemonitor_seq),
    )


# ── Canonical state ────────────────────────────────────────────


class Reconciler:
    """Single owner of the canonical competitor map for one session.

    Records correlate on transponder first, then on car number (directly or
    through the transponder registry). A car first seen without a
    transponder is re-keyed once one arrives.
    """

    def __init__(
        self,
        registry: TransponderRegistry | None = None,
        redmist_event_id: int | None = None,
        racemonitor_race_id: int | None = None,
    ) -> None:
        self._registry = registry
        self.redmist_event_id = redmist_event_id
        self.racemonitor_race_id = racemonitor_race_id
        self._competitors: dict[str, UnifiedCompetitor] = {}
        self._arrivals = 0

    def __len__(self) -> int:
        return len(self._competitors)

    def _find(self, record: UnifiedCompetitor) -> str | None:
        if record.transponder:
            for key, existing in self._competitors.items():
                if existing.transponder == record.transponder:
                    return key
        if record.car_number:
            for key, existing in self._competitors.items():
                if existing.car_number != record.car_number:
                    continue
                if existing.transponder and record.transponder and existing.transponder != record.transponder:
                    continue
                return key
        return None

    def _with_registry(self, record: UnifiedCompetitor) -> UnifiedCompetitor:
        if self._registry is None or record.transponder or not record.car_number:
            return record
        mapping = self._registry.by_car_number(record.car_number)
        if mapping is None:
            return record
        return record.model_copy(update={"transponder": mapping.transponder})

    def _stamped(self, record: UnifiedCompetitor) -> UnifiedCompetitor:
        self._arrivals += 1
        update = {}
        if record.sources.redmist:
            update["redmist_seq"] = self._arrivals
        if record.sources.racemonitor:
            update["racemonitor_seq"] = self._arrivals
        return record.model_copy(update=update)

    def ingest(self, record: UnifiedCompetitor) -> UnifiedCompetitor:
        """Merge *record* into the canonical map and return the merged result.

        The record is stamped as the newest from its provider, so its live
        fields replace those of earlier records from the same provider.
        """
        record = self._stamped(self._with_registry(record))
        key = self._find(record)
        merged = merge(self._competitors[key], record) if key is not None else record
        new_key = merged.key
        if new_key is None:
            _LOGGER.debug("Dropping competitor with neither transponder nor car number")
            return merged
        if key is not None and key != new_key:
            _LOGGER.info("Re-keying car %s from %s to %s", merged.car_number, key, new_key)
            del self._competitors[key]
        self._competitors[new_key] = merged
        self._remember(merged)
        return merged

    def _remember(self, competitor: UnifiedCompetitor) -> None:
        if self._registry is None or not competitor.transponder:
            return
        self._registry.upsert(TransponderMapping(
            transponder=competitor.transponder,
            car_number=competitor.car_number,
            driver_name=competitor.driver_name,
            team_name=competitor.team_name,
            class_name=competitor.class_name,
            redmist_event_id=self.redmist_event_id if competitor.sources.redmist else None,
            racemonitor_race_id=self.racemonitor_race_id if competitor.sources.racemonitor else None,
        ))

    def ingest_redmist(
        self, cars: Iterable[CarPosition], session_state: SessionState | None = None,
    ) -> list[UnifiedCompetitor]:
        return [self.ingest(redmist_to_unified(car, session_state)) for car in cars]

    def ingest_session_state(self, state: SessionState) -> list[UnifiedCompetitor]:
        if state.event_id is not None and self.redmist_event_id is None:
            self.redmist_event_id = state.event_id
        return self.ingest_redmist(state.car_positions or [], state)

    def ingest_racemonitor(
        self,
        competitors: Iterable[RMCompetitor | RMLiveCompetitor],
        lap_times: dict[str, list[RMLapTime]] | None = None,
    ) -> list[UnifiedCompetitor]:
        """Ingest Race-Monitor competitors; *lap_times* is keyed by car number."""
        lap_times = lap_times or {}
        return [
            self.ingest(racemonitor_to_unified(c, lap_times.get(c.number or "")))
            for c in competitors
        ]

    def get(self, key: str) -> UnifiedCompetitor | None:
        """Look up by transponder or car number."""
        if key in self._competitors:
            return self._competitors[key]
        for competitor in self._competitors.values():
            if competitor.car_number == key:
                return competitor
        return None

    def competitors(self) -> list[UnifiedCompetitor]:
        return list(self._competitors.values())

    def standings(self) -> list[UnifiedCompetitor]:
        """Competitors by position; cars without a position follow, by car number."""
        return sorted(
            self._competitors.values(),
            key=lambda c: (c.position is None, c.position or 0, c.car_number or ""),
        )

    def clear(self) -> None:
        self._competitors.clear()
