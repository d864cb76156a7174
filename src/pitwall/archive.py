"""Lap archive and race export.

Lap histories fetched from RedMist are stored as rows keyed by
``(event_id, session_id, car_number, lap_number)`` so a replay can be
rebuilt later without refetching every car. A ``sync_status`` row marks a
session whose laps are complete.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from pitwall._logging import log_api_call
from pitwall.exceptions import PitwallError
from pitwall.models.unified import RaceExport, UnifiedCompetitor, UnifiedLap
from pitwall.redmist import RedMistClient
from pitwall.replay import laps_from_redmist
from pitwall.store import RecordStore, TransponderRegistry

_LOGGER = logging.getLogger(__name__)

LAPS_TABLE = "laps"
SYNC_STATUS_TABLE = "sync_status"
LAP_KEYS = ("event_id", "session_id", "car_number", "lap_number")

ProgressCallback = Callable[[int, int], None]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sync_id(event_id: int, session_id: int) -> str:
    return f"{event_id}-{session_id}"


def is_synced(store: RecordStore, event_id: int, session_id: int) -> bool:
    status = store.get(SYNC_STATUS_TABLE, entity_type="laps", entity_id=_sync_id(event_id, session_id))
    return bool(status) and status.get("status") == "complete"


@log_api_call
async def sync_lap_data(
    client: RedMistClient,
    store: RecordStore,
    event_id: int,
    session_id: int,
    car_numbers: Iterable[str],
    on_progress: ProgressCallback | None = None,
) -> int:
    """Fetch and store every car's laps for a session; return the stored lap count.

    A session already marked complete with stored laps is not fetched again.
    A car whose fetch fails is skipped and logged.
    """
    if is_synced(store, event_id, session_id):
        cached = store.count(LAPS_TABLE, event_id=event_id, session_id=session_id)
        if cached > 0:
            _LOGGER.info("Laps for %s already synced (%d laps)", _sync_id(event_id, session_id), cached)
            return cached

    cars = list(car_numbers)
    rows: list[dict[str, Any]] = []
    for done, car_number in enumerate(cars, start=1):
        try:
            records = await client.car_laps(event_id, session_id, car_number)
        except PitwallError as exc:
            _LOGGER.warning("Failed to fetch laps for car %s: %s", car_number, exc)
            records = []
        for lap in laps_from_redmist(records):
            rows.append({
                **lap.model_dump(mode="json"),
                "event_id": event_id,
                "session_id": session_id,
                "car_number": car_number,
            })
        if on_progress is not None:
            on_progress(done, len(cars))

    if not rows:
        return 0
    store.upsert_many(LAPS_TABLE, rows, LAP_KEYS)
    store.upsert(
        SYNC_STATUS_TABLE,
        {
            "entity_type": "laps",
            "entity_id": _sync_id(event_id, session_id),
            "status": "complete",
            "synced_at": _now(),
        },
        ["entity_type", "entity_id"],
    )
    _LOGGER.info("Synced %d laps for %s", len(rows), _sync_id(event_id, session_id))
    return len(rows)


@log_api_call
def cached_lap_histories(store: RecordStore, event_id: int, session_id: int) -> dict[str, list[UnifiedLap]]:
    """Stored laps grouped by car number and ordered by lap; empty if none cached."""
    grouped: dict[str, list[UnifiedLap]] = defaultdict(list)
    for row in store.get_all(LAPS_TABLE, event_id=event_id, session_id=session_id):
        grouped[row["car_number"]].append(UnifiedLap.model_validate(row))
    return {
        car: sorted(laps, key=lambda lap: lap.lap_number or 0)
        for car, laps in grouped.items()
    }


def export_race_data(
    competitors: Iterable[UnifiedCompetitor],
    registry: TransponderRegistry | None = None,
    **metadata: Any,
) -> RaceExport:
    """Bundle competitors, known mappings and event metadata for archiving."""
    return RaceExport(
        export_date=_now(),
        competitors=tuple(competitors),
        transponder_mappings=tuple(registry.all()) if registry else (),
        **metadata,
    )


def import_race_data(
    data: RaceExport | dict[str, Any] | str,
    registry: TransponderRegistry | None = None,
) -> list[UnifiedCompetitor]:
    """Restore an archive's transponder mappings and return its competitors."""
    if isinstance(data, str):
        export = RaceExport.model_validate_json(data)
    elif isinstance(data, dict):
        export = RaceExport.model_validate(data)
    else:
        export = data
    if registry is not None:
        for mapping in export.transponder_mappings:
            registry.upsert(mapping)
    return list(export.competitors)


def save_race_data(export: RaceExport, path: str | Path) -> Path:
    path = Path(path)
    path.write_text(export.model_dump_json(indent=2), encoding="utf-8")
    return path


def load_race_data(path: str | Path, registry: TransponderRegistry | None = None) -> list[UnifiedCompetitor]:
    return import_race_data(Path(path).read_text(encoding="utf-8"), registry)
