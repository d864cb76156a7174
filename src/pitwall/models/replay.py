"""Replay snapshot models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from pitwall.models.unified import FlagStatus


class ReplayRow(BaseModel):
    """One car's line in a reconstructed standings table."""

    model_config = ConfigDict(frozen=True)

    car_number: str
    position: int
    lap_time: int = 0
    flag_status: FlagStatus = FlagStatus.UNKNOWN
    laps_completed: int = 0
    carried_forward: bool = False
    class_name: str | None = None


class ReplaySnapshot(BaseModel):
    """Standings for every car with any history, as of one lap."""

    model_config = ConfigDict(frozen=True)

    lap_number: int
    rows: tuple[ReplayRow, ...] = ()

    @property
    def car_numbers(self) -> list[str]:
        return [row.car_number for row in self.rows]
