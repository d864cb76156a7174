"""Race session orchestration: token, live channel, polling and canonical state."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from typing import Awaitable, Callable, Sequence

from pitwall import strategy
from pitwall._logging import log_service_call
from pitwall.archive import cached_lap_histories, sync_lap_data
from pitwall.auth import TokenManager
from pitwall.config import get_settings
from pitwall.exceptions import NotFoundError, PitwallError, RateLimitError, TransportError
from pitwall.live import LiveConnection, MessageKind, SignalRTransport
from pitwall.models.redmist import CarControlLogs, CarPosition, ControlLogEntry, SessionState
from pitwall.models.replay import ReplaySnapshot
from pitwall.models.unified import UnifiedCompetitor, UnifiedLap
from pitwall.pace import FlagBreakdown, PaceComparison, TruePace, analyze_laps_by_flag, calculate_true_pace, compare_true_pace
from pitwall.racemonitor import RaceMonitorClient
from pitwall.reconcile import Reconciler, racemonitor_to_unified
from pitwall.redmist import RedMistClient
from pitwall.replay import positions_at_lap
from pitwall.store import RecordStore, TransponderRegistry
from pitwall.strategy import CompetitorPitEstimate, GapTrend, PitWindow, StintTiming
from pitwall.timefmt import parse_time_ms

_LOGGER = logging.getLogger(__name__)

# RedMist flag code for a full-course yellow
YELLOW_FLAG = 2


class Poller:
    """Runs *poll* every *interval* seconds.

    A :class:`~pitwall.exceptions.RateLimitError` skips the following polls
    (at least ``backoff_polls``, more when ``Retry-After`` asks for longer).
    Any other library error is logged and the next poll goes ahead.
    """

    def __init__(
        self,
        poll: Callable[[], Awaitable[None]],
        interval: float | None = None,
        backoff_polls: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self._poll = poll
        self.interval = interval or settings.poll_interval
        self._backoff_polls = settings.rate_limit_backoff_polls if backoff_polls is None else backoff_polls
        self._sleep = sleep
        self._skip = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def skipped_polls_remaining(self) -> int:
        return self._skip

    async def poll_once(self) -> bool:
        """Run one poll; False if it was skipped or failed."""
        if self._skip > 0:
            self._skip -= 1
            _LOGGER.debug("Skipping poll (rate limited, %d left)", self._skip)
            return False
        try:
            await self._poll()
        except RateLimitError as exc:
            skip = self._backoff_polls
            if exc.retry_after:
                skip = max(skip, math.ceil(exc.retry_after / self.interval))
            self._skip = skip
            _LOGGER.warning("Rate limited; skipping next %d polls", skip)
            return False
        except PitwallError as exc:
            _LOGGER.warning("Poll failed: %s", exc)
            return False
        return True

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def _loop(self) -> None:
        while True:
            await self.poll_once()
            await self._sleep(self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None


class RaceSession:
    """One followed event: live updates, polling fallback and merged standings.

    Usage:
        async with RedMistClient(tokens) as redmist:
            session = RaceSession(tokens, redmist)
            await session.start(event_id=1234)
            ...
            await session.stop()
    """

    def __init__(
        self,
        tokens: TokenManager,
        redmist: RedMistClient,
        racemonitor: RaceMonitorClient | None = None,
        live: LiveConnection | None = None,
        store: RecordStore | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.tokens = tokens
        self.redmist = redmist
        self.racemonitor = racemonitor
        self.live = live or LiveConnection(SignalRTransport(tokens.get_token))
        self.store = store
        self.registry = TransponderRegistry(store) if store is not None else None
        self.reconciler = Reconciler(self.registry)
        self.poller = Poller(self.refresh, interval=poll_interval)
        self.event_id: int | None = None
        self.racemonitor_race_id: int | None = None
        self.session_state: SessionState | None = None
        self.control_log: list[ControlLogEntry] = []
        self._unregister: list[Callable[[], None]] = []

    @property
    def active(self) -> bool:
        return self.event_id is not None

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self, event_id: int, racemonitor_race_id: int | None = None, use_live: bool = True) -> None:
        """Follow *event_id*; falls back to polling alone if the hub is unreachable.

        A transport failure while connecting or subscribing disconnects the
        hub and carries on with polling. Any other library error (an
        :class:`~pitwall.exceptions.AuthError` for instance) rolls the
        session back before it is re-raised.
        """
        if self.active:
            await self.stop()
        self.event_id = event_id
        self.racemonitor_race_id = racemonitor_race_id
        self.reconciler.redmist_event_id = event_id
        self.reconciler.racemonitor_race_id = racemonitor_race_id
        self.tokens.start_auto_refresh()

        self._unregister = [
            self.live.on(MessageKind.SESSION, self._on_session_state),
            self.live.on(MessageKind.CAR_POSITIONS, self._on_car_positions),
            self.live.on(MessageKind.CONTROL_LOG, self._on_control_log),
        ]

        await self.poller.poll_once()
        if use_live:
            try:
                await self.live.connect()
                await self.live.subscribe_to_event(event_id)
            except TransportError as exc:
                _LOGGER.warning("Live channel unavailable, polling only: %s", exc)
                await self.live.disconnect()
            except PitwallError:
                _LOGGER.exception("Could not start following event %s", event_id)
                await self.stop()
                raise
        self.poller.start()
        _LOGGER.info("Following event %s", event_id)

    async def stop(self) -> None:
        """Tear down: unsubscribe, stop polling and auto-refresh, clear state."""
        for unregister in self._unregister:
            unregister()
        self._unregister = []
        await self.live.disconnect()
        await self.poller.stop()
        await self.tokens.stop_auto_refresh()
        self.reconciler.clear()
        self.session_state = None
        self.control_log = []
        _LOGGER.info("Stopped following event %s", self.event_id)
        self.event_id = None
        self.racemonitor_race_id = None

    # ── Inbound data ──────────────────────────────────────────

    async def refresh(self) -> None:
        """Poll both providers once and merge the results."""
        if self.event_id is None:
            return
        state = await self.redmist.current_session_state(self.event_id)
        if state is not None:
            self._on_session_state(state)
        if self.racemonitor is not None and self.racemonitor_race_id is not None:
            live = await self.racemonitor.live_session(self.racemonitor_race_id)
            if live is not None and live.competitors:
                self.reconciler.ingest_racemonitor(live.competitors.values())

    def _on_session_state(self, state: SessionState) -> None:
        self.session_state = state
        self.reconciler.ingest_session_state(state)

    def _on_car_positions(self, cars: list[CarPosition]) -> None:
        self.reconciler.ingest_redmist(cars, self.session_state)

    def _on_control_log(self, entries: list[ControlLogEntry] | CarControlLogs) -> None:
        if isinstance(entries, CarControlLogs):
            entries = entries.entries or []
        self.control_log.extend(entries)

    async def load_racemonitor_laps(self, racer_id: str) -> UnifiedCompetitor:
        """Fetch one racer's lap history (with per-lap flags) and merge it."""
        if self.racemonitor is None or self.racemonitor_race_id is None:
            raise NotFoundError("No Race-Monitor race configured for this session")
        details = await self.racemonitor.live_racer(self.racemonitor_race_id, racer_id)
        if details is None or details.competitor is None:
            raise NotFoundError(f"Racer {racer_id} not found")
        return self.reconciler.ingest(racemonitor_to_unified(details.competitor, details.laps or []))

    # ── Analysis ──────────────────────────────────────────────

    def _competitor(self, car: str) -> UnifiedCompetitor:
        competitor = self.reconciler.get(car)
        if competitor is None:
            raise NotFoundError(f"Car {car} not in session")
        return competitor

    def _history(self, car: str) -> Sequence[UnifiedLap]:
        return self._competitor(car).lap_history

    @log_service_call
    def standings(self) -> list[UnifiedCompetitor]:
        return self.reconciler.standings()

    @log_service_call
    def flag_breakdown(self, car: str) -> FlagBreakdown:
        return analyze_laps_by_flag(self._history(car))

    @log_service_call
    def true_pace(self, car: str, exclude_outliers: bool = True) -> TruePace:
        return calculate_true_pace(self._history(car), exclude_outliers)

    @log_service_call
    def compare(self, my_car: str, their_car: str) -> PaceComparison:
        return compare_true_pace(self._history(my_car), self._history(their_car))

    # ── Strategy ──────────────────────────────────────────────

    @log_service_call
    def stint_timing(
        self,
        car: str,
        max_stint_minutes: int = strategy.MAX_DRIVER_STINT_MINUTES,
        stint_length: int = strategy.DEFAULT_STINT_LAPS,
        pit_time_seconds: int = strategy.DEFAULT_PIT_TIME_SECONDS,
        taking_fuel: bool = False,
    ) -> StintTiming:
        """Stint progress for *car* against the race time still to run."""
        competitor = self._competitor(car)
        time_to_go = self.session_state.time_to_go if self.session_state else None
        return strategy.stint_timing(
            competitor.laps,
            competitor.last_pit_lap or 0,
            competitor.best_lap_time or competitor.last_lap_time or 0,
            parse_time_ms(time_to_go),
            max_stint_minutes=max_stint_minutes,
            stint_length=stint_length,
            pit_time_seconds=pit_time_seconds,
            taking_fuel=taking_fuel,
        )

    @log_service_call
    def pit_under_yellow(self, car: str) -> bool:
        """True when the track is yellow and *car* is far enough into its stint to stop."""
        is_yellow = self.session_state is not None and self.session_state.current_flag == YELLOW_FLAG
        return strategy.should_pit_under_yellow(self.stint_timing(car), is_yellow)

    @log_service_call
    def pit_window(self, car: str, stint_length: int = strategy.DEFAULT_STINT_LAPS) -> PitWindow:
        competitor = self._competitor(car)
        return strategy.project_pit_window(
            competitor.laps,
            competitor.last_pit_lap or 0,
            competitor.best_lap_time or competitor.last_lap_time or 0,
            stint_length,
        )

    @log_service_call
    def competitor_pit(self, car: str, stint_length: int = strategy.DEFAULT_STINT_LAPS) -> CompetitorPitEstimate:
        competitor = self._competitor(car)
        return strategy.estimate_competitor_pit(
            competitor.laps,
            competitor.pit_count or 0,
            competitor.last_pit_lap or 0,
            stint_length,
        )

    @log_service_call
    def gap_trend(self, my_car: str, their_car: str) -> GapTrend:
        return strategy.gap_trend(
            self._competitor(my_car).last_lap_time,
            self._competitor(their_car).last_lap_time,
        )

    @log_service_call
    def relevant_incidents(self, car: str) -> list[ControlLogEntry]:
        """Control log entries that name *car* or report an incident or penalty."""
        return strategy.relevant_incidents(self.control_log, car)

    async def replay_histories(self, session_id: int, car_numbers: Sequence[str] | None = None) -> dict[str, list[UnifiedLap]]:
        """Per-car lap histories for a replay, synced into the store first."""
        if self.event_id is None:
            raise NotFoundError("No event is being followed")
        if self.store is None:
            raise NotFoundError("Replay needs a record store")
        if car_numbers is None:
            car_numbers = [c.car_number for c in self.reconciler.competitors() if c.car_number]
        await sync_lap_data(self.redmist, self.store, self.event_id, session_id, car_numbers)
        return cached_lap_histories(self.store, self.event_id, session_id)

    @log_service_call
    def replay_at(self, lap_number: int, histories: dict[str, list[UnifiedLap]]) -> ReplaySnapshot:
        classes = {
            c.car_number: c.class_name
            for c in self.reconciler.competitors()
            if c.car_number and c.class_name
        }
        return positions_at_lap(lap_number, histories, classes)
