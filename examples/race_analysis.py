"""Follow a live event, then analyse pace and replay the running order."""

import asyncio
import sys

from pitwall import JsonFileStore, RaceMonitorClient, RaceSession, RedMistClient, TokenManager
from pitwall.config import get_settings
from pitwall.replay import max_lap
from pitwall.timefmt import format_ms


async def analyze_event(event_id: int, race_id: int | None, my_car: str, their_car: str) -> None:
    """Merge both providers for one event and compare two cars."""
    settings = get_settings()
    tokens = TokenManager()
    tokens.configure(settings.client_id, settings.client_secret)

    async with RedMistClient(tokens) as redmist, RaceMonitorClient() as rm:
        session = RaceSession(
            tokens,
            redmist,
            racemonitor=rm if race_id else None,
            store=JsonFileStore(),
        )
        await session.start(event_id, racemonitor_race_id=race_id)

        # 1. Let the live channel and a poll or two fill the standings
        await asyncio.sleep(5)
        print("=== Standings ===")
        for c in session.standings()[:10]:
            src = "+".join(n for n, on in (("RedMist", c.sources.redmist), ("Race-Monitor", c.sources.racemonitor)) if on)
            print(f"  P{c.position}: #{c.car_number} {c.driver_name or ''} [{c.team_name or '-'}] "
                  f"laps {c.laps} best {format_ms(c.best_lap_time)} ({src})")

        # 2. Flag-aware pace, which needs per-lap flags from Race-Monitor
        if race_id and rm.api_token:
            live = await rm.live_session(race_id)
            racers = {c.number: rid for rid, c in (live.competitors or {}).items()} if live else {}
            for car in (my_car, their_car):
                if car in racers:
                    await session.load_racemonitor_laps(racers[car])

            print(f"\n=== Pace: #{my_car} vs #{their_car} ===")
            breakdown = session.flag_breakdown(my_car)
            print(f"  #{my_car} green laps: {len(breakdown.green_laps)} "
                  f"({breakdown.green_lap_percentage:.0f}%), yellow laps: {breakdown.yellow_lap_count}")
            comparison = session.compare(my_car, their_car)
            print(f"  True pace: {format_ms(round(comparison.my_true_pace))} vs "
                  f"{format_ms(round(comparison.their_true_pace))}")
            print(f"  Advantage per green lap: {comparison.pace_advantage / 1000:+.3f}s")

        # 3. Stint and pit strategy for my car against the rival
        if session.reconciler.get(my_car) and session.reconciler.get(their_car):
            stint = session.stint_timing(my_car)
            window = session.pit_window(my_car)
            rival = session.competitor_pit(their_car)
            print(f"\n=== Strategy: #{my_car} ===")
            print(f"  {stint.laps_since_pit} laps since stop, {format_ms(stint.stint_time_remaining_ms, include_hours=True)} "
                  f"stint left, {stint.pits_remaining} stops to go")
            print(f"  Next stop around lap {window.projected_pit_lap} "
                  f"(window {stint.pit_window_start_lap}-{stint.pit_window_end_lap})")
            print(f"  #{their_car} stints ~{rival.estimated_stint_length} laps, "
                  f"next stop in {rival.laps_until_pit}; gap {session.gap_trend(my_car, their_car).value}")
            if session.pit_under_yellow(my_car):
                print("  Yellow: pit now")
            for entry in session.relevant_incidents(my_car):
                print(f"  [{entry.time or '--'}] {entry.note or entry.action or ''}")

        # 4. Replay the running order lap by lap
        if session.session_state and session.session_state.session_id:
            histories = await session.replay_histories(session.session_state.session_id)
            last = max_lap(histories)
            print(f"\n=== Replay ({last} laps) ===")
            for lap in range(1, last + 1, max(1, last // 5)):
                snapshot = session.replay_at(lap, histories)
                order = ", ".join(
                    f"#{r.car_number}{'*' if r.carried_forward else ''}" for r in snapshot.rows[:5]
                )
                print(f"  Lap {lap}: {order}")

        await session.stop()

    await tokens.close()


if __name__ == "__main__":
    if len(sys.argv) < 4:
        print("usage: race_analysis.py EVENT_ID MY_CAR THEIR_CAR [RACE_MONITOR_RACE_ID]")
        sys.exit(1)
    race = int(sys.argv[4]) if len(sys.argv) > 4 else None
    asyncio.run(analyze_event(int(sys.argv[1]), race, sys.argv[2], sys.argv[3]))
