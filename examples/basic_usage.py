"""Basic usage examples for the pitwall clients."""

import asyncio

from pitwall import RaceMonitorClient, RedMistClient, TokenManager
from pitwall.config import get_settings
from pitwall.timefmt import format_ms, parse_time_ms


async def main() -> None:
    settings = get_settings()
    tokens = TokenManager()
    tokens.configure(settings.client_id, settings.client_secret)

    async with RedMistClient(tokens) as redmist:
        # Live events are public
        print("=== Live Events ===")
        events = await redmist.live_events()
        for e in events[:5]:
            print(f"  [{e.event_id}] {e.event_name} - {e.track} ({e.organization_name})")

        if not events or events[0].event_id is None:
            print("  No live events.")
            await tokens.close()
            return

        event_id = events[0].event_id
        print(f"\n=== Standings for event {event_id} ===")
        state = await redmist.current_session_state(event_id)
        if state is not None:
            cars = sorted(state.car_positions or [], key=lambda c: c.resolved_position or 999)
            for car in cars[:10]:
                best = format_ms(parse_time_ms(car.best_time))
                print(f"  P{car.resolved_position}: #{car.number} {car.driver_name or ''} best {best}")

        print("\n=== Control Log ===")
        for entry in (await redmist.control_log(event_id))[:5]:
            print(f"  {entry.time} #{entry.car1} {entry.note} -> {entry.status}")

    await tokens.close()

    if settings.racemonitor_token:
        async with RaceMonitorClient() as rm:
            print("\n=== Race-Monitor Current Races ===")
            for race in await rm.public_current_races():
                print(f"  [{race.id}] {race.name} at {race.track_name}")


if __name__ == "__main__":
    asyncio.run(main())
