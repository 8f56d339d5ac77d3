"""
Driver simulation against a running API.

Starts tracking an order, replays a short route through Curitiba and
finishes the delivery:

    python -m uvicorn icap.app.main:app --port 8080
    python scripts/simulate_driver.py CAP2505260002 --server http://127.0.0.1:8080
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from icap.mobile.errors import TrackerError
from icap.mobile.sampler import ReplayPositionProvider
from icap.mobile.settings import TrackerSettings
from icap.mobile.state_machine import DeliveryStateMachine, TrackerEvent

ROUTE = [
    (-25.4284, -49.2733),
    (-25.4301, -49.2712),
    (-25.4322, -49.2690),
    (-25.4345, -49.2671),
    (-25.4369, -49.2655),
]


def print_event(event: TrackerEvent):
    print(f"[{event.level.upper():7}] {event.kind.value}: {event.message}")


async def simulate(order_code: str, server_url: str, points: int, interval_ms: int, finish: bool) -> int:
    settings = TrackerSettings(server_url=server_url, update_interval=interval_ms, max_sample_age=0)
    tracker = DeliveryStateMachine.create(ReplayPositionProvider(ROUTE), settings=settings)
    tracker.add_listener(print_event)

    try:
        health = await tracker.test_connection()
        if not health.ok:
            print("❌ Server not reachable")
            return 1

        await tracker.start(order_code)
        # First fix is immediate, the rest follow the interval
        await asyncio.sleep(interval_ms / 1000 * (points - 1) + 0.5)

        if tracker.pending_count:
            await tracker.sync_pending()

        if finish:
            await tracker.finish()
        else:
            await tracker.stop()
    except TrackerError as exc:
        print(f"❌ {exc}")
        return 1
    finally:
        await tracker.shutdown()

    print(f"✅ Simulation done, pending locations: {tracker.pending_count}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Simulate a driver delivering an order")
    parser.add_argument("order_code")
    parser.add_argument("--server", default="http://127.0.0.1:8080")
    parser.add_argument("--points", type=int, default=len(ROUTE))
    parser.add_argument("--interval-ms", type=int, default=1000)
    parser.add_argument("--stop", action="store_true", help="stop instead of finishing the delivery")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    raise SystemExit(asyncio.run(
        simulate(args.order_code, args.server, args.points, args.interval_ms, not args.stop)
    ))


if __name__ == "__main__":
    main()
