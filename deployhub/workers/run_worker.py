from __future__ import annotations

import argparse
import asyncio

from arq.worker import run_worker

from deployhub.workers.arq_worker import WorkerSettings


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the usage counter worker.")
    parser.add_argument(
        "--burst",
        action="store_true",
        help="drain queued usage increments and exit instead of polling forever",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    # arq calls asyncio.get_event_loop() during worker init, which no longer
    # creates a loop for the main thread on current Pythons.
    asyncio.set_event_loop(asyncio.new_event_loop())
    run_worker(WorkerSettings, burst=args.burst)


if __name__ == "__main__":
    main()
