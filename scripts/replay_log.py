#!/usr/bin/env python3
"""Replay a captured metric log through the session detectors.

Input lines look like::

    2026-03-01T08:00:05Z ovms/alice/CAR1/metric/v/p/speed 42.5

(epoch seconds are accepted in the first column too). The log is fed to a
fresh live state on a simulated clock, the scheduler ticks every
``--tick`` seconds of log time, and the resulting drive and charge rows are
printed as JSON. Nothing is written to a real store.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyovms._constants import TABLE_CHARGES, TABLE_DRIVES, TABLE_TELEMETRY  # noqa: E402
from pyovms.config import OvmsConfig  # noqa: E402
from pyovms.ingestion.metrics import MetricNormalizer  # noqa: E402
from pyovms.scheduler import FlushScheduler, StoreWriter  # noqa: E402
from pyovms.state.live import LiveVehicleState  # noqa: E402
from pyovms.store.memory import MemoryTelemetryStore  # noqa: E402


def _parse_time(raw: str) -> datetime:
    try:
        return datetime.fromtimestamp(float(raw), tz=UTC)
    except ValueError:
        pass
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _read_log(path: Path) -> list[tuple[datetime, str, str]]:
    entries: list[tuple[datetime, str, str]] = []
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(maxsplit=2)
        if len(parts) < 3:
            print(f"{path}:{lineno}: skipping short line", file=sys.stderr)
            continue
        entries.append((_parse_time(parts[0]), parts[1], parts[2]))
    entries.sort(key=lambda entry: entry[0])
    return entries


class _LogClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


async def _replay(entries: list[tuple[datetime, str, str]], config: OvmsConfig, tail: float) -> MemoryTelemetryStore:
    store = MemoryTelemetryStore()
    writer = StoreWriter(store)
    state = LiveVehicleState()
    clock = _LogClock(entries[0][0])
    normalizer = MetricNormalizer(state, clock=clock)
    scheduler = FlushScheduler(config, state, writer, clock=clock)

    step = timedelta(seconds=config.tick_interval)
    next_tick = entries[0][0] + step
    for at, topic, value in entries:
        while next_tick <= at:
            clock.now = next_tick
            scheduler.tick()
            await writer.process_pending()
            next_tick += step
        clock.now = at
        normalizer.ingest_topic(topic, value)

    end = clock.now + timedelta(seconds=tail)
    while next_tick <= end:
        clock.now = next_tick
        scheduler.tick()
        await writer.process_pending()
        next_tick += step

    return store


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay a metric log through pyovms session detection")
    parser.add_argument("log", type=Path, help="Captured metric log file.")
    parser.add_argument("--tick", type=float, default=5.0, help="Scheduler tick in seconds of log time.")
    parser.add_argument(
        "--cooldown",
        type=float,
        default=900.0,
        help="Drive cooldown window in seconds.",
    )
    parser.add_argument(
        "--tail",
        type=float,
        default=None,
        help="Seconds of silence simulated after the last line (default: cooldown + one tick).",
    )
    parser.add_argument("--snapshots", action="store_true", help="Also print telemetry snapshot rows.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    entries = _read_log(args.log)
    if not entries:
        print("No metric lines found", file=sys.stderr)
        return 2

    config = OvmsConfig(
        vehicle_id="replay",
        server="replay",
        tick_interval=args.tick,
        drive_cooldown=args.cooldown,
    )
    tail = args.tail if args.tail is not None else args.cooldown + args.tick
    store = asyncio.run(_replay(entries, config, tail))

    output: dict[str, Any] = {
        "drives": store.rows(TABLE_DRIVES),
        "charges": store.rows(TABLE_CHARGES),
    }
    if args.snapshots:
        output["telemetry"] = store.rows(TABLE_TELEMETRY)
    print(json.dumps(output, indent=2, ensure_ascii=False, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
