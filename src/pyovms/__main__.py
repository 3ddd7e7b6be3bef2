"""Command-line entry point: ``python -m pyovms`` or ``pyovms``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pyovms.config import TRANSPORT_MQTT, TRANSPORT_PROTOCOL, OvmsConfig
from pyovms.exceptions import OvmsConfigError
from pyovms.logger import TelemetryLogger
from pyovms.store.memory import MemoryTelemetryStore

_logger = logging.getLogger("pyovms")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Log OVMS vehicle telemetry, drives and charges")
    parser.add_argument(
        "--transport",
        choices=[TRANSPORT_MQTT, TRANSPORT_PROTOCOL],
        default=None,
        help="Ingestion transport. Overrides OVMS_TRANSPORT (default: mqtt).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Keep all rows in memory instead of writing to the telemetry store.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser.parse_args(argv)


async def _run(config: OvmsConfig, *, dry_run: bool) -> None:
    store = MemoryTelemetryStore() if dry_run else None
    try:
        async with TelemetryLogger(config, store=store) as telemetry:
            await telemetry.run()
    finally:
        if store is not None:
            for table, rows in sorted(store.tables.items()):
                _logger.info("Dry run: %d rows in %s", len(rows), table)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {}
    if args.transport:
        overrides["transport"] = args.transport
    try:
        config = OvmsConfig.from_env(**overrides)
        config.validate(require_store=not args.dry_run)
    except OvmsConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    try:
        asyncio.run(_run(config, dry_run=args.dry_run))
    except KeyboardInterrupt:
        _logger.info("Interrupted; shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
