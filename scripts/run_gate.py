#!/usr/bin/env python3
"""CLI entry point for a headless gate negotiation.

Usage:
    # Boot with settings from GATE_* variables and print the settled view
    PYTHONPATH=. python scripts/run_gate.py

    # Feed a conversion payload and wait longer for the decision
    PYTHONPATH=. python scripts/run_gate.py --conversion payload.json --settle-seconds 60
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import aiohttp

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.gate_core.config import GateSettings
from src.gate_core.service import build_service


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_payload(path: str) -> dict:
    with open(path, encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Headless gate negotiation")
    parser.add_argument(
        "--conversion",
        type=str,
        help="JSON file with a conversion payload to deliver after boot",
    )
    parser.add_argument(
        "--deeplink",
        type=str,
        help="JSON file with a deep link click event to deliver after boot",
    )
    parser.add_argument(
        "--settle-seconds",
        type=float,
        default=35.0,
        help="Seconds to let the negotiation run before printing (default: 35)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    settings = GateSettings.from_env()
    timeout = aiohttp.ClientTimeout(total=90, connect=30)

    async with aiohttp.ClientSession(timeout=timeout) as session:
        service = build_service(settings, session)
        await service.start()
        try:
            if args.deeplink:
                service.merger.receive_linking(load_payload(args.deeplink))
            if args.conversion:
                service.merger.receive_tracking(load_payload(args.conversion))

            await asyncio.sleep(args.settle_seconds)
            await service.program.drain()
            print(json.dumps(service.snapshot(), indent=2))
        finally:
            await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
