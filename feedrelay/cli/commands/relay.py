"""CLI commands that run the relay.

Commands:
- run: Arm the schedule timers and deliver articles until interrupted
- test-run: Run every schedule once and print a summary
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from feedrelay.config import ConfigError, RelayConfig, load_config

DEFAULT_SCHEDULES_PATH = Path("schedules.json")


def configure_logging(config: RelayConfig) -> None:
    logging.basicConfig(
        level=config.log.level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to the JSON config file (default: $FEEDRELAY_CONFIG or config.json).",
    )


def register_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add relay subcommands to the main CLI parser."""

    def add_schedule_args(parser: argparse.ArgumentParser) -> None:
        add_config_args(parser)
        parser.add_argument(
            "--schedules",
            type=Path,
            default=DEFAULT_SCHEDULES_PATH,
            help="Path to the schedules file (default: schedules.json).",
        )

    run_parser = subparsers.add_parser(
        "run",
        description="Refresh feeds on their schedules and deliver new articles.",
        help="Run the relay until interrupted.",
    )
    add_schedule_args(run_parser)
    run_parser.add_argument(
        "--no-run-on-start",
        action="store_true",
        help="Wait for the first timer instead of running every schedule at startup.",
    )
    run_parser.set_defaults(func=relay_run_cli)

    test_parser = subparsers.add_parser(
        "test-run",
        description="Run one cycle of every schedule, drain the queues, and exit.",
        help="Run every schedule once.",
    )
    add_schedule_args(test_parser)
    test_parser.add_argument(
        "--json",
        action="store_true",
        dest="output_json",
        help="Output results in JSON format.",
    )
    test_parser.set_defaults(func=relay_test_run_cli)


def relay_run_cli(args: argparse.Namespace) -> int:
    """Run the relay until interrupted."""
    from feedrelay.schedule import build_manager, load_schedules, run_forever

    try:
        config = load_config(args.config)
        schedules = load_schedules(args.schedules, config.feeds.refresh_rate_minutes)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    configure_logging(config)
    test_runs = False if args.no_run_on_start else None
    manager = build_manager(config, schedules, test_runs=test_runs)

    try:
        asyncio.run(run_forever(manager))
    except KeyboardInterrupt:
        print("Interrupted, exiting.", file=sys.stderr)
    return 0


def relay_test_run_cli(args: argparse.Namespace) -> int:
    """Run every schedule once and report the results."""
    from feedrelay.schedule import build_manager, load_schedules, run_once

    try:
        config = load_config(args.config)
        schedules = load_schedules(args.schedules, config.feeds.refresh_rate_minutes)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    configure_logging(config)
    manager = build_manager(config, schedules, test_runs=False)
    results = asyncio.run(run_once(manager))

    if args.output_json:
        print(json.dumps([result.to_dict() for result in results], indent=2, default=str))
    else:
        for result in results:
            print(result.summary())
            for feed_id, error in result.failed_feeds:
                print(f"  ✗ {feed_id}: {error}")
            print()

    return 1 if any(result.failed_feeds for result in results) else 0
