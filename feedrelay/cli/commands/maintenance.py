"""CLI commands for configuration and delivery record upkeep.

Commands:
- config check: Validate the config file and print the resolved values
- records prune: Drop delivery records older than database.deliveryRecordsExpire days
"""

from __future__ import annotations

import argparse
import json
import sys

from feedrelay.config import ConfigError, load_config

from .relay import add_config_args


def register_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add config and records subcommands to the main CLI parser."""

    config_parser = subparsers.add_parser(
        "config",
        description="Inspect the relay configuration.",
        help="Validate and show configuration.",
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command", metavar="SUBCOMMAND")
    config_subparsers.required = True

    check_parser = config_subparsers.add_parser(
        "check",
        description="Validate the config file and print the resolved configuration.",
        help="Validate the config file.",
    )
    add_config_args(check_parser)
    check_parser.add_argument(
        "--json",
        action="store_true",
        dest="output_json",
        help="Output the resolved configuration as JSON.",
    )
    check_parser.set_defaults(func=config_check_cli, config_command="check")

    records_parser = subparsers.add_parser(
        "records",
        description="Manage stored delivery records.",
        help="Manage delivery records.",
    )
    records_subparsers = records_parser.add_subparsers(dest="records_command", metavar="SUBCOMMAND")
    records_subparsers.required = True

    prune_parser = records_subparsers.add_parser(
        "prune",
        description="Remove delivery records older than database.deliveryRecordsExpire days.",
        help="Remove expired delivery records.",
    )
    add_config_args(prune_parser)
    prune_parser.set_defaults(func=records_prune_cli, records_command="prune")


def config_check_cli(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    data = config.to_dict()
    if args.output_json:
        print(json.dumps(data, indent=2))
        return 0

    print("Configuration is valid")
    print("=" * 40)
    for section, values in data.items():
        print(f"{section}:")
        for key, value in values.items():
            print(f"  {key}: {value}")
    return 0


def records_prune_cli(args: argparse.Namespace) -> int:
    from feedrelay.delivery.recorder import create_recorder

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    if not config.database.records_path:
        print("Delivery recording is disabled (database.recordsPath is empty).")
        return 0

    recorder = create_recorder(config.database)
    removed = recorder.prune(config.database.delivery_records_expire)
    print(f"Removed {removed} delivery records older than {config.database.delivery_records_expire} days.")
    return 0
