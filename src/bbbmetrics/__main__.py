"""CLI entry point for bbbmetrics.

Usage:
    python -m bbbmetrics <command> [options]

Commands:
    gather [--config PATH] [--format influx|json] [--output PATH] [--verbose]
    daemon start|stop|status [--config PATH]
    config validate [--config PATH]
    config get <key> [--config PATH]
    config sample
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn

from bbbmetrics import __version__


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="bbbmetrics",
        description="Gather BigBlueButton web conferencing server metrics",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # gather command
    gather_parser = subparsers.add_parser(
        "gather", help="Run one poll cycle and print the measurements"
    )
    gather_parser.add_argument("--config", help="Path to config.toml")
    gather_parser.add_argument(
        "--format",
        choices=["influx", "json"],
        help="Output format. Defaults to config value.",
    )
    gather_parser.add_argument(
        "--output",
        help="Append measurements to this file instead of stdout",
    )
    gather_parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log debug details to stderr"
    )

    # daemon command
    daemon_parser = subparsers.add_parser("daemon", help="Daemon management")
    daemon_parser.add_argument(
        "daemon_command",
        choices=["start", "stop", "status"],
        help="Daemon operation",
    )
    daemon_parser.add_argument("--config", help="Path to config.toml")

    # config command
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(
        dest="config_command", help="Config subcommands"
    )

    # config validate
    validate_parser = config_subparsers.add_parser(
        "validate", help="Validate configuration"
    )
    validate_parser.add_argument("--config", help="Path to config.toml")

    # config get
    get_parser = config_subparsers.add_parser("get", help="Get configuration value")
    get_parser.add_argument("key", help="Configuration key (e.g. daemon.interval)")
    get_parser.add_argument("--config", help="Path to config.toml")

    # config sample
    config_subparsers.add_parser("sample", help="Print a sample configuration")

    return parser


def _config_path(args: argparse.Namespace) -> Path | None:
    config = getattr(args, "config", None)
    return Path(config) if config else None


def cmd_gather(args: argparse.Namespace) -> int:
    """Handle 'gather' command."""
    from bbbmetrics.collector import Collector
    from bbbmetrics.config import Config
    from bbbmetrics.emitter import make_sink
    from bbbmetrics.errors import TransportError

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = Config.load_or_default(_config_path(args))
        output_format = getattr(args, "format", None) or config.output.format
        output_path = getattr(args, "output", None) or config.output.path
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    try:
        collector = Collector(config, sink=make_sink(output_format, sys.stdout))
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    output = sys.stdout
    try:
        if output_path:
            output = open(output_path, "a")
            collector.sink = make_sink(output_format, output)
        collector.gather()
    except OSError as e:
        print(f"Cannot write measurements: {e}", file=sys.stderr)
        return 1
    except TransportError as e:
        print(f"Error gathering metrics: {e}", file=sys.stderr)
        return 1
    finally:
        collector.close()
        if output is not sys.stdout:
            output.close()

    return 0


def cmd_daemon(args: argparse.Namespace) -> int:
    """Handle 'daemon' command."""
    from bbbmetrics.daemon import Daemon

    daemon = Daemon(config_path=_config_path(args))

    if args.daemon_command == "start":
        return daemon.start()
    elif args.daemon_command == "stop":
        return daemon.stop()
    elif args.daemon_command == "status":
        return daemon.status()

    return 1


def cmd_config_get(args: argparse.Namespace) -> int:
    """Handle 'config get' command."""
    from bbbmetrics.config import Config

    try:
        config = Config.load_or_default(_config_path(args))
        value = config.get_value(args.key)
        print(value)
        return 0
    except KeyError:
        print(f"Error: Config key not found: {args.key}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        return 1


def cmd_config_validate(args: argparse.Namespace) -> int:
    """Handle 'config validate' command."""
    from bbbmetrics.config import Config

    try:
        config = Config.load(_config_path(args))
        config.bigbluebutton.validate()
    except FileNotFoundError as e:
        print(f"No configuration found: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    bbb = config.bigbluebutton
    print(f"Configuration valid: {config.config_path}")
    print(f"  Server: {bbb.url}{bbb.path_prefix}")
    if bbb.should_gather_by_metadata:
        print(f"  Gather by metadata: {', '.join(bbb.gather_by_metadata)}")
    else:
        print("  Gather by metadata: disabled")
    print(f"  Interval: {config.daemon.interval}s")
    print(f"  Output: {config.output.format} -> {config.output.path or 'stdout'}")
    return 0


def cmd_config_sample(args: argparse.Namespace) -> int:
    """Handle 'config sample' command."""
    from bbbmetrics.config import SAMPLE_CONFIG

    print(SAMPLE_CONFIG, end="")
    return 0


def main() -> NoReturn:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "gather":
        sys.exit(cmd_gather(args))
    elif args.command == "daemon":
        sys.exit(cmd_daemon(args))
    elif args.command == "config":
        if args.config_command == "validate":
            sys.exit(cmd_config_validate(args))
        elif args.config_command == "get":
            sys.exit(cmd_config_get(args))
        elif args.config_command == "sample":
            sys.exit(cmd_config_sample(args))
        else:
            parser.parse_args(["config", "--help"])
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
