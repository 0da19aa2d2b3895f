"""
Command line entry point for the diagnostic collector.

Usage:
    xcs-diagnose                      # last 10 integrations per bot
    xcs-diagnose -n 3                 # last 3 integrations per bot
    xcs-diagnose -a -o ~/Desktop      # every integration, bundle on the Desktop
"""

from __future__ import annotations

import argparse
import signal
import sys
from collections.abc import Sequence

from xcs_diag import __version__
from xcs_diag.collector import DiagnosticCollector
from xcs_diag.config import Config, set_config
from xcs_diag.exceptions import ConfigurationError, StorageError
from xcs_diag.logging import get_logger, setup_logging

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_STORAGE_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="xcs-diagnose",
        description="Collect an Xcode Server diagnostic bundle.",
    )
    retention = parser.add_mutually_exclusive_group()
    retention.add_argument(
        "-n",
        "--number-of-integrations",
        type=int,
        metavar="N",
        help="collect assets from the last N integrations of each bot (default: 10)",
    )
    retention.add_argument(
        "-a",
        "--all-integrations",
        action="store_true",
        help="collect assets from every integration",
    )
    parser.add_argument("-c", "--config", metavar="PATH", help="YAML configuration file")
    parser.add_argument("-o", "--output-dir", metavar="DIR", help="directory for the bundle archive")
    parser.add_argument("--keep-staging", action="store_true", help="keep the staging directory")
    parser.add_argument("--no-package", action="store_true", help="do not create the archive")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_arguments(config: Config, args: argparse.Namespace) -> Config:
    """Overlay command line options onto a loaded configuration."""
    collector = config.collector.model_copy()

    if args.number_of_integrations is not None:
        if args.number_of_integrations < 1:
            raise ConfigurationError.validation_failed(
                "number_of_integrations", args.number_of_integrations, "must be at least 1"
            )
        collector.integration_count = args.number_of_integrations
        collector.all_integrations = False
    if args.all_integrations:
        collector.all_integrations = True
    if args.output_dir:
        collector.output_dir = args.output_dir
    if args.keep_staging:
        collector.keep_staging = True
    if args.no_package:
        collector.package = False
        collector.keep_staging = True

    return config.model_copy(update={"collector": collector})


def _exit_on_signal(signum: int, _frame: object) -> None:
    raise SystemExit(128 + signum)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the collector CLI."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_arguments(Config.load(args.config), args)
    except (ConfigurationError, ValueError) as e:
        print(f"xcs-diagnose: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    set_config(config)
    setup_logging(level="DEBUG" if args.verbose else None)
    previous_handler = signal.signal(signal.SIGTERM, _exit_on_signal)

    try:
        result = DiagnosticCollector(config).run()
    except KeyboardInterrupt:
        logger.warning("collection_interrupted")
        return EXIT_INTERRUPTED
    except StorageError as e:
        logger.error("collection_failed", **e.to_dict())
        return EXIT_STORAGE_ERROR
    finally:
        signal.signal(signal.SIGTERM, previous_handler)

    if result.bundle_path:
        print(result.bundle_path)
    else:
        print(result.staging_root)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
