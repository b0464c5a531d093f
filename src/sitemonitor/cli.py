"""Command-line interface argument parsing for the site monitor.

This module provides the CLI argument parser that handles:
- Configuration file override
- Database connection overrides
- Verbose output and log level override
- Single-pass mode (--once)
- Environment file specification
"""

from __future__ import annotations

import argparse
from pathlib import Path


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of arguments to parse. If None, uses sys.argv.

    Returns:
        Parsed arguments namespace with the following attributes:
        - config: Path to the configuration file
        - dbname, dbuser, dbpass, dbhost, dbport: Database overrides
        - verbose: Whether debug logging was requested
        - log_level: Logging level
        - once: Whether to sample every site once and exit
        - env_file: Path to .env file
    """
    parser = argparse.ArgumentParser(
        prog="site-monitor",
        description="Site monitor - periodic HTTP sampling with latency alerts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to the configuration file (default: ./configuration.json)",
    )

    database = parser.add_argument_group("database", "Override the database section")
    database.add_argument("-d", "--dbname", default=None, help="Database name")
    database.add_argument("-u", "--dbuser", default=None, help="Database user")
    database.add_argument("-p", "--dbpass", default=None, help="Database password")
    database.add_argument("-H", "--dbhost", default=None, help="Database host")
    database.add_argument("-n", "--dbport", type=int, default=None, help="Database port")

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every scheduling decision (same as --log-level DEBUG)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides MONITOR_LOG_LEVEL)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Sample every active site once and exit",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: ./.env)",
    )

    return parser.parse_args(args)


__all__ = ["parse_args"]
