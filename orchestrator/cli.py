"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the transfer detection engine.

- Provides argparse-based CLI
- Loads configuration from CLI and environment
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli init-db
python -m orchestrator.cli run
python -m orchestrator.cli run --chains tron ethereum
python -m orchestrator.cli run --once

============================================================
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from core.config import EngineConfig
from core.exceptions import ConfigurationError
from storage.database import (
    DatabasePersistenceError,
    get_database_url,
    get_engine,
    get_session_factory,
    init_database,
)
from .core import create_orchestrator, setup_logging


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="transfer-watch",
        description="Multi-chain token transfer detection engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run       - Scan every configured chain until interrupted
  init-db   - Create missing database tables and exit

Examples:
  %(prog)s init-db
  %(prog)s run                            # All configured chains
  %(prog)s run --chains tron polygon      # Selected chains only
  %(prog)s run --once                     # One cycle per chain, then exit
        """
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default=None,
        help="Logging format (default: LOG_FORMAT or text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    run_parser = commands.add_parser("run", help="Run the scan loops")
    run_parser.add_argument(
        "--chains",
        nargs="+",
        metavar="CHAIN",
        help="Chains to scan (default: every configured chain)",
    )
    run_parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle per chain and exit (no loop)",
    )

    commands.add_parser("init-db", help="Create missing database tables")

    return parser


# ============================================================
# COMMANDS
# ============================================================

async def run_engine(config: EngineConfig, once: bool = False) -> int:
    """
    Run the scan orchestrator.

    Returns:
        Exit code
    """
    orchestrator = create_orchestrator(config, get_session_factory())

    try:
        if once:
            results = await orchestrator.run_once()
            for result in results.values():
                print(result.summary())
            return 0 if all(r.error is None for r in results.values()) else 1

        await orchestrator.run()
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    finally:
        await orchestrator.stop()
        await orchestrator.close()


def init_db() -> int:
    try:
        init_database(get_engine())
    except DatabasePersistenceError as e:
        logger.error(f"Database initialization failed: {e}")
        return 1
    return 0


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = EngineConfig.from_env()
        if args.command == "run":
            config = config.select_chains(args.chains)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    setup_logging(
        level=args.log_level or config.log_level,
        log_format=args.log_format or config.log_format,
    )

    if args.command == "init-db":
        return init_db()

    print_banner(config, args)
    return asyncio.run(run_engine(config, once=args.once))


def print_banner(config: EngineConfig, args: argparse.Namespace) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  TRANSFER WATCH")
    print("  Multi-Chain Transfer Detection Engine")
    print("=" * 60)
    print(f"  Database:   {get_database_url().split('@')[-1]}")
    for name, settings in config.chains.items():
        print(f"  {name:<11} {settings.strategy} every {settings.poll_interval_seconds}s")
    print(f"  Mode:       {'single cycle' if args.once else 'continuous'}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
