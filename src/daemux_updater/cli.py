"""
Command-line entry point for the daemux updater.

Usage:
    daemux-updater                  check, download and apply
    daemux-updater --check          check only (used by background checks)
    daemux-updater --status         show the persisted update state
    daemux-updater --enable         enable automatic background checks
    daemux-updater --disable        disable automatic background checks
    daemux-updater --rollback 1.2.0 reactivate an installed version

Exit code is 0 on success and 1 on failure.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime

import yaml
from pydantic import ValidationError

from daemux_updater import __version__
from daemux_updater.config import load_config
from daemux_updater.errors import InternalError, UpdaterError
from daemux_updater.logging import get_logger, setup_logging
from daemux_updater.state import CheckStatus, UpdateState
from daemux_updater.updater import Updater

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="daemux-updater",
        description="Check for, download and apply daemux updates",
    )

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument(
        "--check",
        action="store_true",
        help="Check for updates without applying",
    )
    actions.add_argument(
        "--status",
        action="store_true",
        help="Show current update state",
    )
    actions.add_argument(
        "--enable",
        action="store_true",
        help="Enable auto-updates",
    )
    actions.add_argument(
        "--disable",
        action="store_true",
        help="Disable auto-updates",
    )
    actions.add_argument(
        "--rollback",
        metavar="VERSION",
        help="Reactivate an installed version",
    )

    parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Force update (delete locked versions)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def _format_timestamp(ms: int) -> str:
    if ms == 0:
        return "never"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _format_interval(ms: int) -> str:
    minutes = round(ms / 60_000)
    if minutes < 60:
        return f"{minutes} minute{'' if minutes == 1 else 's'}"
    hours = round(minutes / 60)
    return f"{hours} hour{'' if hours == 1 else 's'}"


def format_status(state: UpdateState, *, disabled: bool = False) -> str:
    """Render the update state for ``--status``."""
    lines = [
        "Update Status",
        "",
        f"  Version:        {state.current_version}",
        f"  Auto-update:    {'disabled' if state.disabled or disabled else 'enabled'}",
        f"  Last check:     {_format_timestamp(state.last_check_time)}",
        f"  Check result:   {state.last_check_result}",
        f"  Check interval: {_format_interval(state.check_interval_ms)}",
    ]
    if state.available_version:
        lines.append(f"  Available:      {state.available_version}")
    if state.pending_update:
        label = "verified" if state.pending_update.verified else "unverified"
        lines.append(f"  Pending:        v{state.pending_update.version} ({label})")
    return "\n".join(lines)


async def _check_only(updater: Updater) -> int:
    result = await updater.check()

    if result.status == CheckStatus.ERROR:
        print(f"Update check failed: {result.error}", file=sys.stderr)
        return 1
    if result.status == CheckStatus.UP_TO_DATE:
        print(f"Already up to date (v{result.current_version})")
        return 0

    print("Update available")
    print(f"  Current:   {result.current_version}")
    print(f"  Available: {result.available_version}")
    print("\nRun daemux-updater to apply.")
    return 0


async def _check_and_apply(updater: Updater, force: bool) -> int:
    result = await updater.check()

    if result.status == CheckStatus.ERROR:
        print(f"Update check failed: {result.error}", file=sys.stderr)
        return 1
    if result.status == CheckStatus.UP_TO_DATE:
        print(f"Already up to date (v{result.current_version})")
        return 0

    version = result.available_version
    if version is None:
        raise InternalError("Update check reported no available version")
    print(f"Update available: v{version}")

    await updater.download(version)
    print(f"Downloaded v{version}")

    if not await updater.apply(force=force):
        print("Failed to apply update", file=sys.stderr)
        return 1

    print(f"Updated to v{version}. Please restart daemux.")
    return 0


async def _run(updater: Updater, args: argparse.Namespace) -> int:
    if args.status:
        print(format_status(updater.get_state(), disabled=updater.config.disabled))
        return 0

    if args.enable or args.disable:
        updater.set_disabled(bool(args.disable))
        print(f"Auto-updates {'disabled' if args.disable else 'enabled'}.")
        if args.disable:
            print("Set DISABLE_AUTOUPDATER=1 in your environment for permanent effect.")
        return 0

    if args.rollback:
        await updater.rollback(args.rollback)
        print(f"Rolled back to v{args.rollback}. Please restart daemux.")
        return 0

    if args.check:
        return await _check_only(updater)

    return await _check_and_apply(updater, args.force)


def main(argv: list[str] | None = None) -> int:
    """
    Run the updater command line.

    Args:
        argv: Arguments without the program name. Defaults to sys.argv.

    Returns:
        Process exit code.
    """
    args = _build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        return 1

    if args.log_level:
        config.logging.level = args.log_level
    setup_logging(config.logging)

    try:
        updater = Updater(config)
        return asyncio.run(_run(updater, args))
    except UpdaterError as e:
        logger.error(
            "Update command failed",
            extra={"error_code": e.error_code, "error": e.message},
        )
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
