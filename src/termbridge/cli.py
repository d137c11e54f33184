"""Command-line interface for termbridge.

Runs the Automation API host, toggles it, and acts as a local tool that
bootstraps sessions through a running host.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="termbridge",
        description="Loopback automation bridge for terminal sessions",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/termbridge.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Run the Automation API with local shell sessions")

    enable_parser = subparsers.add_parser("enable", help="Enable the Automation API")
    enable_parser.add_argument(
        "--allow-root", action="append", default=[], metavar="PATH",
        help="Add an absolute directory to the allowlist (repeatable)",
    )
    subparsers.add_parser("disable", help="Disable the Automation API")
    subparsers.add_parser("status", help="Show whether the Automation API is enabled")

    bootstrap_parser = subparsers.add_parser(
        "bootstrap", help="Ask a running host to open a session and type commands",
    )
    bootstrap_parser.add_argument(
        "--cwd", type=str, default=None,
        help="Working directory for the session (default: current directory)",
    )
    bootstrap_parser.add_argument("commands", nargs="+", help="Commands to type")

    return parser.parse_args(argv)


async def _serve(settings) -> int:
    """Run the service until SIGINT/SIGTERM."""
    from termbridge.automation.service import AutomationApiService
    from termbridge.sessions.manager import ShellSessionManager

    sessions = ShellSessionManager(
        shell_command=settings.shell.shell_command,
        rows=settings.shell.rows,
        cols=settings.shell.cols,
        command_delay=settings.shell.command_delay,
    )
    service = AutomationApiService(settings.data_dir, on_bootstrap=sessions.bootstrap)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await service.start()
    try:
        credentials = service.get_credentials()
        if credentials is None:
            logger.warning(
                "Automation API is disabled; run 'termbridge enable --allow-root PATH' first"
            )
            return 1
        print(f"Automation API listening on http://{credentials.host}:{credentials.port}")
        print(f"Credentials: {service.credentials_path}")
        await stop_event.wait()
        return 0
    finally:
        await service.stop()
        await sessions.close_all()


def _set_enabled(settings, enabled: bool, roots: list[str]) -> int:
    from termbridge.automation.config import ConfigStore
    from termbridge.automation.service import AUTOMATION_DIRNAME

    store = ConfigStore(settings.data_dir / AUTOMATION_DIRNAME)
    changes: dict = {"enabled": enabled}
    if roots:
        current = store.load()
        added = (str(Path(root).expanduser().absolute()) for root in roots)
        changes["allowed_roots"] = (*current.allowed_roots, *added)
    config = store.update(**changes)
    print(f"Automation API {'enabled' if config.enabled else 'disabled'} in {store.path}")
    if config.enabled:
        for root in config.allowed_roots:
            print(f"  allowed root: {root}")
    return 0


def _status(settings) -> int:
    from termbridge.automation.config import ConfigStore
    from termbridge.automation.fs_guard import ensure_not_symlink
    from termbridge.automation.service import AUTOMATION_DIRNAME, CREDENTIALS_FILENAME

    automation_dir = settings.data_dir / AUTOMATION_DIRNAME
    config = ConfigStore(automation_dir).load()
    credentials_path = automation_dir / CREDENTIALS_FILENAME
    ensure_not_symlink(credentials_path)
    running = os.path.lexists(credentials_path)
    print(f"enabled: {str(config.enabled).lower()}")
    print(f"running: {str(running).lower()}")
    return 0


async def _bootstrap(settings, args) -> int:
    from termbridge.automation.client import AutomationClient

    cwd = args.cwd or str(Path.cwd())
    client = AutomationClient.from_data_dir(
        settings.data_dir,
        client_name=settings.client.client_name,
        timeout=settings.client.timeout,
    )
    async with client:
        session_id = await client.bootstrap(cwd, args.commands)
    print(session_id)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the termbridge CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return 2

    from termbridge.automation.errors import AutomationError
    from termbridge.config.settings import load_settings
    from termbridge.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    try:
        if args.command == "serve":
            logger.info("Starting Automation API host")
            return asyncio.run(_serve(settings))
        if args.command == "enable":
            return _set_enabled(settings, True, args.allow_root)
        if args.command == "disable":
            return _set_enabled(settings, False, [])
        if args.command == "status":
            return _status(settings)
        if args.command == "bootstrap":
            return asyncio.run(_bootstrap(settings, args))
    except AutomationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 2


if __name__ == "__main__":
    sys.exit(main())
