#!/usr/bin/env python3
"""Entry point for sweet."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections import Counter
from pathlib import Path

# Ensure src/ is on sys.path for local imports when running as a script
ROOT_DIR = Path(__file__).resolve().parent.parent
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from sweet.core.config import CollectionOptions, load_inventory, resolve_options  # noqa: E402
from sweet.core.errors import FatalError  # noqa: E402
from sweet.core.logging import setup_logging  # noqa: E402
from sweet.core.models import Device  # noqa: E402
from sweet.core.scheduler import Scheduler  # noqa: E402
from sweet.core.secrets import apply_host_secrets, load_secrets, merge_defaults  # noqa: E402
from sweet.core.status import StatusRegistry  # noqa: E402
from sweet.core.storage import ConfigStore, load_local_config, resolve_workspace  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""

    parser = argparse.ArgumentParser(
        description=(
            "Network device configuration collector. Logs into each device, "
            "captures its configuration and commits changes to a git workspace."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=ROOT_DIR / "config" / "devices.yml",
        help="Path to the devices inventory file (YAML)",
    )
    parser.add_argument(
        "--secrets",
        type=Path,
        default=ROOT_DIR / "config" / "secrets.yml",
        help="Path to the secrets file (YAML)",
    )
    parser.add_argument(
        "--local-config",
        type=Path,
        default=ROOT_DIR / "config" / "local.yml",
        help="Path to local.yml with logging and collection settings",
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Git workspace where configurations are stored. Overrides config/local.yml.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting. Overrides config/local.yml logging.level.",
    )

    subcommands = parser.add_subparsers(dest="command", title="commands")

    collect_parser = subcommands.add_parser("collect", help="Run collection rounds for all configured devices")
    collect_parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between rounds; 0 runs a single round"
    )
    collect_parser.add_argument("--timeout", type=float, default=None, help="Per-device timeout in seconds")
    collect_parser.add_argument(
        "--concurrency", type=int, default=None, help="Maximum number of devices collected at once"
    )
    collect_parser.add_argument(
        "--insecure", action="store_true", help="Disable ssh host key checking for all devices"
    )
    collect_parser.add_argument("--git-push", action="store_true", help="Push the workspace after each commit")
    collect_parser.add_argument(
        "--status-file", type=Path, default=None, help="Write round summary and device status JSON here"
    )
    collect_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which devices would be collected without connecting to them",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the CLI."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logger = setup_logging(args.local_config, cli_level=logging.DEBUG if args.debug else None)
    logger.info("sweet run started.")

    if args.command is None:
        parser.print_help()
        logger.info("sweet run finished.")
        return 0

    if args.command == "collect":
        try:
            exit_code = _run_collect(args, logger)
        except FatalError as exc:
            logger.critical("Fatal: %s", exc, extra={"device": "-"})
            return 1
        logger.info("sweet run finished.")
        return exit_code

    parser.error(f"Unknown command: {args.command}")
    return 2


def _run_collect(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Execute collection rounds until the interval says to stop."""

    config_path = Path(args.config)
    logger.debug("loading devices from %s", config_path)
    inventory = load_inventory(config_path, logger)
    secrets = load_secrets(Path(args.secrets), logger)
    devices = apply_host_secrets(inventory.devices, secrets)

    local_config = load_local_config(args.local_config, logger)
    options = resolve_options(
        local_config,
        devices_path=config_path,
        defaults=merge_defaults(inventory.defaults, secrets),
        interval=args.interval,
        timeout=args.timeout,
        concurrency=args.concurrency,
        insecure=args.insecure,
        git_push=args.git_push,
        status_file=args.status_file,
    )

    logger.debug("total devices loaded=%d", len(devices))
    for method, count in sorted(Counter(d.method or options.defaults.method or "-" for d in devices).items()):
        logger.debug("%s devices selected=%d", method, count)

    if args.dry_run:
        logger.info("Dry run requested. Devices to collect: %s", [d.hostname for d in devices])
        return 0

    workspace = resolve_workspace(args.workspace, local_config, logger)
    store = ConfigStore(workspace, logger)
    store.ensure_repository()
    status = StatusRegistry()
    scheduler = Scheduler(options, status, store, logger=logger)

    while True:
        started = time.monotonic()
        _run_round(scheduler, store, status, devices, options, logger)

        if options.interval == 0:
            logger.info("Interval set to 0 - exiting.")
            return 0

        remaining = options.interval - (time.monotonic() - started)
        logger.info("Next round in %.0f seconds.", max(remaining, 0))
        if remaining > 0:
            time.sleep(remaining)


def _run_round(
    scheduler: Scheduler,
    store: ConfigStore,
    status: StatusRegistry,
    devices: list[Device],
    options: CollectionOptions,
    logger: logging.Logger,
) -> None:
    summary = scheduler.run_round(devices)
    store.commit(push=options.git_push)

    if options.status_file is not None:
        try:
            summary.save(options.status_file, logger, status.to_dict())
        except OSError:
            logger.exception("Unable to write status file %s", options.status_file, extra={"device": "-"})


if __name__ == "__main__":
    raise SystemExit(main())
