"""
dronectl command line.

Usage:
    dronectl validate --config dronectl.yaml
    dronectl run --manifest cluster.yaml --simulate --once
    dronectl run --config dronectl.yaml --manifest cluster.yaml --simulate --serve
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

from rich.console import Console
from rich.table import Table

from dronectl import __version__
from dronectl.config import load_config, log_validation_result, validate_config
from dronectl.controllers import setup_controllers
from dronectl.errors import AlreadyExistsError
from dronectl.manager import Manager
from dronectl.resources import Drone, Swarm, load_manifest
from dronectl.simulation import SimulatedScheduler
from dronectl.store import InMemoryStore, Store

logger = logging.getLogger("DroneCtl.CLI")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _setup_logging(config: dict, verbose: bool = False) -> None:
    level = "DEBUG" if verbose else str(config.get("logging", {}).get("level", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def seed_store(store: Store, manifest_path: str) -> int:
    """Create every record of the manifest in *store*. Returns the count created."""
    created = 0
    for obj in load_manifest(manifest_path):
        try:
            store.create(obj)
            created += 1
        except AlreadyExistsError:
            logger.warning(f"{obj.kind} {obj.key} already exists, skipping")
    logger.info(f"Seeded {created} record(s) from {manifest_path}")
    return created


def print_status(store: Store, console: Console = None) -> None:
    console = console or Console()

    swarms = Table(title="Swarms", show_header=True)
    swarms.add_column("Namespace", style="dim")
    swarms.add_column("Name", style="bold")
    swarms.add_column("Desired")
    swarms.add_column("Flying")
    for s in store.list(Swarm):
        desired = "-" if s.spec.howmany is None else str(s.spec.howmany)
        style = "green" if str(s.status.flying_drones) == desired else "yellow"
        swarms.add_row(
            s.namespace, s.name, desired, f"[{style}]{s.status.flying_drones}[/]"
        )
    console.print(swarms)

    drones = Table(title="Drones", show_header=True)
    drones.add_column("Namespace", style="dim")
    drones.add_column("Name", style="bold")
    drones.add_column("Swarm")
    drones.add_column("Flying")
    drones.add_column("Node")
    drones.add_column("Replicas")
    for d in store.list(Drone):
        flying = "[green]yes[/]" if d.status.flying else "[red]no[/]"
        drones.add_row(
            d.namespace,
            d.name,
            d.owner_swarm or "-",
            flying,
            d.status.node or "-",
            str(d.status.flying_drones),
        )
    console.print(drones)


def cmd_validate(args) -> int:
    config = load_config(args.config)
    ok, errors = validate_config(config)
    if ok:
        print(f"  {args.config or 'defaults'}: OK")
        return 0
    for msg in errors:
        print(f"  error: {msg}")
    return 1


def cmd_run(args) -> int:
    config = load_config(args.config)
    _setup_logging(config, args.verbose)
    if not log_validation_result(config):
        return 1

    store = InMemoryStore()
    manager = Manager(store, config)
    setup_controllers(manager, config)
    if args.simulate:
        SimulatedScheduler(store).start()
    if args.manifest:
        seed_store(store, args.manifest)

    if args.once:
        manager.enqueue_all()
        passes = manager.reconcile_pending(max_items=args.max_passes)
        logger.info(f"Ran {passes} reconciliation pass(es)")
        print_status(store)
        return 0

    manager.start()
    try:
        if args.serve:
            import uvicorn

            from dronectl.api import create_app

            api_cfg = config.get("api", {})
            uvicorn.run(
                create_app(store, manager),
                host=api_cfg.get("host", "127.0.0.1"),
                port=int(api_cfg.get("port", 8000)),
                log_level=str(config.get("logging", {}).get("level", "info")).lower(),
            )
        else:
            while True:
                time.sleep(args.interval)
                print_status(store)
    except KeyboardInterrupt:
        print()
    finally:
        manager.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dronectl",
        description="dronectl - keeps a swarm of drones flying",
        epilog=(
            "Examples:\n"
            "  dronectl validate --config dronectl.yaml\n"
            "  dronectl run --manifest cluster.yaml --simulate --once\n"
            "  dronectl run --config dronectl.yaml --manifest cluster.yaml --simulate --serve\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"dronectl {__version__}")
    sub = parser.add_subparsers(dest="command")

    p_val = sub.add_parser("validate", help="Validate a config file")
    p_val.add_argument("--config", default=None, help="Config file (default: $DRONECTL_CONFIG)")

    p_run = sub.add_parser(
        "run",
        help="Run the Swarm and Drone controllers against an in-memory store",
        epilog="Example: dronectl run --manifest cluster.yaml --simulate --once",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_run.add_argument("--config", default=None, help="Config file (default: $DRONECTL_CONFIG)")
    p_run.add_argument("--manifest", default=None, help="YAML manifest of records to seed")
    p_run.add_argument("--simulate", action="store_true", help="Attach the simulated scheduler")
    p_run.add_argument("--once", action="store_true", help="Drain the queues once and exit")
    p_run.add_argument(
        "--max-passes", type=int, default=1000, help="Pass limit for --once (default: 1000)"
    )
    p_run.add_argument("--serve", action="store_true", help="Serve the status gateway")
    p_run.add_argument(
        "--interval", type=float, default=10.0, help="Status print interval in seconds"
    )
    p_run.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    commands = {"validate": cmd_validate, "run": cmd_run}
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(0)
    sys.exit(handler(args))


if __name__ == "__main__":
    main()
