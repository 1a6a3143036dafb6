"""
Command line for the reconciliation passes.

    kinship migrate-marriages
    kinship migrate-locations [--base-url URL]
    kinship repair-links
    kinship refresh-lineage

Exit codes: 0 completed, 1 the pass could not run, 130 interrupted.
"""

import argparse
import signal
import sqlite3
import sys
import threading

from loguru import logger

from kinship.config import configure_logging, settings
from kinship.errors import KinshipError
from kinship.graph.family.graph import FamilyGraph
from kinship.locations.client import LocationLookupClient
from kinship.locations.resolver import HierarchicalResolver
from kinship.migrations.locations import LocationReconciliationPass
from kinship.migrations.marriages import MarriageBackfillPass

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def _stop_on_sigint() -> threading.Event:
    """First Ctrl-C lets the current record finish, the pass then stops."""
    stop = threading.Event()

    def handler(signum, frame):
        logger.warning("Interrupt received, stopping after the current record")
        stop.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, handler)
    return stop


def run_marriages(graph: FamilyGraph, args, stop: threading.Event) -> int:
    report = MarriageBackfillPass(graph.store, stop).run()
    print(report.summary)
    return EXIT_INTERRUPTED if report.interrupted else EXIT_OK


def run_locations(graph: FamilyGraph, args, stop: threading.Event) -> int:
    with LocationLookupClient(base_url=args.base_url, timeout=args.timeout) as client:
        resolver = HierarchicalResolver(client)
        report = LocationReconciliationPass(graph.store, resolver, stop).run()
    print(report.summary)
    print(f"Lookups made: {resolver.lookups}")
    return EXIT_INTERRUPTED if report.interrupted else EXIT_OK


def run_repair(graph: FamilyGraph, args, stop: threading.Event) -> int:
    report = graph.repair_back_pointers()
    print(
        f"repair-links: checked {report.members_checked}, "
        f"current fixed {report.current_fixed}, parental fixed {report.parental_fixed}"
    )
    return EXIT_OK


def run_refresh(graph: FamilyGraph, args, stop: threading.Event) -> int:
    count = graph.refresh_lineage()
    print(f"refresh-lineage: refreshed {count} members")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kinship", description="Kinship registry maintenance")
    parser.add_argument("--db", default=None, help=f"Database path (default: {settings.database.path})")
    parser.add_argument("--no-log-file", action="store_true", help="Log to stderr only")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("migrate-marriages", help="Create marriages from legacy spouse references")
    p.set_defaults(func=run_marriages)

    p = sub.add_parser("migrate-locations", help="Fill location names from the lookup service")
    p.add_argument("--base-url", default=None, help="Lookup service base URL")
    p.add_argument("--timeout", type=float, default=None, help="Request timeout in seconds")
    p.set_defaults(func=run_locations)

    p = sub.add_parser("repair-links", help="Rebuild member union pointers from the unions")
    p.set_defaults(func=run_repair)

    p = sub.add_parser("refresh-lineage", help="Recompute every cached family tree")
    p.set_defaults(func=run_refresh)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(to_file=not args.no_log_file)

    previous = signal.getsignal(signal.SIGINT)
    stop = _stop_on_sigint()
    try:
        graph = FamilyGraph(db_path=args.db)
        return args.func(graph, args, stop)
    except KeyboardInterrupt:
        logger.warning(f"{args.command} interrupted")
        return EXIT_INTERRUPTED
    except (KinshipError, sqlite3.Error) as e:
        logger.error(f"{args.command} could not run: {e}")
        return EXIT_FAILED
    finally:
        signal.signal(signal.SIGINT, previous)


if __name__ == "__main__":
    sys.exit(main())
