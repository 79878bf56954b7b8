"""
Command-line interface for topomirror.
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional
import dotenv

from .config import GraphConfigError, OnosConfig, get_graph_config
from .session import GraphConnectionError
from .source import OnosRestSource, SnapshotSource, SourceError, dump_topology
from .bootstrap import SyncService
from .validation import validate_topology, ValidationError

dotenv.load_dotenv()

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _configure_logging(verbose: bool, quiet: bool) -> None:
    if quiet:
        logging.disable(logging.CRITICAL)
    elif verbose:
        logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT)
    else:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def _load_source(path: Optional[str], onos: bool):
    """Build the topology source selected on the command line."""
    if onos:
        return OnosRestSource(OnosConfig.from_env())
    return SnapshotSource.from_file(path)


def _check_snapshot(source) -> bool:
    """Validate a snapshot and print warnings. Returns False on blocking errors."""
    try:
        _, warnings = validate_topology(source.topology)
    except ValidationError as e:
        print("Validation Errors (blocking):", file=sys.stderr)
        for error in e.errors:
            print(f"  - {error}", file=sys.stderr)
        return False

    if warnings:
        print("Warnings:")
        for warning in warnings:
            print(f"  - {warning.message}")
    return True


def cmd_validate(path: str) -> int:
    """
    Load a snapshot file, validate it, and print counts.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        source = SnapshotSource.from_file(path)
    except SourceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not _check_snapshot(source):
        return 1

    topology = source.topology
    print(f"Successfully validated topology from: {path}")
    print(f"  Devices: {len(topology.devices)}")
    print(f"  Links: {len(topology.links)}")
    print(f"  Hosts: {len(topology.hosts)}")
    return 0


def cmd_sync(path: Optional[str], onos: bool = False, workers: Optional[int] = None,
             host_attributes: bool = False) -> int:
    """
    Mirror a snapshot file (or the live controller topology) into Neo4j.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        config = get_graph_config()
        source = _load_source(path, onos)
    except (GraphConfigError, SourceError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if isinstance(source, SnapshotSource) and not _check_snapshot(source):
        return 1

    overrides = {}
    if workers is not None:
        overrides["workers"] = workers
    if host_attributes:
        overrides["persist_host_attributes"] = True
    if overrides:
        try:
            config = replace(config, **overrides)
        except GraphConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    try:
        with SyncService(config, source) as service:
            result = service.activate()
    except GraphConnectionError as e:
        print(f"Neo4j Error: {e}", file=sys.stderr)
        return 1
    except SourceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("Sync complete:" if result.ok else "Sync finished with errors:")
    print(f"  Devices: {result.devices}")
    print(f"  Links: {result.links}")
    print(f"  Hosts: {result.hosts}")
    print(f"  Nodes created: {result.nodes_created} (matched {result.nodes_matched})")
    print(f"  Edges created: {result.edges_created} (matched {result.edges_matched})")
    print(f"  Elapsed: {result.elapsed_seconds}s")

    if result.skips:
        print("Skipped (missing devices):")
        for skip in result.skips:
            print(f"  - {skip.kind.value} {skip.entity_id}: {', '.join(skip.missing)}")
    if result.failures:
        print("Failed:", file=sys.stderr)
        for failure in result.failures:
            print(f"  - {failure.kind.value} {failure.entity_id}: {failure.cause}", file=sys.stderr)
    if result.fatal:
        print(f"Error: {result.fatal}", file=sys.stderr)

    return 0 if result.ok else 1


def cmd_dump(output: Optional[str]) -> int:
    """
    Capture the live controller topology as a snapshot file.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        data = dump_topology(OnosRestSource(OnosConfig.from_env()))
    except (GraphConfigError, SourceError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    output_json = json.dumps(data, indent=2)
    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(output_json)
        print(f"Topology captured: {len(data['devices'])} devices, "
              f"{len(data['links'])} links, {len(data['hosts'])} hosts", file=sys.stderr)
        print(f"Output saved to: {output}", file=sys.stderr)
    else:
        print(output_json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Topomirror - Mirror network topology into a Neo4j graph"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress all logging output")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    validate_parser = subparsers.add_parser(
        'validate',
        help='Validate a topology snapshot JSON file'
    )
    validate_parser.add_argument('path', help='Path to the snapshot JSON file')

    sync_parser = subparsers.add_parser(
        'sync',
        help='Mirror a topology snapshot into Neo4j'
    )
    sync_parser.add_argument('path', nargs='?', help='Path to the snapshot JSON file')
    sync_parser.add_argument('--onos', action='store_true',
                             help='Read the topology from the controller REST API')
    sync_parser.add_argument('--workers', type=int,
                             help='Parallel upserts per phase (overrides SYNC_WORKERS)')
    sync_parser.add_argument('--with-host-attributes', action='store_true',
                             help='Also store host MAC and VLAN')

    dump_parser = subparsers.add_parser(
        'dump',
        help='Capture the controller topology as a snapshot JSON file'
    )
    dump_parser.add_argument('-o', '--output', help='Output file (prints to stdout if omitted)')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    if args.command == 'validate':
        return cmd_validate(args.path)
    elif args.command == 'sync':
        if not args.onos and not args.path:
            parser.error("sync needs a snapshot path or --onos")
        return cmd_sync(args.path, onos=args.onos, workers=args.workers,
                        host_attributes=args.with_host_attributes)
    elif args.command == 'dump':
        return cmd_dump(args.output)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main())
