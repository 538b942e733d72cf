"""
Flow Runner command line interface.

Usage:
    flowrunner run FLOW.json [--collections FILE] [--environments FILE]
                             [--log-level LEVEL] [--json]

Exit codes: 0 success, 1 error, 130 stopped (Ctrl-C).
"""

import argparse
import asyncio
import json
import signal
import sys

from flowrunner.config import get_settings
from flowrunner.core.clients import HttpxRequestExecutor
from flowrunner.core.collaborators import InMemoryRepository
from flowrunner.core.models import parse_flow
from flowrunner.core.types import RunStatus
from flowrunner.services.flow_engine import FlowEngine
from flowrunner.services.logging_service import get_logger, LogSource, logging_service
from flowrunner.services.run_coordinator import RunCoordinator
from flowrunner.services.variable_resolver import stringify
from flowrunner.utils.errors import AppError
from flowrunner.utils.time import format_duration, format_timestamp

logger = get_logger(__name__, LogSource.CLI)

EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.ERROR: 1,
    RunStatus.STOPPED: 130,
}


def _load_json(path: str, default=None):
    if not path:
        return default
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _as_list(document) -> list:
    """Accept either a single document or a list of them."""
    if document is None:
        return []
    if isinstance(document, list):
        return document
    return [document]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='flowrunner', description='Flow Runner')
    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Execute a flow document')
    run_parser.add_argument('flow', help='Path to the flow JSON document')
    run_parser.add_argument('--collections', help='JSON file with one collection or a list')
    run_parser.add_argument('--environments', help='JSON file with one environment or a list')
    run_parser.add_argument('--log-level', default=None, help='Diagnostic log level (default: LOG_LEVEL)')
    run_parser.add_argument('--json', action='store_true', help='Print the run state as JSON')
    return parser


def print_report(coordinator: RunCoordinator) -> None:
    timeline = coordinator.timeline
    print(f"\nTimeline ({len(timeline)} events):")
    for event in timeline:
        print(f"  {format_timestamp(event.ts, '%H:%M:%S')} [{event.type.value:>7}] {event.message}")
    if timeline:
        print(f"  Elapsed: {format_duration((timeline[-1].ts - timeline[0].ts) / 1000)}")

    if coordinator.context.logs:
        print("\nRun log:")
        for entry in coordinator.context.logs:
            print(f"  {entry.level.value:<5} {entry.msg}")

    print("\nFlow variables:")
    if not coordinator.context.flow_vars:
        print("  (none)")
    for key, value in coordinator.context.flow_vars.items():
        print(f"  {key} = {stringify(value)}")

    print(f"\nStatus: {coordinator.status.value}")
    if coordinator.error:
        print(f"Error: {coordinator.error}")


async def run_flow(args) -> RunCoordinator:
    settings = get_settings()

    flow = parse_flow(_load_json(args.flow))
    repository = InMemoryRepository.from_documents(
        collections=_as_list(_load_json(args.collections)),
        environments=_as_list(_load_json(args.environments)),
    )
    engine = FlowEngine(repository, HttpxRequestExecutor.from_settings(settings), settings=settings)
    coordinator = RunCoordinator(engine)

    loop = asyncio.get_running_loop()
    handles_sigint = True
    try:
        loop.add_signal_handler(signal.SIGINT, coordinator.stop)
    except NotImplementedError:
        handles_sigint = False
        logger.debug("SIGINT handler not supported on this platform", category='startup')

    try:
        await coordinator.run(flow)
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)

    return coordinator


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.log_level:
        settings.log_level = args.log_level
    logging_service.initialize_from_settings(settings)
    logger.debug("Settings loaded", details=settings.to_dict(), category='startup')

    try:
        coordinator = asyncio.run(run_flow(args))
    except (OSError, ValueError) as e:
        print(f"Failed to load documents: {e}", file=sys.stderr)
        return 1
    except AppError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        for detail in e.details.get('errors', []):
            print(f"  {detail}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return EXIT_CODES[RunStatus.STOPPED]

    if args.json:
        print(json.dumps(coordinator.to_dict(), indent=2, default=str))
    else:
        print_report(coordinator)

    return EXIT_CODES.get(coordinator.status, 1)


if __name__ == '__main__':
    sys.exit(main())
