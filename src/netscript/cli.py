#!/usr/bin/env python3
"""netscript command line.

Usage:
    netscript [--network FILE] [-v] list
    netscript [--network FILE] [-v] audit [MACHINE ...] [--quiet] [--no-block]
    netscript [--network FILE] [-v] config [MACHINE ...] [--no-block]
    netscript [--network FILE] [-v] dryrun [MACHINE ...] [--output-dir DIR]

Environment variables:
    NETSCRIPT_NETWORK       Network description file
    NETSCRIPT_PASSWORD      Default machine password (see password_env)
    NETSCRIPT_LOG_LEVEL     Console log level (default: INFO)
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from .config.network import NetworkData
from .engine.orchestrator import Orchestrator
from .engine.schema import Action, DryRunResult
from .errors import NetscriptError
from .remote.schema import ExecMode, SessionOutcome
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


class MachineSink:
    """Print relayed output line by line, prefixed with the machine label."""

    def __init__(self, machine: str, stream=None):
        self.machine = machine
        self.stream = stream or sys.stdout
        self._pending = ""

    def __call__(self, text: str) -> None:
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self.stream.write(f"[{self.machine}] {line}\n")
        self.stream.flush()

    def flush(self) -> None:
        if self._pending:
            self.stream.write(f"[{self.machine}] {self._pending}\n")
            self._pending = ""
        self.stream.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netscript",
        description="Audit and configure machines from a network description",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show machines in processing order
    netscript list

    # Audit every machine, one after another
    netscript audit --quiet

    # Configure two machines side by side
    netscript config web r1 --no-block

    # Write apply scripts locally without contacting anything
    netscript dryrun r1 --output-dir /tmp/scripts
""",
    )
    parser.add_argument(
        "--network",
        type=Path,
        help="Network description file (default: searched for)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "command",
        choices=["list"] + [a.value for a in Action],
        help="What to do",
    )
    parser.add_argument(
        "machines",
        nargs="*",
        help="Machine labels (default: every machine)",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only report failing units in audit output",
    )
    parser.add_argument(
        "--no-block",
        action="store_true",
        help="Run all sessions concurrently",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Directory for dry-run scripts (default: current directory)",
    )
    return parser


def list_machines(orchestrator: Orchestrator) -> int:
    plan = orchestrator.initialize()
    print(f"Network: {plan.network}")
    for label in plan.order:
        machine_plan = plan.get(label)
        machine = machine_plan.machine
        host = machine.host or "-"
        print(f"  {label:20s} {machine.role.value:8s} {host:16s} {len(machine_plan.units)} units")
    return 0


def report(results: dict) -> int:
    """Log a summary line per machine; exit code 0 only if all are clean."""
    exit_code = 0
    logger.info("=" * 60)
    for label, result in results.items():
        if isinstance(result, NetscriptError):
            logger.error(f"  {label}: ERROR {result.message}")
            exit_code = 1
        elif isinstance(result, SessionOutcome):
            if result.clean:
                logger.info(f"  {label}: OK pass={result.passed}")
            else:
                failed = " ".join(result.failed_units) or "-"
                logger.error(
                    f"  {label}: FAIL exit={result.exit_code} "
                    f"pass={result.passed} fail={result.failed} failed: {failed}"
                )
                exit_code = 1
        elif isinstance(result, DryRunResult):
            logger.info(f"  {label}: written to {result.path}")
    logger.info("=" * 60)
    return exit_code


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the netscript CLI."""
    args = build_parser().parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else None)

    try:
        network = NetworkData.from_file(args.network)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not load network description: {e}")
        return 1

    orchestrator = Orchestrator(network, output_dir=args.output_dir)

    if args.command == "list":
        try:
            return list_machines(orchestrator)
        except ValueError as e:
            logger.error(f"Invalid network description: {e}")
            return 1

    sinks: dict[str, MachineSink] = {}

    def sink_factory(label: str) -> MachineSink:
        sinks[label] = MachineSink(label)
        return sinks[label]

    mode = ExecMode.NON_BLOCKING if args.no_block else ExecMode.BLOCKING
    try:
        results = asyncio.run(orchestrator.run_all(
            args.command,
            sink_factory,
            mode=mode,
            machines=args.machines or None,
            quiet=args.quiet,
        ))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user; remote hosts keep whatever was applied")
        return 130
    except ValueError as e:
        logger.error(f"Invalid network description: {e}")
        return 1
    except Exception as e:
        logger.exception(f"{args.command} failed with exception: {e}")
        return 1
    finally:
        for sink in sinks.values():
            sink.flush()

    return report(results)


if __name__ == "__main__":
    sys.exit(main())
