"""Command line front end: ``ttlping [-i INTERVAL] [-T TTL] [-u] host``."""

from __future__ import annotations

import argparse
import asyncio
import re
import signal
from typing import Callable, Optional, Sequence

from rich.markup import escape

from ._config import Settings
from ._exceptions import ClassificationError, ResolutionError, SocketOpenError
from ._logging import configure_logging, console
from ._models import ErrorObservation, Observation
from ._pinger import Pinger
from ._stats import Summary

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION = re.compile(r"^\s*(\d+(?:\.\d*)?|\.\d+)\s*(ns|us|µs|ms|s|m|h)?\s*$")


def parse_duration(text: str) -> float:
    """Parse ``1.5``, ``500ms`` or ``2m`` into seconds."""
    match = _DURATION.match(text)
    if match is None:
        raise argparse.ArgumentTypeError(f"invalid duration: {text!r}")
    value = float(match.group(1)) * _UNITS[match.group(2) or "s"]
    if value <= 0:
        raise argparse.ArgumentTypeError(f"duration must be positive: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ttlping",
        description=(
            "Ping a host continuously. When a router reports that the hop limit "
            "expired, the hop is printed and the TTL is raised by one."
        ),
    )
    parser.add_argument("host", help="target host name or IP address")
    parser.add_argument(
        "-i",
        "--interval",
        type=parse_duration,
        default=Settings.interval,
        help="delay between probes, e.g. 1s or 500ms (default: 1s)",
    )
    parser.add_argument(
        "-T",
        "--ttl",
        type=int,
        default=Settings.ttl,
        help=f"initial TTL / hop limit (default: {Settings.ttl})",
    )
    parser.add_argument(
        "-u",
        "--unprivileged",
        action="store_true",
        help="use an unprivileged datagram ICMP socket instead of a raw one",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--tui", action="store_true", help="show a live terminal view")
    return parser


def _printer(verbose: bool) -> Callable[[Observation], None]:
    def show(observation: Observation) -> None:
        if (
            not verbose
            and isinstance(observation, ErrorObservation)
            and isinstance(observation.error, ClassificationError)
        ):
            return
        console.print(observation)

    return show


async def _run_until_interrupted(pinger: Pinger) -> Summary:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, pinger.stop)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        return await pinger.run()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def run(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "INFO")

    try:
        settings = Settings(
            interval=args.interval, unprivileged=args.unprivileged, ttl=args.ttl
        )
    except ValueError as exc:
        parser.error(str(exc))

    try:
        pinger = Pinger(args.host, settings)
    except ResolutionError as exc:
        console.print(f"[red]Invalid host name or IP address:[/red] {escape(str(exc))}")
        return 2

    try:
        pinger.sock
    except SocketOpenError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1

    summary: Optional[Summary]
    if args.tui:
        from .tui import PingApp

        summary = PingApp(pinger).run()
    else:
        pinger.on_observation = _printer(args.verbose)
        try:
            summary = asyncio.run(_run_until_interrupted(pinger))
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            summary = pinger.summary()

    if summary is not None:
        console.print(summary)
    return 1 if pinger.fault is not None else 0


if __name__ == "__main__":
    raise SystemExit(run())
