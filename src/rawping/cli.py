"""Command-line interface for rawping."""

import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from .report import ping_stream
from .session import (
    DEFAULT_ATTEMPTS,
    DEFAULT_INTERVAL_MS,
    DEFAULT_PACKET_SIZE,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_TTL,
    UNBOUNDED,
)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=True,
                show_time=verbose,
            )
        ],
    )


def _print_lines(stream) -> int:
    """Print every line of a ping stream and return its exit code."""
    while True:
        try:
            line = next(stream)
        except StopIteration as stop:
            return stop.value
        print(line, end="", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rawping",
        description="Ping a host over a raw ICMP socket.",
    )
    parser.add_argument(
        "host",
        help="The hostname or IP address to ping",
    )
    parser.add_argument(
        "-c",
        "--count",
        type=int,
        default=DEFAULT_ATTEMPTS,
        help=f"Number of ping requests to send (default: {DEFAULT_ATTEMPTS})",
    )
    parser.add_argument(
        "--continuous",
        action="store_true",
        help="Ping until interrupted",
    )
    parser.add_argument(
        "-s",
        "--size",
        type=int,
        default=DEFAULT_PACKET_SIZE,
        help=f"Packet size in bytes, 8 to 1024 (default: {DEFAULT_PACKET_SIZE})",
    )
    parser.add_argument(
        "--ttl",
        type=int,
        default=DEFAULT_TTL,
        help=f"Time to live, 1 to 255 (default: {DEFAULT_TTL})",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=int,
        default=DEFAULT_TIMEOUT_MS,
        help=f"Timeout in milliseconds for each ping (default: {DEFAULT_TIMEOUT_MS})",
    )
    parser.add_argument(
        "-i",
        "--interval",
        type=int,
        default=DEFAULT_INTERVAL_MS,
        help=f"Milliseconds between pings (default: {DEFAULT_INTERVAL_MS})",
    )
    parser.add_argument(
        "--verify-checksum",
        action="store_true",
        help="Drop replies whose ICMP checksum does not verify",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every packet read and discarded",
    )
    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    try:
        exit_code = _print_lines(
            ping_stream(
                args.host,
                count=UNBOUNDED if args.continuous else args.count,
                timeout_ms=args.timeout,
                packet_size=args.size,
                ttl=args.ttl,
                interval_ms=args.interval,
                verify_checksum=args.verify_checksum,
            )
        )
        sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\n--- ping interrupted ---")
        sys.exit(130)


if __name__ == "__main__":
    main()
