"""Console output for ping sessions.

Run with: sudo python -m rawping <host>
Or: sudo .venv/bin/rawping <host>
"""

import threading
from typing import Generator, Optional

from .errors import PingError, TransportError
from .packet import IP_MIN_HEADER_SIZE, frame_size
from .resolver import Destination, resolve
from .session import (
    DEFAULT_ATTEMPTS,
    DEFAULT_INTERVAL_MS,
    DEFAULT_PACKET_SIZE,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_TTL,
    AttemptRecord,
    Outcome,
    PingConfig,
    PingSession,
    SessionResult,
)


def format_header(destination: Destination, packet_size: int) -> str:
    size = frame_size(packet_size)
    return (
        f"PING {destination.host} ({destination.address}) "
        f"{size}({size + IP_MIN_HEADER_SIZE}) bytes of data.\n"
    )


def _sender(record: AttemptRecord) -> str:
    destination = record.destination
    source = record.source or destination.address
    if source == destination.address and destination.canonical_name:
        return f"{destination.canonical_name} ({source})"
    return source


def format_record(record: AttemptRecord) -> str:
    """Format one attempt as a line of ping output."""
    seq = record.sequence
    if record.outcome is Outcome.ACCEPTED:
        # A reply inside the clock resolution shows as "<1 ms"
        rtt = "<1" if not record.rtt_ms else f"={record.rtt_ms}"
        return (
            f"{record.bytes_sent} bytes from {_sender(record)}: "
            f"icmp_seq={seq} ttl={record.ttl} hops={record.hops} "
            f"time{rtt} ms\n"
        )
    if record.outcome is Outcome.TTL_EXCEEDED:
        return f"From {_sender(record)} icmp_seq={seq} Time to live exceeded\n"
    if record.outcome is Outcome.UNREACHABLE:
        return f"From {_sender(record)} icmp_seq={seq} Destination Host Unreachable\n"
    if record.outcome is Outcome.UNKNOWN_TYPE:
        return f"From {_sender(record)} icmp_seq={seq} Unknown ICMP packet type {record.icmp_type}\n"
    if record.outcome is Outcome.MALFORMED:
        return f"From {_sender(record)} icmp_seq={seq} Malformed reply\n"
    if record.outcome is Outcome.FAILED:
        return f"Request failed for icmp_seq {seq}\n"
    return f"Request timeout for icmp_seq {seq}\n"


def format_statistics(result: SessionResult) -> str:
    host = result.destination.host if result.destination else "?"
    text = f"\n--- {host} ping statistics ---\n"
    text += (
        f"{result.sent} packets transmitted, {result.received} packets received, "
        f"{result.packet_loss:.1f}% packet loss\n"
    )
    if result.received:
        text += (
            f"rtt min/avg/max = "
            f"{result.min_rtt}/{result.avg_rtt:.3f}/{result.max_rtt} ms\n"
        )
    return text


def ping_stream(
    host: str,
    count: Optional[int] = DEFAULT_ATTEMPTS,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    packet_size: int = DEFAULT_PACKET_SIZE,
    ttl: int = DEFAULT_TTL,
    interval_ms: int = DEFAULT_INTERVAL_MS,
    verify_checksum: bool = False,
    cancel: Optional[threading.Event] = None,
) -> Generator[str, None, int]:
    """Ping a host, yielding output lines. Returns the exit code.

    `count=None` pings until `cancel` is set or the generator is closed.
    """
    config = PingConfig(
        host=host,
        packet_size=packet_size,
        ttl=ttl,
        attempts=count,
        timeout_ms=timeout_ms,
        interval_ms=interval_ms,
        verify_checksum=verify_checksum,
    )
    try:
        config.validate()
        destination = resolve(host)
    except PingError as e:
        yield f"ping: {e}\n"
        return 1

    yield format_header(destination, packet_size)

    session = PingSession(config, destination=destination, cancel=cancel)
    result = SessionResult(destination=destination, retain=False)
    try:
        for record in session.iter_attempts():
            result.append(record)
            yield format_record(record)
    except TransportError as e:
        result.error = e
        yield f"ping: {e}\n"
        if not result.sent:
            return 1

    yield format_statistics(result)
    return 0 if result.ok else 1
