"""Ping sessions: the send/receive loop over a raw ICMP socket.

A session sends one echo request per attempt and reads frames until one of
them decides the attempt (a reply to this session, an ICMP error, or the
timeout). Timeouts and ICMP errors are recorded per attempt; only transport
failures end a session early.
"""

import enum
import itertools
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Tuple

from .decoder import Reply, ReplyKind, decode_reply
from .errors import ConfigurationError, PingError, TransportError, TransportTimeout
from .packet import ICMP_MIN_SIZE, MAX_PACKET_SIZE, build_echo_request
from .resolver import Destination, resolve
from .transport import Transport

logger = logging.getLogger(__name__)

UNBOUNDED = None  # attempts value: ping until cancelled
NO_REPLY = -1  # bytes_received of an attempt that got no reply

DEFAULT_PACKET_SIZE = 32
MIN_PACKET_SIZE = ICMP_MIN_SIZE
DEFAULT_TTL = 30
MIN_TTL = 1
MAX_TTL = 255
DEFAULT_ATTEMPTS = 4
DEFAULT_TIMEOUT_MS = 1000
DEFAULT_INTERVAL_MS = 1000

# Longest single receive while a cancel event is being watched
CANCEL_POLL_MS = 100

_identifiers = itertools.count(random.getrandbits(16))


def new_identifier() -> int:
    """Identifier for a new session, distinct from other sessions in this process."""
    return next(_identifiers) & 0xFFFF


class Outcome(enum.Enum):
    ACCEPTED = "accepted"
    TTL_EXCEEDED = "ttl_exceeded"
    UNREACHABLE = "unreachable"
    MALFORMED = "malformed"
    UNKNOWN_TYPE = "unknown_type"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


_OUTCOMES = {
    ReplyKind.ACCEPTED: Outcome.ACCEPTED,
    ReplyKind.TTL_EXCEEDED: Outcome.TTL_EXCEEDED,
    ReplyKind.UNREACHABLE: Outcome.UNREACHABLE,
    ReplyKind.MALFORMED: Outcome.MALFORMED,
    ReplyKind.UNKNOWN_TYPE: Outcome.UNKNOWN_TYPE,
}


@dataclass(frozen=True)
class PingConfig:
    """Parameters of one ping session."""

    host: str
    packet_size: int = DEFAULT_PACKET_SIZE
    ttl: int = DEFAULT_TTL
    attempts: Optional[int] = DEFAULT_ATTEMPTS
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    interval_ms: int = DEFAULT_INTERVAL_MS
    verify_checksum: bool = False

    @property
    def unbounded(self) -> bool:
        return self.attempts is UNBOUNDED

    def validate(self) -> None:
        """Raise ConfigurationError for values no session can run with."""
        if not self.host or not self.host.strip():
            raise ConfigurationError("Invalid or empty hostname.")
        if not MIN_PACKET_SIZE <= self.packet_size <= MAX_PACKET_SIZE:
            raise ConfigurationError(
                f"Packet size out of bounds, {MIN_PACKET_SIZE} > {self.packet_size} "
                f"or {self.packet_size} > {MAX_PACKET_SIZE}."
            )
        if not MIN_TTL <= self.ttl <= MAX_TTL:
            raise ConfigurationError(
                f"TTL size out of bounds, {MIN_TTL} > {self.ttl} or {self.ttl} > {MAX_TTL}."
            )
        if self.attempts is not UNBOUNDED and self.attempts < 1:
            raise ConfigurationError(f"Attempts must be positive, got {self.attempts}.")
        if self.timeout_ms <= 0:
            raise ConfigurationError(f"Timeout must be positive, got {self.timeout_ms} ms.")
        if self.interval_ms < 0:
            raise ConfigurationError(f"Interval cannot be negative, got {self.interval_ms} ms.")


@dataclass(frozen=True)
class AttemptRecord:
    """Outcome of one echo request.

    `sequence` is always the attempt's own sequence number. `source` is the
    address the deciding frame came from, which for TTL_EXCEEDED is the
    router that dropped the request rather than the destination.
    """

    destination: Destination
    packet_size: int
    sequence: int
    outcome: Outcome
    bytes_sent: int = 0
    bytes_received: int = NO_REPLY
    ttl: Optional[int] = None
    hops: Optional[int] = None
    rtt_ms: Optional[int] = None
    icmp_type: Optional[int] = None
    source: Optional[str] = None

    @property
    def replied(self) -> bool:
        return self.bytes_received != NO_REPLY


@dataclass
class SessionResult:
    """Attempt records of a session, in attempt order.

    Counters are kept for every appended record. The records themselves are
    only kept when `retain` is set, so an unbounded session still has
    statistics without growing.
    """

    destination: Optional[Destination] = None
    retain: bool = True
    error: Optional[PingError] = None
    records: List[AttemptRecord] = field(default_factory=list)
    sent: int = 0
    received: int = 0
    min_rtt: Optional[int] = None
    max_rtt: Optional[int] = None
    total_rtt: int = 0

    def append(self, record: AttemptRecord) -> None:
        self.sent += 1
        if record.outcome is Outcome.ACCEPTED:
            self.received += 1
            rtt = record.rtt_ms or 0
            self.total_rtt += rtt
            self.min_rtt = rtt if self.min_rtt is None else min(self.min_rtt, rtt)
            self.max_rtt = rtt if self.max_rtt is None else max(self.max_rtt, rtt)
        if self.retain:
            self.records.append(record)

    def all(self) -> Tuple[AttemptRecord, ...]:
        return tuple(self.records)

    @property
    def ok(self) -> bool:
        """True when the session ran to the end without a fatal error."""
        return self.error is None

    @property
    def packet_loss(self) -> float:
        if not self.sent:
            return 0.0
        return (self.sent - self.received) / self.sent * 100

    @property
    def avg_rtt(self) -> Optional[float]:
        if not self.received:
            return None
        return self.total_rtt / self.received


TransportFactory = Callable[[int, int, int], Transport]


class PingSession:
    """One ping run against one destination over one socket.

    `destination` may be passed in when the caller has already resolved the
    host; otherwise `resolver` is called with the configured host.
    """

    def __init__(
        self,
        config: PingConfig,
        destination: Optional[Destination] = None,
        resolver: Callable[[str], Destination] = resolve,
        transport_factory: TransportFactory = Transport.open,
        identifier: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.config = config
        self.identifier = new_identifier() if identifier is None else identifier & 0xFFFF
        self.destination = destination
        self._resolver = resolver
        self._transport_factory = transport_factory
        self._cancel = cancel

    def run(self) -> SessionResult:
        """Run every attempt and collect the records.

        Configuration, resolution and socket setup errors are raised. A
        transport failure during the attempts is stored in the result's
        `error`, next to the records gathered before it.
        """
        transport = self._prepare()
        result = SessionResult(destination=self.destination, retain=not self.config.unbounded)
        try:
            for record in self._attempts(transport):
                result.append(record)
        except TransportError as e:
            result.error = e
        return result

    def iter_attempts(self) -> Iterator[AttemptRecord]:
        """Yield each attempt's record as soon as it is decided.

        Records are not kept anywhere, which makes this the way to consume
        an unbounded session. A fatal transport error is raised after the
        record of the attempt it ended.
        """
        transport = self._prepare()
        yield from self._attempts(transport)

    def _prepare(self) -> Transport:
        self.config.validate()
        if self.destination is None:
            self.destination = self._resolver(self.config.host)
        logger.info(
            "pinging %s (%s) with %d bytes, ttl %d, identifier %d",
            self.destination.host,
            self.destination.address,
            self.config.packet_size,
            self.config.ttl,
            self.identifier,
        )
        return self._transport_factory(
            self.config.ttl, self.config.timeout_ms, self.config.timeout_ms
        )

    def _cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    def _pause(self, started: float) -> None:
        remaining = self.config.interval_ms / 1000 - (time.monotonic() - started)
        if remaining <= 0:
            return
        if self._cancel is not None:
            self._cancel.wait(remaining)
        else:
            time.sleep(remaining)

    def _attempts(self, transport: Transport) -> Iterator[AttemptRecord]:
        with transport:
            sequence = 0
            for attempt in itertools.count(1):
                if self._cancelled():
                    logger.info("session cancelled")
                    return

                started = time.monotonic()
                record, error = self._attempt(transport, sequence)
                if record is None:
                    logger.info("session cancelled")
                    return
                yield record
                if error is not None:
                    raise error

                if not self.config.unbounded and attempt >= self.config.attempts:
                    return
                sequence = (sequence + 1) & 0xFFFF
                self._pause(started)

    def _attempt(
        self, transport: Transport, sequence: int
    ) -> Tuple[Optional[AttemptRecord], Optional[TransportError]]:
        frame = build_echo_request(self.config.packet_size, sequence, self.identifier)
        try:
            bytes_sent = transport.send(self.destination.address, frame)
        except TransportTimeout:
            logger.warning("send timed out for icmp_seq %d", sequence)
            return self._record(sequence, Outcome.TIMED_OUT), None
        except TransportError as e:
            logger.error("%s", e)
            return self._record(sequence, Outcome.FAILED), e

        deadline = time.monotonic() + self.config.timeout_ms / 1000
        while True:
            remaining_ms = (deadline - time.monotonic()) * 1000
            if remaining_ms <= 0:
                break
            if self._cancelled():
                return None, None

            wait_ms = remaining_ms
            if self._cancel is not None:
                wait_ms = min(remaining_ms, CANCEL_POLL_MS)
            try:
                source, data, bytes_read = transport.receive(timeout_ms=wait_ms)
            except TransportTimeout:
                if wait_ms < remaining_ms:
                    continue
                break
            except TransportError as e:
                logger.error("%s", e)
                return self._record(sequence, Outcome.FAILED, bytes_sent), e

            reply = decode_reply(
                data,
                bytes_read,
                self.identifier,
                verify_checksum=self.config.verify_checksum,
            )
            if reply.kind is ReplyKind.RETRY:
                continue
            if self._stale(reply, sequence):
                logger.debug("discarding late %s icmp_seq=%d", reply.kind.value, reply.sequence)
                continue
            return self._decided(sequence, bytes_sent, bytes_read, source, reply), None

        logger.warning("request timed out for icmp_seq %d", sequence)
        return self._record(sequence, Outcome.TIMED_OUT, bytes_sent), None

    def _record(self, sequence: int, outcome: Outcome, bytes_sent: int = 0) -> AttemptRecord:
        return AttemptRecord(
            destination=self.destination,
            packet_size=self.config.packet_size,
            sequence=sequence,
            outcome=outcome,
            bytes_sent=bytes_sent,
        )

    def _stale(self, reply: Reply, sequence: int) -> bool:
        """True for an answer to an earlier attempt of this session."""
        if reply.kind is ReplyKind.ACCEPTED:
            return reply.sequence != sequence
        if reply.kind is ReplyKind.TTL_EXCEEDED:
            return reply.identifier == self.identifier and reply.sequence != sequence
        return False

    def _decided(
        self, sequence: int, bytes_sent: int, bytes_read: int, source: str, reply: Reply
    ) -> AttemptRecord:
        return AttemptRecord(
            destination=self.destination,
            packet_size=self.config.packet_size,
            sequence=sequence,
            outcome=_OUTCOMES[reply.kind],
            bytes_sent=bytes_sent,
            bytes_received=bytes_read,
            ttl=reply.ttl,
            hops=reply.hops,
            rtt_ms=reply.rtt_ms,
            icmp_type=reply.icmp_type,
            source=source,
        )


def ping(
    host: str,
    count: Optional[int] = DEFAULT_ATTEMPTS,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    packet_size: int = DEFAULT_PACKET_SIZE,
    ttl: int = DEFAULT_TTL,
    interval_ms: int = DEFAULT_INTERVAL_MS,
) -> SessionResult:
    """Ping a host and return the session result.

    Errors are reported through `SessionResult.error` instead of raised.
    """
    session = PingSession(
        PingConfig(
            host=host,
            packet_size=packet_size,
            ttl=ttl,
            attempts=count,
            timeout_ms=timeout_ms,
            interval_ms=interval_ms,
        )
    )
    try:
        return session.run()
    except PingError as e:
        return SessionResult(destination=session.destination, error=e)


def is_host_reachable(host: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> bool:
    """Check if a host answers a single echo request."""
    result = ping(host, count=1, timeout_ms=timeout_ms)
    return result.received > 0
