"""Classification of frames read from a raw ICMP socket."""

import enum
import logging
import socket
from dataclasses import dataclass
from typing import Optional

from . import packet
from .checksum import verify

logger = logging.getLogger(__name__)


class ReplyKind(enum.Enum):
    ACCEPTED = "accepted"
    TTL_EXCEEDED = "ttl_exceeded"
    RETRY = "retry"  # not ours, read again
    UNREACHABLE = "unreachable"
    MALFORMED = "malformed"
    UNKNOWN_TYPE = "unknown_type"


@dataclass
class Reply:
    """A decoded frame."""

    kind: ReplyKind
    sequence: Optional[int] = None
    ttl: Optional[int] = None
    hops: Optional[int] = None
    rtt_ms: Optional[int] = None
    icmp_type: Optional[int] = None
    identifier: Optional[int] = None


def hops_from_ttl(ttl: int) -> int:
    """Guess how many hops a reply travelled from the TTL it arrived with.

    Assumes the sender started from one of the usual defaults. A TTL of 64
    is most likely a host on the LAN, 128 most likely localhost.
    """
    remaining = 256 - ttl
    if remaining == 192:
        return 1
    if remaining == 128:
        return 0
    return remaining


def _quoted_echo(data: bytes, offset: int) -> Optional[packet.EchoHeader]:
    """Header of the echo request quoted in an ICMP error message."""
    inner_ip = offset + packet.ICMP_MIN_SIZE
    if len(data) < inner_ip + packet.IP_MIN_HEADER_SIZE:
        return None
    try:
        inner = packet.IPHeader.unpack(data[inner_ip:])
    except ValueError:
        return None
    if inner.protocol != socket.IPPROTO_ICMP or inner.ihl < 5:
        return None
    inner_icmp = inner_ip + inner.header_length
    try:
        return packet.EchoHeader.unpack(data[inner_icmp:])
    except ValueError:
        return None


def decode_reply(
    frame: bytes,
    bytes_read: int,
    identifier: int,
    now_ms: Optional[int] = None,
    verify_checksum: bool = False,
) -> Reply:
    """Classify a raw frame (IP header included) against a session identifier.

    For TTL_EXCEEDED, `sequence` and `identifier` are those of the quoted
    echo request. `identifier` is None when the message quotes none.
    """
    data = frame[:bytes_read]
    try:
        ip_header = packet.IPHeader.unpack(data)
    except ValueError as e:
        logger.debug("discarding frame: %s", e)
        return Reply(ReplyKind.MALFORMED)
    offset = ip_header.header_length

    if ip_header.ihl < 5 or bytes_read < offset + packet.ICMP_MIN_SIZE:
        logger.debug("too few bytes from %s: %d", ip_header.source, bytes_read)
        return Reply(ReplyKind.MALFORMED)

    icmp = packet.EchoHeader.unpack(data[offset:])

    if icmp.type == packet.ICMP_ECHO_REPLY:
        if icmp.identifier != identifier & 0xFFFF:
            # Another pinger running on this host
            logger.debug(
                "ignoring echo reply for identifier %d from %s",
                icmp.identifier,
                ip_header.source,
            )
            return Reply(ReplyKind.RETRY, identifier=icmp.identifier)
        if icmp.timestamp is None:
            return Reply(ReplyKind.MALFORMED, identifier=icmp.identifier)
        if verify_checksum and not verify(data[offset:]):
            logger.debug("bad checksum in reply from %s", ip_header.source)
            return Reply(ReplyKind.MALFORMED, identifier=icmp.identifier)
    elif icmp.type == packet.ICMP_TIME_EXCEEDED:
        # Deliberately not filtered by identifier. The identifier of the
        # quoted request, if any, is left for the session to compare.
        quoted = _quoted_echo(data, offset)
        if quoted is None:
            icmp.identifier = None
        else:
            icmp.identifier = quoted.identifier
            icmp.sequence = quoted.sequence
    elif icmp.type == packet.ICMP_ECHO_REQUEST:
        # Raw sockets also see requests, our own looped back included
        logger.debug("ignoring echo request from %s", ip_header.source)
        return Reply(ReplyKind.RETRY, identifier=icmp.identifier)
    elif icmp.type == packet.ICMP_DEST_UNREACH:
        return Reply(ReplyKind.UNREACHABLE, icmp_type=icmp.type)
    else:
        return Reply(ReplyKind.UNKNOWN_TYPE, icmp_type=icmp.type)

    reply = Reply(
        ReplyKind.ACCEPTED,
        sequence=icmp.sequence,
        ttl=ip_header.ttl,
        hops=hops_from_ttl(ip_header.ttl),
        icmp_type=icmp.type,
        identifier=icmp.identifier,
    )
    if icmp.type == packet.ICMP_TIME_EXCEEDED:
        reply.kind = ReplyKind.TTL_EXCEEDED
        return reply

    if now_ms is None:
        now_ms = packet.now_ms()
    reply.rtt_ms = (now_ms - icmp.timestamp) & 0xFFFFFFFF
    return reply
