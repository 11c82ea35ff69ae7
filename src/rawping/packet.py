"""ICMP echo request construction and the wire structures it relies on."""

import socket
import struct
import time
from dataclasses import dataclass
from typing import Optional

from .checksum import checksum

# ICMP types
ICMP_ECHO_REPLY = 0
ICMP_DEST_UNREACH = 3
ICMP_ECHO_REQUEST = 8
ICMP_TIME_EXCEEDED = 11

# type(1), code(1), checksum(2), id(2), seq(2)
ICMP_MIN_SIZE = 8
# ICMP_MIN_SIZE plus a 4 byte send timestamp, which only rawping understands
ECHO_HEADER_SIZE = 12
MAX_PACKET_SIZE = 1024

IP_MIN_HEADER_SIZE = 20
IP_MAX_HEADER_SIZE = 60

PAYLOAD_PATTERN = b"\xde\xad\xbe\xef"

_ECHO_FORMAT = "!BBHHHI"
_ICMP_MIN_FORMAT = "!BBHHH"
_IP_FORMAT = "!BBHHHBBH4s4s"
_TIMESTAMP_OFFSET = ICMP_MIN_SIZE
_CHECKSUM_OFFSET = 2


def now_ms() -> int:
    """Milliseconds on a monotonic clock, truncated to 32 bits."""
    return int(time.monotonic() * 1000) & 0xFFFFFFFF


@dataclass
class EchoHeader:
    """ICMP echo header with the rawping timestamp extension."""

    type: int
    code: int
    checksum: int
    identifier: int
    sequence: int
    timestamp: Optional[int] = None

    # ICMP Echo Packet Structure (RFC 792, plus timestamp)
    #
    #  0                            15                               31
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |     Type      |     Code      |           Checksum            |
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |           Identifier          |        Sequence Number        |
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |                      Timestamp (ms)                           |
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |                 Payload (DE AD BE EF ...)                     |
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

    def pack(self) -> bytes:
        return struct.pack(
            _ECHO_FORMAT,
            self.type,
            self.code,
            self.checksum,
            self.identifier,
            self.sequence,
            self.timestamp or 0,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "EchoHeader":
        """Parse an ICMP header.

        At least ICMP_MIN_SIZE bytes are required. The timestamp is only
        filled in when the full ECHO_HEADER_SIZE bytes are available.
        """
        if len(data) < ICMP_MIN_SIZE:
            raise ValueError(f"ICMP header needs {ICMP_MIN_SIZE} bytes, got {len(data)}")
        if len(data) >= ECHO_HEADER_SIZE:
            return cls(*struct.unpack(_ECHO_FORMAT, data[:ECHO_HEADER_SIZE]))
        return cls(*struct.unpack(_ICMP_MIN_FORMAT, data[:ICMP_MIN_SIZE]))


@dataclass
class IPHeader:
    """IPv4 header of a received frame."""

    version: int
    ihl: int
    total_length: int
    ttl: int
    protocol: int
    source: str
    destination: str

    # IP Header Structure
    # 0                              15                              31
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |Version|  IHL  |Type of Service|          Total Length         |
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |         Identification        |Flags|      Fragment Offset    |
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |  Time to Live |    Protocol   |         Header Checksum       |
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |                       Source Address                          |
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |                    Destination Address                        |
    # +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    # |                    Options (IHL > 5)                          |

    @property
    def header_length(self) -> int:
        return self.ihl * 4

    @classmethod
    def unpack(cls, data: bytes) -> "IPHeader":
        if len(data) < IP_MIN_HEADER_SIZE:
            raise ValueError(f"IP header needs {IP_MIN_HEADER_SIZE} bytes, got {len(data)}")
        ver_ihl, _, total_length, _, _, ttl, proto, _, src, dst = struct.unpack(
            _IP_FORMAT, data[:IP_MIN_HEADER_SIZE]
        )
        return cls(
            version=ver_ihl >> 4,
            ihl=ver_ihl & 0x0F,
            total_length=total_length,
            ttl=ttl,
            protocol=proto,
            source=socket.inet_ntoa(src),
            destination=socket.inet_ntoa(dst),
        )


def frame_size(size: int) -> int:
    """Clamp a requested packet size to what build_echo_request produces."""
    return max(ECHO_HEADER_SIZE, min(MAX_PACKET_SIZE, size))


def _fill_payload(length: int) -> bytes:
    repeats, rest = divmod(length, len(PAYLOAD_PATTERN))
    return PAYLOAD_PATTERN * repeats + PAYLOAD_PATTERN[:rest]


def _with_checksum(frame: bytes) -> bytes:
    zeroed = frame[:_CHECKSUM_OFFSET] + b"\x00\x00" + frame[_CHECKSUM_OFFSET + 2 :]
    value = checksum(zeroed)
    return zeroed[:_CHECKSUM_OFFSET] + struct.pack("!H", value) + zeroed[_CHECKSUM_OFFSET + 2 :]


def build_echo_request(
    size: int, sequence: int, identifier: int, timestamp: Optional[int] = None
) -> bytes:
    """Create an ICMP echo request of `size` bytes, header included."""
    header = EchoHeader(
        type=ICMP_ECHO_REQUEST,
        code=0,
        checksum=0,
        identifier=identifier & 0xFFFF,
        sequence=sequence & 0xFFFF,
        timestamp=now_ms() if timestamp is None else timestamp & 0xFFFFFFFF,
    )
    payload = _fill_payload(frame_size(size) - ECHO_HEADER_SIZE)

    # Checksum goes in last, over the complete frame
    return _with_checksum(header.pack() + payload)


def restamp(frame: bytes, timestamp: Optional[int] = None) -> bytes:
    """Replace the send timestamp of an echo request and fix up its checksum."""
    if timestamp is None:
        timestamp = now_ms()
    stamped = (
        frame[:_TIMESTAMP_OFFSET]
        + struct.pack("!I", timestamp & 0xFFFFFFFF)
        + frame[_TIMESTAMP_OFFSET + 4 :]
    )
    return _with_checksum(stamped)
