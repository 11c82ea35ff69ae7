"""Shared helpers for building raw frames and faking the socket layer."""

import socket
import struct

import pytest

from rawping.checksum import checksum
from rawping.errors import TransportTimeout
from rawping.packet import EchoHeader


def icmp_message(icmp_type, identifier=0, sequence=0, timestamp=0, payload=b"", code=0):
    """ICMP message with a valid checksum and the rawping timestamp."""
    message = struct.pack("!BBHHHI", icmp_type, code, 0, identifier, sequence, timestamp)
    message += payload
    value = checksum(message)
    return message[:2] + struct.pack("!H", value) + message[4:]


def ip_frame(icmp, ttl=64, source="127.0.0.1", ihl=5, protocol=socket.IPPROTO_ICMP):
    """Prepend an IPv4 header (with zeroed options when ihl > 5)."""
    header = struct.pack(
        "!BBHHHBBH4s4s",
        (4 << 4) | ihl,
        0,
        ihl * 4 + len(icmp),
        0,
        0,
        ttl,
        protocol,
        0,
        socket.inet_aton(source),
        socket.inet_aton("127.0.0.1"),
    )
    return header + b"\x00" * ((ihl - 5) * 4) + icmp


def echo_reply_to(request, ttl=128, source="127.0.0.1"):
    """The frame a host would send back for an echo request."""
    header = EchoHeader.unpack(request)
    icmp = icmp_message(
        0, header.identifier, header.sequence, header.timestamp, request[12:]
    )
    return ip_frame(icmp, ttl=ttl, source=source)


class FakeTransport:
    """Stands in for Transport.

    `replies` is consumed one item per receive: bytes are returned as read
    frames, exceptions are raised, and callables are called with the last
    sent frame to build the reply. An empty queue times out.
    """

    def __init__(self, replies=(), send_error=None):
        self.replies = list(replies)
        self.send_error = send_error
        self.sent = []
        self.closed = False

    def send(self, address, frame):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((address, frame))
        return len(frame)

    def receive(self, max_bytes=None, timeout_ms=None):
        if not self.replies:
            raise TransportTimeout("Request timed out")
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(self.sent[-1][1])
        return "127.0.0.1", item, len(item)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


@pytest.fixture
def fake_transport():
    """Factory for FakeTransport instances."""
    return FakeTransport
