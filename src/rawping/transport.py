"""Raw ICMP socket ownership: open, send, receive, close."""

import logging
import socket
from typing import Optional, Tuple

from . import packet
from .errors import TransportError, TransportTimeout

logger = logging.getLogger(__name__)

# Room for an IP header with options plus the largest echo we send, or an
# ICMP error quoting one.
RECV_BUFFER_SIZE = 4 * (packet.IP_MAX_HEADER_SIZE + packet.MAX_PACKET_SIZE)

PERMISSION_MESSAGE = "Permission denied. Run with root/administrator privileges."


class Transport:
    """A raw ICMP socket with a fixed TTL and send/receive timeouts.

    Use :meth:`open` to create one. Instances are context managers and close
    their socket on exit.
    """

    def __init__(self, sock: socket.socket, recv_timeout_ms: int, send_timeout_ms: int):
        self._sock = sock
        self.recv_timeout_ms = recv_timeout_ms
        self.send_timeout_ms = send_timeout_ms

    @classmethod
    def open(cls, ttl: int, recv_timeout_ms: int, send_timeout_ms: int) -> "Transport":
        """Create the raw socket and apply the socket options."""
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
        except PermissionError as e:
            raise TransportError(PERMISSION_MESSAGE, e.errno) from e
        except OSError as e:
            raise TransportError(f"Cannot create socket: {e}", e.errno) from e

        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_TTL, ttl)
        except OSError as e:
            sock.close()
            raise TransportError(f"Cannot set TTL to {ttl}: {e}", e.errno) from e

        logger.debug(
            "opened raw socket ttl=%d recv_timeout=%dms send_timeout=%dms",
            ttl,
            recv_timeout_ms,
            send_timeout_ms,
        )
        return cls(sock, recv_timeout_ms, send_timeout_ms)

    def send(self, address: str, frame: bytes) -> int:
        """Send an echo request, stamping it with the current time first."""
        frame = packet.restamp(frame)
        try:
            self._sock.settimeout(self.send_timeout_ms / 1000)
            return self._sock.sendto(frame, (address, 0))
        except socket.timeout as e:
            raise TransportTimeout(f"Send to {address} timed out", e.errno) from e
        except OSError as e:
            raise TransportError(f"Send to {address} failed: {e}", e.errno) from e

    def receive(
        self, max_bytes: int = RECV_BUFFER_SIZE, timeout_ms: Optional[float] = None
    ) -> Tuple[str, bytes, int]:
        """Wait for the next ICMP frame from any sender.

        `timeout_ms` may shorten the configured receive timeout for this call
        only. Returns (sender address, frame, bytes read).
        """
        timeout = self.recv_timeout_ms
        if timeout_ms is not None:
            timeout = min(timeout, timeout_ms)
        if timeout <= 0:
            # settimeout(0) would switch the socket to non-blocking mode
            raise TransportTimeout("Request timed out")
        try:
            self._sock.settimeout(timeout / 1000)
            data, addr = self._sock.recvfrom(max_bytes)
        except socket.timeout as e:
            raise TransportTimeout("Request timed out", e.errno) from e
        except OSError as e:
            raise TransportError(f"Receive failed: {e}", e.errno) from e
        return addr[0], data, len(data)

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
