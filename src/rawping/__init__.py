"""ICMP echo client over raw sockets."""

__version__ = "0.1.0"

from .decoder import Reply, ReplyKind, decode_reply, hops_from_ttl
from .errors import (
    ConfigurationError,
    PingError,
    ResolutionError,
    TransportError,
    TransportTimeout,
)
from .packet import EchoHeader, IPHeader, build_echo_request
from .report import ping_stream
from .resolver import Destination, resolve
from .session import (
    NO_REPLY,
    UNBOUNDED,
    AttemptRecord,
    Outcome,
    PingConfig,
    PingSession,
    SessionResult,
    is_host_reachable,
    ping,
)
from .transport import Transport

__all__ = [
    "ping",
    "ping_stream",
    "is_host_reachable",
    "PingConfig",
    "PingSession",
    "SessionResult",
    "AttemptRecord",
    "Outcome",
    "NO_REPLY",
    "UNBOUNDED",
    "Destination",
    "resolve",
    "Transport",
    "EchoHeader",
    "IPHeader",
    "build_echo_request",
    "decode_reply",
    "hops_from_ttl",
    "Reply",
    "ReplyKind",
    "PingError",
    "ConfigurationError",
    "ResolutionError",
    "TransportError",
    "TransportTimeout",
]
