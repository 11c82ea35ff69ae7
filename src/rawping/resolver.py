"""Host name resolution for ping targets."""

import socket
from dataclasses import dataclass
from typing import Optional

from .errors import ResolutionError


@dataclass(frozen=True)
class Destination:
    """A resolved ping target."""

    host: str
    address: str
    canonical_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.canonical_name or self.address


def _is_dotted_quad(host: str) -> bool:
    try:
        socket.inet_aton(host)
    except OSError:
        return False
    return host.count(".") == 3


def _reverse_lookup(address: str) -> Optional[str]:
    try:
        return socket.gethostbyaddr(address)[0]
    except (socket.herror, socket.gaierror):
        return None


def resolve(host: str) -> Destination:
    """Resolve a host name or dotted quad address.

    Literal addresses get a best-effort reverse lookup for the canonical
    name; names keep the canonical name returned by the resolver.
    """
    if _is_dotted_quad(host):
        return Destination(host=host, address=host, canonical_name=_reverse_lookup(host))

    try:
        canonical, _, addresses = socket.gethostbyname_ex(host)
    except (socket.gaierror, socket.herror, UnicodeError) as e:
        raise ResolutionError(host) from e
    if not addresses:
        raise ResolutionError(host)
    return Destination(host=host, address=addresses[0], canonical_name=canonical or host)
