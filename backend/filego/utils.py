"""
Overlay Utilities

Addresses travel as "host:port" strings (the form peers advertise in a
NodeAnnouncement). The control plane also hands us URL-style addresses such
as "http://10.0.0.5:9000", so parsing accepts both.
"""

import ipaddress
import socket
import uuid
from typing import Iterable, Set, Tuple
from urllib.parse import urlsplit

from .exceptions import InvalidInputError

LOOPBACK_NAMES = {'localhost', 'localhost.localdomain', 'ip6-localhost'}


def generate_node_id() -> str:
    """Generate a random node ID (hex string)."""
    return uuid.uuid4().hex


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split an address into (host, port).

    Accepts "host:port", "[ipv6]:port" and "scheme://host:port".

    Raises:
        InvalidInputError: if the address is not well-formed
    """
    if not isinstance(address, str) or not address.strip():
        raise InvalidInputError("Address must be a non-empty string")

    address = address.strip()
    if '://' not in address:
        address = f"//{address}"

    try:
        parts = urlsplit(address)
        host = parts.hostname
        port = parts.port
    except ValueError as e:
        raise InvalidInputError(f"Invalid address {address!r}: {e}") from e

    if not host:
        raise InvalidInputError(f"Address {address!r} has no host")
    if port is None or port == 0:
        raise InvalidInputError(f"Address {address!r} has no port")
    if parts.path not in ('', '/'):
        raise InvalidInputError(f"Address {address!r} must not carry a path")

    return host, port


def format_address(host: str, port: int) -> str:
    """Join host and port, bracketing IPv6 literals."""
    if ':' in host and not host.startswith('['):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def is_loopback(host: str) -> bool:
    """Check whether a host name or IP literal is loopback."""
    if host.lower() in LOOPBACK_NAMES:
        return True
    try:
        return ipaddress.ip_address(host.split('%', 1)[0]).is_loopback
    except ValueError:
        return False


def is_unspecified(host: str) -> bool:
    """Check whether a host is the wildcard address (0.0.0.0 or ::)."""
    try:
        return ipaddress.ip_address(host.split('%', 1)[0]).is_unspecified
    except ValueError:
        return False


def local_addresses() -> Set[str]:
    """
    Best-effort set of this machine's interface addresses.

    Resolves the hostname and asks the kernel for the default route. Both can
    fail on isolated hosts, in which case only what was found is returned.
    """
    found: Set[str] = set()

    try:
        for info in socket.getaddrinfo(socket.gethostname(), None):
            found.add(info[4][0])
    except OSError:
        pass

    # Routing lookup only, no packets are sent for a UDP connect
    for family, target in ((socket.AF_INET, '192.0.2.1'), (socket.AF_INET6, '2001:db8::1')):
        try:
            with socket.socket(family, socket.SOCK_DGRAM) as s:
                s.connect((target, 9))
                found.add(s.getsockname()[0])
        except OSError:
            pass

    found.discard('0.0.0.0')
    found.discard('::')
    return found


def matches_local(ips: Iterable[str], local: Set[str]) -> bool:
    """True if any resolved IP is loopback or one of our interface addresses."""
    for ip in ips:
        if is_loopback(ip) or ip in local:
            return True
    return False
