from __future__ import annotations

import ipaddress
import socket
from typing import Optional

from ._exceptions import ResolutionError
from ._logging import logger
from ._models import AddressFamily, ResolvedAddress


def _literal(host: str) -> Optional[ResolvedAddress]:
    address, _, zone = host.partition("%")
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return None
    if ip.version == 4:
        return ResolvedAddress(host=host, address=str(ip), family=AddressFamily.IPV4)
    scope_id = 0
    if zone:
        try:
            scope_id = int(zone) if zone.isdigit() else socket.if_nametoindex(zone)
        except OSError as exc:
            raise ResolutionError(f"Unknown interface {zone!r} in {host}") from exc
    return ResolvedAddress(
        host=host, address=str(ip), family=AddressFamily.IPV6, scope_id=scope_id
    )


def resolve(host: str) -> ResolvedAddress:
    """Resolve ``host`` to exactly one address.

    Literal addresses are returned as-is. For names the first IPv4 result
    wins, falling back to the first IPv6 one.
    """
    if not host:
        raise ResolutionError("Empty host")

    literal = _literal(host)
    if literal is not None:
        return literal

    try:
        infos = socket.getaddrinfo(host, None, socket.AF_UNSPEC, socket.SOCK_RAW)
    except (OSError, UnicodeError) as exc:
        message = f"Resolve error {host}"
        logger.debug("%s: %s", message, exc)
        raise ResolutionError(message) from exc

    candidates = [info for info in infos if info[0] in (socket.AF_INET, socket.AF_INET6)]
    if not candidates:
        raise ResolutionError(f"Resolve error {host}: no addresses")

    ipv4 = [info for info in candidates if info[0] == socket.AF_INET]
    family, _, _, _, sockaddr = (ipv4 or candidates)[0]
    if family == socket.AF_INET:
        resolved = ResolvedAddress(host=host, address=sockaddr[0], family=AddressFamily.IPV4)
    else:
        resolved = ResolvedAddress(
            host=host,
            address=sockaddr[0].partition("%")[0],
            family=AddressFamily.IPV6,
            scope_id=sockaddr[3],
        )
    logger.debug("Resolved %s to %s", host, resolved.address)
    return resolved
