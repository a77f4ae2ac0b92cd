from __future__ import annotations

import errno
import select
import socket
import struct
import time
from typing import Any, Optional

from ._exceptions import (
    RawSocketPermissionError,
    ReadFault,
    ReadTimeout,
    SendError,
    SocketOpenError,
    TransientSendError,
)
from ._logging import logger
from ._models import AddressFamily, InFlightPacket, TransportMode

# Not exported by every Python build; the value is fixed by the Linux ABI.
IP_RECVTTL = getattr(socket, "IP_RECVTTL", 12)

_INT = struct.Struct("i")
_ANCILLARY_SIZE = socket.CMSG_SPACE(_INT.size) * 2


class ProbeSocket:
    """ICMP socket for one address family with per-packet hop-limit metadata."""

    def __init__(
        self,
        sock: Any,
        family: AddressFamily,
        mode: TransportMode = TransportMode.RAW,
        buffer_size: int = 512,
    ) -> None:
        self._sock: Optional[Any] = sock
        self.family = family
        self.mode = mode
        self.buffer_size = buffer_size

    @classmethod
    def open(
        cls,
        family: AddressFamily,
        mode: TransportMode,
        hop_limit: int,
        *,
        identifier: Optional[int] = None,
        buffer_size: int = 512,
    ) -> "ProbeSocket":
        network = mode.network(family)
        try:
            sock = socket.socket(family.socket_family, mode.socket_type, family.protocol)
        except PermissionError as exc:
            if mode is TransportMode.RAW:
                message = (
                    "Raw socket requires elevated privileges. Use sudo, grant "
                    "CAP_NET_RAW to the Python interpreter, or retry unprivileged."
                )
            else:
                message = (
                    "Unprivileged ICMP sockets are not allowed for this user; "
                    "check net.ipv4.ping_group_range."
                )
            raise RawSocketPermissionError(message) from exc
        except OSError as exc:
            raise SocketOpenError(f"Cannot open {network} socket: {exc}") from exc

        probe = cls(sock, family, mode, buffer_size)
        try:
            if mode is TransportMode.DATAGRAM and identifier is not None:
                # Ping sockets use the bound port as the echo identifier.
                wildcard = "0.0.0.0" if family is AddressFamily.IPV4 else "::"
                sock.bind((wildcard, identifier))
            if family is AddressFamily.IPV4:
                sock.setsockopt(socket.IPPROTO_IP, IP_RECVTTL, 1)
            else:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_RECVHOPLIMIT, 1)
            probe.set_hop_limit(hop_limit)
        except OSError as exc:
            probe.close()
            raise SocketOpenError(f"Cannot configure {network} socket: {exc}") from exc

        logger.debug("Opened %s socket (hop limit %d)", network, hop_limit)
        return probe

    @property
    def closed(self) -> bool:
        return self._sock is None

    def _require(self) -> Any:
        if self._sock is None:
            raise OSError(errno.EBADF, "probe socket is closed")
        return self._sock

    def _hop_limit_option(self) -> tuple[int, int]:
        if self.family is AddressFamily.IPV4:
            return socket.IPPROTO_IP, socket.IP_TTL
        return socket.IPPROTO_IPV6, socket.IPV6_UNICAST_HOPS

    def set_hop_limit(self, value: int) -> None:
        level, option = self._hop_limit_option()
        self._require().setsockopt(level, option, value)

    def get_hop_limit(self) -> int:
        level, option = self._hop_limit_option()
        return self._require().getsockopt(level, option)

    def send(self, data: bytes, destination: tuple) -> int:
        try:
            return self._require().sendto(data, destination)
        except OSError as exc:
            if exc.errno == errno.ENOBUFS:
                raise TransientSendError(str(exc)) from exc
            raise SendError(f"sendto {destination[0]} failed: {exc}") from exc

    def _ancillary_hop_limit(self, ancdata: list) -> Optional[int]:
        wanted = {
            (socket.IPPROTO_IP, socket.IP_TTL),
            (socket.IPPROTO_IPV6, socket.IPV6_HOPLIMIT),
        }
        for level, kind, data in ancdata:
            if (level, kind) in wanted and len(data) >= _INT.size:
                return _INT.unpack_from(data)[0]
        return None

    def receive(self, timeout: float) -> InFlightPacket:
        """Wait up to ``timeout`` seconds for one datagram.

        Raises :class:`ReadTimeout` when nothing arrived and :class:`ReadFault`
        for any other socket failure.
        """
        try:
            sock = self._require()
            ready, _, _ = select.select([sock], [], [], timeout)
            if not ready:
                raise ReadTimeout(f"no datagram within {timeout:.3f}s")
            data, ancdata, _, address = sock.recvmsg(self.buffer_size, _ANCILLARY_SIZE)
        except (BlockingIOError, InterruptedError) as exc:
            raise ReadTimeout(str(exc)) from exc
        except (OSError, ValueError) as exc:
            raise ReadFault(f"read failed: {exc}") from exc
        received_at = time.time_ns()

        hop_limit = self._ancillary_hop_limit(ancdata)
        if self.mode is TransportMode.RAW and self.family is AddressFamily.IPV4:
            # Raw IPv4 reads include the IP header; ICMPv6 and ping sockets do not.
            if len(data) >= 20 and data[0] >> 4 == 4:
                if hop_limit is None:
                    hop_limit = data[8]
                data = data[(data[0] & 0x0F) * 4 :]

        source = address[0] if address else ""
        return InFlightPacket(
            data=bytes(data),
            nbytes=len(data),
            hop_limit=hop_limit,
            source=source,
            received_at=received_at,
        )

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None

    def __enter__(self) -> "ProbeSocket":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
