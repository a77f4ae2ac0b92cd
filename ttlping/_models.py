from __future__ import annotations

import enum
import socket
from dataclasses import dataclass
from typing import Optional, Union

from rich.markup import escape


class AddressFamily(enum.Enum):
    IPV4 = 4
    IPV6 = 6

    @property
    def socket_family(self) -> int:
        return socket.AF_INET if self is AddressFamily.IPV4 else socket.AF_INET6

    @property
    def protocol(self) -> int:
        return socket.IPPROTO_ICMP if self is AddressFamily.IPV4 else socket.IPPROTO_ICMPV6


class TransportMode(enum.Enum):
    RAW = "raw"
    DATAGRAM = "datagram"

    @property
    def socket_type(self) -> int:
        return socket.SOCK_RAW if self is TransportMode.RAW else socket.SOCK_DGRAM

    def network(self, family: AddressFamily) -> str:
        """Name of the network in ``proto:name`` form, e.g. ``ip4:icmp``."""
        if self is TransportMode.RAW:
            return "ip4:icmp" if family is AddressFamily.IPV4 else "ip6:ipv6-icmp"
        return "udp4" if family is AddressFamily.IPV4 else "udp6"


@dataclass(frozen=True)
class ResolvedAddress:
    host: str
    address: str
    family: AddressFamily
    scope_id: int = 0

    def sockaddr(self) -> tuple:
        if self.family is AddressFamily.IPV4:
            return (self.address, 0)
        return (self.address, 0, 0, self.scope_id)


@dataclass(frozen=True)
class InFlightPacket:
    data: bytes
    nbytes: int
    hop_limit: Optional[int]
    source: str
    received_at: int  # time.time_ns() at read


@dataclass(frozen=True)
class ReplyObservation:
    nbytes: int
    source: str
    sequence: int
    hop_limit: Optional[int]
    rtt: float  # milliseconds

    def __str__(self) -> str:
        ttl = self.hop_limit if self.hop_limit is not None else "?"
        return (
            f"{self.nbytes} bytes from {self.source}: "
            f"icmp_seq={self.sequence} ttl={ttl} time={self.rtt:.3f} ms"
        )

    def __rich__(self) -> str:
        return self.__str__()


@dataclass(frozen=True)
class HopObservation:
    hop_limit: int
    address: str

    def __str__(self) -> str:
        return f"Time limit exceeded: {self.hop_limit} hop: {self.address}"

    def __rich__(self) -> str:
        return f"[yellow]{self.__str__()}[/]"


@dataclass(frozen=True)
class ErrorObservation:
    error: Exception

    def __str__(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"

    def __rich__(self) -> str:
        return f"[red]{escape(self.__str__())}[/]"


Observation = Union[ReplyObservation, HopObservation, ErrorObservation]
