"""In-memory stand-ins for the kernel socket and helpers that build ICMP bytes."""

from __future__ import annotations

import queue
import struct
import time
from typing import Callable, Optional

from ttlping import AddressFamily, InFlightPacket, Pinger, ReadTimeout, Settings

TARGET = "198.51.100.1"
IDENTIFIER = 0x1234


class FakeProbeSocket:
    """Scripted replacement for :class:`ttlping.ProbeSocket`."""

    def __init__(
        self,
        hop_limit: int = 60,
        send_errors=(),
        on_send: Optional[Callable[[bytes], None]] = None,
        read_error: Optional[Exception] = None,
    ):
        self.hop_limit = hop_limit
        self.hop_limits = [hop_limit]
        self.sent: list[tuple[bytes, tuple]] = []
        self.send_attempts = 0
        self.close_calls = 0
        self.receive_calls = 0
        self.on_send = on_send
        self.read_error = read_error
        self._send_errors = list(send_errors)
        self._inbound: queue.Queue = queue.Queue()

    def set_hop_limit(self, value: int) -> None:
        self.hop_limit = value
        self.hop_limits.append(value)

    def get_hop_limit(self) -> int:
        return self.hop_limit

    def send(self, data: bytes, destination: tuple) -> int:
        self.send_attempts += 1
        if self._send_errors:
            raise self._send_errors.pop(0)
        self.sent.append((data, destination))
        if self.on_send is not None:
            self.on_send(data)
        return len(data)

    def feed(self, packet: InFlightPacket) -> None:
        self._inbound.put(packet)

    def receive(self, timeout: float) -> InFlightPacket:
        self.receive_calls += 1
        if self.read_error is not None:
            raise self.read_error
        try:
            return self._inbound.get(timeout=timeout)
        except queue.Empty:
            raise ReadTimeout("nothing queued") from None

    def close(self) -> None:
        self.close_calls += 1


def make_pinger(sock: FakeProbeSocket, host: str = TARGET, **settings) -> Pinger:
    return Pinger(
        host,
        Settings(**settings),
        identifier=IDENTIFIER,
        socket_factory=lambda *args: sock,
    )


def echo_reply(
    identifier: int,
    sequence: int,
    sent_ns: int,
    family: AddressFamily = AddressFamily.IPV4,
) -> bytes:
    icmp_type = 0 if family is AddressFamily.IPV4 else 129
    return struct.pack("!BBHHH", icmp_type, 0, 0, identifier, sequence) + struct.pack(
        "!Q", sent_ns
    )


def time_exceeded(
    original_id: int,
    family: AddressFamily = AddressFamily.IPV4,
    ihl: int = 5,
) -> bytes:
    inner_echo = struct.pack("!BBHHH", 8, 0, 0, original_id, 7)
    if family is AddressFamily.IPV4:
        inner_ip = bytes([0x40 | ihl]) + bytes(ihl * 4 - 1)
        outer = struct.pack("!BBHI", 11, 0, 0, 0)
    else:
        inner_ip = bytes([0x60]) + bytes(39)
        outer = struct.pack("!BBHI", 3, 0, 0, 0)
    return outer + inner_ip + inner_echo


def packet(
    data: bytes,
    source: str = TARGET,
    hop_limit: Optional[int] = 57,
    received_at: Optional[int] = None,
) -> InFlightPacket:
    return InFlightPacket(
        data=data,
        nbytes=len(data),
        hop_limit=hop_limit,
        source=source,
        received_at=time.time_ns() if received_at is None else received_at,
    )
