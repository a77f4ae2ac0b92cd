"""ICMP and ICMPv6 echo encoding and inbound message decoding."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Union

from ._exceptions import DecodeError
from ._models import AddressFamily

ICMP_ECHO_REQUEST = 8
ICMP_ECHO_REPLY = 0
ICMP_TIME_EXCEEDED = 11
ICMP_DEST_UNREACHABLE = 3

ICMPV6_ECHO_REQUEST = 128
ICMPV6_ECHO_REPLY = 129
ICMPV6_TIME_EXCEEDED = 3
ICMPV6_DEST_UNREACHABLE = 1

HEADER = struct.Struct("!BBHHH")
TIMESTAMP = struct.Struct("!Q")
IPV6_HEADER_LENGTH = 40

_ECHO_REQUEST = {
    AddressFamily.IPV4: ICMP_ECHO_REQUEST,
    AddressFamily.IPV6: ICMPV6_ECHO_REQUEST,
}
_ECHO_REPLY = {
    AddressFamily.IPV4: ICMP_ECHO_REPLY,
    AddressFamily.IPV6: ICMPV6_ECHO_REPLY,
}
_TIME_EXCEEDED = {
    AddressFamily.IPV4: ICMP_TIME_EXCEEDED,
    AddressFamily.IPV6: ICMPV6_TIME_EXCEEDED,
}


@dataclass(frozen=True)
class EchoReply:
    identifier: int
    sequence: int
    payload: bytes

    def sent_at(self) -> int:
        """Send time in nanoseconds, read from the first 8 payload bytes."""
        if len(self.payload) < TIMESTAMP.size:
            raise DecodeError(
                f"echo reply payload too short for a timestamp ({len(self.payload)} bytes)"
            )
        return TIMESTAMP.unpack_from(self.payload)[0]


@dataclass(frozen=True)
class TimeExceeded:
    code: int
    original_identifier: int
    payload: bytes


@dataclass(frozen=True)
class OtherMessage:
    type: int
    code: int


IcmpMessage = Union[EchoReply, TimeExceeded, OtherMessage]


def checksum(data: bytes) -> int:
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack("!%dH" % (len(data) // 2), data))
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return (~total) & 0xFFFF


def encode_timestamp(ns: int) -> bytes:
    return TIMESTAMP.pack(ns & 0xFFFFFFFFFFFFFFFF)


def build_echo_request(
    family: AddressFamily, identifier: int, sequence: int, timestamp_ns: int
) -> bytes:
    """Serialize an echo request carrying an 8-byte send timestamp.

    The IPv4 checksum is computed here. ICMPv6 checksums cover a pseudo
    header the kernel owns, so the field is left zero for it to fill in.
    """
    icmp_type = _ECHO_REQUEST[family]
    identifier &= 0xFFFF
    sequence &= 0xFFFF
    data = encode_timestamp(timestamp_ns)
    header = HEADER.pack(icmp_type, 0, 0, identifier, sequence)
    if family is AddressFamily.IPV4:
        header = HEADER.pack(
            icmp_type, 0, checksum(header + data), identifier, sequence
        )
    return header + data


def _original_identifier(family: AddressFamily, body: bytes) -> int:
    # body is the failed datagram: its IP header followed by our ICMP header.
    if family is AddressFamily.IPV4:
        if not body:
            raise DecodeError("time exceeded notice carries no original datagram")
        offset = (body[0] & 0x0F) * 4
        if offset < 20:
            raise DecodeError(f"embedded IPv4 header length {offset} is invalid")
    else:
        offset = IPV6_HEADER_LENGTH
    offset += 4
    if len(body) < offset + 2:
        raise DecodeError(
            f"time exceeded notice too short ({len(body)} bytes) to hold the original echo"
        )
    return struct.unpack_from("!H", body, offset)[0]


def parse_message(family: AddressFamily, data: bytes) -> IcmpMessage:
    """Decode an ICMP message (no IP header) into one of the tagged variants."""
    if len(data) < HEADER.size:
        raise DecodeError(
            f"message shorter than the ICMP header ({len(data)} < {HEADER.size} bytes)"
        )
    icmp_type, code, _, rest_hi, rest_lo = HEADER.unpack_from(data)
    body = data[HEADER.size :]

    if icmp_type == _ECHO_REPLY[family]:
        return EchoReply(identifier=rest_hi, sequence=rest_lo, payload=body)
    if icmp_type == _TIME_EXCEEDED[family]:
        return TimeExceeded(
            code=code,
            original_identifier=_original_identifier(family, body),
            payload=body,
        )
    return OtherMessage(type=icmp_type, code=code)
