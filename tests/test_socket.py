import errno
import select
import socket
import struct

import pytest

from ttlping import (
    AddressFamily,
    ProbeSocket,
    RawSocketPermissionError,
    ReadFault,
    ReadTimeout,
    SendError,
    SocketOpenError,
    TransientSendError,
    TransportMode,
)
from ttlping._socket import IP_RECVTTL


class RecordingSocket:
    def __init__(self, recvmsg_result=None, send_error=None, recv_error=None):
        self.options = {}
        self.bound = None
        self.close_calls = 0
        self.recvmsg_result = recvmsg_result
        self.send_error = send_error
        self.recv_error = recv_error

    def setsockopt(self, level, option, value):
        self.options[(level, option)] = value

    def getsockopt(self, level, option):
        return self.options[(level, option)]

    def bind(self, address):
        self.bound = address

    def sendto(self, data, destination):
        if self.send_error is not None:
            raise self.send_error
        return len(data)

    def recvmsg(self, bufsize, ancbufsize):
        if self.recv_error is not None:
            raise self.recv_error
        return self.recvmsg_result

    def close(self):
        self.close_calls += 1


@pytest.fixture
def always_ready(monkeypatch):
    monkeypatch.setattr(select, "select", lambda r, w, x, timeout: (r, [], []))


def _ipv4_datagram(icmp: bytes, ttl: int) -> bytes:
    header = struct.pack(
        "!BBHHHBBH4s4s",
        0x45,
        0,
        20 + len(icmp),
        0,
        0,
        ttl,
        1,
        0,
        socket.inet_aton("198.51.100.1"),
        socket.inet_aton("192.0.2.10"),
    )
    return header + icmp


def test_open_without_privileges(monkeypatch):
    def deny(*args):
        raise PermissionError(errno.EPERM, "Operation not permitted")

    monkeypatch.setattr(socket, "socket", deny)
    with pytest.raises(RawSocketPermissionError) as info:
        ProbeSocket.open(AddressFamily.IPV4, TransportMode.RAW, 60)
    assert isinstance(info.value, SocketOpenError)
    assert isinstance(info.value, PermissionError)


def test_open_other_failure(monkeypatch):
    def unsupported(*args):
        raise OSError(errno.EAFNOSUPPORT, "Address family not supported")

    monkeypatch.setattr(socket, "socket", unsupported)
    with pytest.raises(SocketOpenError) as info:
        ProbeSocket.open(AddressFamily.IPV6, TransportMode.RAW, 60)
    assert not isinstance(info.value, RawSocketPermissionError)


def test_open_configures_ipv4_raw_socket(monkeypatch):
    created = []

    def factory(family, kind, proto):
        created.append((family, kind, proto))
        sock = RecordingSocket()
        created.append(sock)
        return sock

    monkeypatch.setattr(socket, "socket", factory)
    probe = ProbeSocket.open(AddressFamily.IPV4, TransportMode.RAW, 7, identifier=99)
    (family, kind, proto), sock = created
    assert (family, kind, proto) == (socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
    assert sock.options[(socket.IPPROTO_IP, IP_RECVTTL)] == 1
    assert probe.get_hop_limit() == 7
    assert sock.bound is None


def test_open_binds_datagram_socket_to_identifier(monkeypatch):
    sock = RecordingSocket()
    monkeypatch.setattr(socket, "socket", lambda *args: sock)
    probe = ProbeSocket.open(AddressFamily.IPV6, TransportMode.DATAGRAM, 9, identifier=4242)
    assert sock.bound == ("::", 4242)
    assert sock.options[(socket.IPPROTO_IPV6, socket.IPV6_RECVHOPLIMIT)] == 1
    assert sock.options[(socket.IPPROTO_IPV6, socket.IPV6_UNICAST_HOPS)] == 9
    assert probe.get_hop_limit() == 9


def test_open_closes_socket_when_configuration_fails(monkeypatch):
    sock = RecordingSocket()

    def refuse(address):
        raise OSError(errno.EADDRINUSE, "Address already in use")

    sock.bind = refuse
    monkeypatch.setattr(socket, "socket", lambda *args: sock)
    with pytest.raises(SocketOpenError):
        ProbeSocket.open(AddressFamily.IPV4, TransportMode.DATAGRAM, 60, identifier=1)
    assert sock.close_calls == 1


def test_set_hop_limit_ipv4():
    sock = RecordingSocket()
    probe = ProbeSocket(sock, AddressFamily.IPV4)
    probe.set_hop_limit(12)
    assert sock.options[(socket.IPPROTO_IP, socket.IP_TTL)] == 12
    assert probe.get_hop_limit() == 12


def test_send_maps_buffer_exhaustion_to_transient_error():
    probe = ProbeSocket(
        RecordingSocket(send_error=OSError(errno.ENOBUFS, "No buffer space")),
        AddressFamily.IPV4,
    )
    with pytest.raises(TransientSendError):
        probe.send(b"x", ("198.51.100.1", 0))


def test_send_maps_other_errors_to_send_error():
    probe = ProbeSocket(
        RecordingSocket(send_error=OSError(errno.EHOSTUNREACH, "No route to host")),
        AddressFamily.IPV4,
    )
    with pytest.raises(SendError):
        probe.send(b"x", ("198.51.100.1", 0))


def test_receive_strips_ipv4_header_and_reads_ancillary_ttl(always_ready):
    icmp = b"\x00\x00\x00\x00\x12\x34\x00\x01" + bytes(8)
    ancillary = [(socket.IPPROTO_IP, socket.IP_TTL, struct.pack("i", 51))]
    sock = RecordingSocket(
        recvmsg_result=(_ipv4_datagram(icmp, ttl=64), ancillary, 0, ("198.51.100.1", 0))
    )
    packet = ProbeSocket(sock, AddressFamily.IPV4).receive(0.1)
    assert packet.data == icmp
    assert packet.nbytes == len(icmp)
    assert packet.hop_limit == 51
    assert packet.source == "198.51.100.1"
    assert packet.received_at > 0


def test_receive_falls_back_to_header_ttl(always_ready):
    icmp = bytes(16)
    sock = RecordingSocket(
        recvmsg_result=(_ipv4_datagram(icmp, ttl=64), [], 0, ("198.51.100.1", 0))
    )
    packet = ProbeSocket(sock, AddressFamily.IPV4).receive(0.1)
    assert packet.hop_limit == 64
    assert packet.data == icmp


def test_receive_ipv6_keeps_payload(always_ready):
    icmp = b"\x81\x00\x00\x00\x00\x01\x00\x02" + bytes(8)
    ancillary = [(socket.IPPROTO_IPV6, socket.IPV6_HOPLIMIT, struct.pack("i", 60))]
    sock = RecordingSocket(recvmsg_result=(icmp, ancillary, 0, ("2001:db8::1", 0, 0, 0)))
    packet = ProbeSocket(sock, AddressFamily.IPV6).receive(0.1)
    assert packet.data == icmp
    assert packet.hop_limit == 60
    assert packet.source == "2001:db8::1"


def test_receive_on_datagram_socket_keeps_payload(always_ready):
    icmp = b"\x00\x00\x00\x00\x00\x01\x00\x02" + bytes(8)
    sock = RecordingSocket(recvmsg_result=(icmp, [], 0, ("198.51.100.1", 0)))
    packet = ProbeSocket(sock, AddressFamily.IPV4, TransportMode.DATAGRAM).receive(0.1)
    assert packet.data == icmp
    assert packet.hop_limit is None


def test_receive_timeout(monkeypatch):
    monkeypatch.setattr(select, "select", lambda r, w, x, timeout: ([], [], []))
    with pytest.raises(ReadTimeout):
        ProbeSocket(RecordingSocket(), AddressFamily.IPV4).receive(0.01)


def test_receive_error_is_a_fault(always_ready):
    sock = RecordingSocket(recv_error=OSError(errno.ENETDOWN, "Network is down"))
    with pytest.raises(ReadFault):
        ProbeSocket(sock, AddressFamily.IPV4).receive(0.1)


def test_receive_after_close_is_a_fault():
    probe = ProbeSocket(RecordingSocket(), AddressFamily.IPV4)
    probe.close()
    with pytest.raises(ReadFault):
        probe.receive(0.1)


def test_close_is_idempotent():
    sock = RecordingSocket()
    probe = ProbeSocket(sock, AddressFamily.IPV4)
    probe.close()
    probe.close()
    assert probe.closed
    assert sock.close_calls == 1
