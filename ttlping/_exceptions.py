"""Exceptions raised by ttlping."""

from __future__ import annotations


class TtlpingError(Exception):
    """Base class for every error raised by the engine."""


class ResolutionError(TtlpingError):
    """Raised when the target host cannot be resolved to an address."""


class SocketOpenError(TtlpingError):
    """Raised when the probe socket cannot be opened or configured."""


class RawSocketPermissionError(SocketOpenError, PermissionError):
    """Raised when raw socket creation fails due to missing privileges."""


class TransientSendError(TtlpingError):
    """The kernel ran out of buffer space; the send should be retried."""


class SendError(TtlpingError):
    pass


class ReadTimeout(TtlpingError):
    pass


class ReadFault(TtlpingError):
    """A socket read failed for a reason other than a timeout."""


class DecodeError(TtlpingError, ValueError):
    """Raised when an inbound datagram is not a well-formed ICMP message."""


class ClassificationError(TtlpingError):
    """Raised for ICMP messages the engine does not handle."""


class UndefinedLossError(TtlpingError, ArithmeticError):
    """Packet loss was requested before any probe was sent."""
