from ._config import Settings
from ._exceptions import (
    ClassificationError,
    DecodeError,
    RawSocketPermissionError,
    ReadFault,
    ReadTimeout,
    ResolutionError,
    SendError,
    SocketOpenError,
    TransientSendError,
    TtlpingError,
    UndefinedLossError,
)
from ._icmp import EchoReply, OtherMessage, TimeExceeded, build_echo_request, parse_message
from ._logging import configure_logging, console, logger
from ._models import (
    AddressFamily,
    ErrorObservation,
    HopObservation,
    InFlightPacket,
    Observation,
    ReplyObservation,
    ResolvedAddress,
    TransportMode,
)
from ._pinger import Pinger, Termination
from ._resolver import resolve
from ._socket import ProbeSocket
from ._stats import Summary, packet_loss, summarize

__version__ = "0.1.0"

__all__ = [
    "Pinger",
    "Settings",
    "Termination",
    "ProbeSocket",
    "resolve",
    "parse_message",
    "build_echo_request",
    "packet_loss",
    "summarize",
    "Summary",
    "AddressFamily",
    "TransportMode",
    "ResolvedAddress",
    "InFlightPacket",
    "Observation",
    "ReplyObservation",
    "HopObservation",
    "ErrorObservation",
    "EchoReply",
    "TimeExceeded",
    "OtherMessage",
    "configure_logging",
    "console",
    "logger",
    "TtlpingError",
    "ResolutionError",
    "SocketOpenError",
    "RawSocketPermissionError",
    "TransientSendError",
    "SendError",
    "ReadTimeout",
    "ReadFault",
    "DecodeError",
    "ClassificationError",
    "UndefinedLossError",
]
