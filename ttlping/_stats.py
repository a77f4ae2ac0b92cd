"""Packet loss and round-trip time statistics for a finished run."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from ._exceptions import UndefinedLossError


@dataclass(frozen=True)
class Summary:
    destination: str
    sent: int
    received: int
    loss_percent: Optional[float]
    rtt_min: Optional[float]
    rtt_avg: Optional[float]
    rtt_max: Optional[float]
    rtt_stddev: Optional[float]

    @property
    def lost(self) -> int:
        return max(self.sent - self.received, 0)

    def __str__(self) -> str:
        loss = (
            f"{self.loss_percent:.1f}% packet loss"
            if self.loss_percent is not None
            else "undefined packet loss"
        )
        lines = [
            f"--- {self.destination} ping statistics ---",
            f"{self.sent} packets transmitted, {self.received} packets received, {loss}",
        ]
        if (
            self.rtt_min is not None
            and self.rtt_avg is not None
            and self.rtt_max is not None
            and self.rtt_stddev is not None
        ):
            lines.append(
                f"round-trip min/avg/max/stddev = {self.rtt_min:.3f}/{self.rtt_avg:.3f}/"
                f"{self.rtt_max:.3f}/{self.rtt_stddev:.3f} ms"
            )
        return "\n".join(lines) + "\n"

    def __rich__(self) -> str:
        return self.__str__()


def packet_loss(sent: int, received: int) -> float:
    """Percentage of probes without a matched reply.

    Raises :class:`UndefinedLossError` when nothing was sent.
    """
    if sent <= 0:
        raise UndefinedLossError("packet loss is undefined when no packets were sent")
    return (sent - received) / sent * 100


def summarize(destination: str, sent: int, received: int, rtts: Sequence[float]) -> Summary:
    try:
        loss_percent: Optional[float] = packet_loss(sent, received)
    except UndefinedLossError:
        loss_percent = None

    if rtts:
        avg = sum(rtts) / len(rtts)
        stddev = math.sqrt(sum((rtt - avg) ** 2 for rtt in rtts) / len(rtts))
        rtt_min, rtt_avg, rtt_max, rtt_stddev = min(rtts), avg, max(rtts), stddev
    else:
        rtt_min = rtt_avg = rtt_max = rtt_stddev = None

    return Summary(
        destination=destination,
        sent=sent,
        received=received,
        loss_percent=loss_percent,
        rtt_min=rtt_min,
        rtt_avg=rtt_avg,
        rtt_max=rtt_max,
        rtt_stddev=rtt_stddev,
    )
