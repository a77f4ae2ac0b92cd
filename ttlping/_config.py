from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    interval: float = 1.0  # seconds between probes
    unprivileged: bool = False  # datagram ICMP socket instead of a raw one
    ttl: int = 60
    max_ttl: int = 255  # escalation stops here
    read_timeout: float = 0.1
    queue_size: int = 5
    buffer_size: int = 512

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError("interval must be positive")
        if not 1 <= self.ttl <= self.max_ttl <= 255:
            raise ValueError("ttl must satisfy 1 <= ttl <= max_ttl <= 255")
        if self.read_timeout <= 0:
            raise ValueError("read_timeout must be positive")
        if self.queue_size < 1:
            raise ValueError("queue_size must be at least 1")
