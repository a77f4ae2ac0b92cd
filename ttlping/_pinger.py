"""Continuous ping engine with hop-limit escalation.

A :class:`Pinger` owns all probe state. :meth:`Pinger.run` is the only
coroutine that mutates it: it wakes on the probe interval to send, drains
the bounded queue filled by the receiver task, and exits once the
termination signal is raised.
"""

from __future__ import annotations

import asyncio
import dataclasses
import secrets
import threading
import time
from typing import Any, Awaitable, Callable, Optional

from ._config import Settings
from ._exceptions import (
    ClassificationError,
    DecodeError,
    ReadFault,
    ReadTimeout,
    SendError,
    TransientSendError,
)
from ._icmp import EchoReply, OtherMessage, TimeExceeded, build_echo_request, parse_message
from ._logging import logger
from ._models import (
    AddressFamily,
    ErrorObservation,
    HopObservation,
    InFlightPacket,
    Observation,
    ReplyObservation,
    TransportMode,
)
from ._resolver import resolve
from ._socket import ProbeSocket
from ._stats import Summary, summarize

SocketFactory = Callable[[AddressFamily, TransportMode, int, int], Any]
ObservationCallback = Callable[[Observation], None]


def _new_identifier() -> int:
    # Zero would let a ping socket pick its own identifier on bind.
    return secrets.randbelow(0xFFFF) + 1


class Termination:
    """One-shot stop signal observable from threads and coroutines alike."""

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._event: Optional[asyncio.Event] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            self._loop = loop
            self._event = asyncio.Event()
            if self._flag.is_set():
                self._event.set()

    def is_set(self) -> bool:
        return self._flag.is_set()

    def set(self) -> bool:
        """Raise the signal. Returns ``False`` if it was already raised."""
        with self._lock:
            if self._flag.is_set():
                return False
            self._flag.set()
            loop, event = self._loop, self._event
        # Also wakes a selector blocked in the loop thread, e.g. from a signal handler.
        if loop is not None and event is not None and not loop.is_closed():
            loop.call_soon_threadsafe(event.set)
        return True

    async def wait(self) -> None:
        if self._event is None:
            raise RuntimeError("Termination is not bound to an event loop")
        await self._event.wait()


class Pinger:
    """Send echo requests to one host until stopped.

    Matching echo replies are counted and timed. Time-exceeded notices for
    our own probes raise the outbound hop limit by one, so the hops on the
    way to the target are reported until it answers directly.
    """

    def __init__(
        self,
        host: str,
        settings: Optional[Settings] = None,
        *,
        identifier: Optional[int] = None,
        socket_factory: Optional[SocketFactory] = None,
        on_observation: Optional[ObservationCallback] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.target = resolve(host)
        self.identifier = (identifier if identifier is not None else _new_identifier()) & 0xFFFF
        self.on_observation = on_observation

        self.sequence = 0
        self.hop_limit = self.settings.ttl
        self.sent = 0
        self.received = 0
        self.rtts: list[float] = []
        self.fault: Optional[ReadFault] = None

        self._socket_factory = socket_factory
        self._sock: Optional[Any] = None
        self._termination = Termination()
        self._packets: Optional[asyncio.Queue] = None
        self._started = False

    @property
    def family(self) -> AddressFamily:
        return self.target.family

    @property
    def mode(self) -> TransportMode:
        return TransportMode.DATAGRAM if self.settings.unprivileged else TransportMode.RAW

    @property
    def stopped(self) -> bool:
        return self._termination.is_set()

    def configure(self, **changes: Any) -> None:
        """Replace settings fields before the run starts."""
        if self._started:
            raise RuntimeError("Cannot reconfigure a pinger that has already started")
        self.settings = dataclasses.replace(self.settings, **changes)
        self.hop_limit = self.settings.ttl

    @property
    def sock(self) -> Any:
        if self._sock is None:
            if self._socket_factory is not None:
                self._sock = self._socket_factory(
                    self.family, self.mode, self.hop_limit, self.identifier
                )
            else:
                self._sock = ProbeSocket.open(
                    self.family,
                    self.mode,
                    self.hop_limit,
                    identifier=self.identifier,
                    buffer_size=self.settings.buffer_size,
                )
        return self._sock

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None

    def __enter__(self) -> "Pinger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
        self.close()

    async def __aenter__(self) -> "Pinger":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()
        self.close()

    def stop(self) -> None:
        """Ask the run to finish. Safe from any thread; repeated calls are no-ops."""
        if self._termination.set():
            logger.debug("Stop requested for %s", self.target.address)

    def _emit(self, observation: Observation) -> Observation:
        if self.on_observation is not None:
            self.on_observation(observation)
        return observation

    # ------------------------------------------------------------- sender

    def send_probe(self) -> bool:
        """Transmit one echo request. Returns ``True`` when it was sent."""
        sock = self.sock
        sequence = self.sequence
        destination = self.target.sockaddr()
        try:
            while True:
                packet = build_echo_request(
                    self.family, self.identifier, sequence, time.time_ns()
                )
                try:
                    sock.send(packet, destination)
                except TransientSendError:
                    continue
                break
        except SendError as exc:
            logger.warning("Send error (icmp_seq=%d): %s", sequence, exc)
            self._emit(ErrorObservation(exc))
            return False
        finally:
            self.sequence += 1
        self.sent += 1
        return True

    # ---------------------------------------------------- packet processor

    def process_packet(self, packet: InFlightPacket) -> Optional[Observation]:
        """Classify one inbound datagram and apply its effect on the run.

        Returns the emitted observation, or ``None`` for traffic that
        belongs to somebody else.
        """
        try:
            message = parse_message(self.family, packet.data)
            if isinstance(message, EchoReply):
                return self._handle_echo_reply(packet, message)
            if isinstance(message, TimeExceeded):
                return self._handle_time_exceeded(packet, message)
            if isinstance(message, OtherMessage):
                raise ClassificationError(
                    f"unhandled ICMP type {message.type} code {message.code} "
                    f"from {packet.source or '?'}"
                )
            raise ClassificationError(f"unknown message variant {message!r}")
        except DecodeError as exc:
            logger.warning("Discarding malformed packet from %s: %s", packet.source or "?", exc)
            return self._emit(ErrorObservation(exc))
        except ClassificationError as exc:
            logger.debug("Discarding packet: %s", exc)
            return self._emit(ErrorObservation(exc))

    def _handle_echo_reply(
        self, packet: InFlightPacket, reply: EchoReply
    ) -> Optional[Observation]:
        if reply.identifier != self.identifier:
            logger.debug("Ignoring echo reply with foreign id %d", reply.identifier)
            return None
        rtt = (packet.received_at - reply.sent_at()) / 1_000_000
        self.rtts.append(rtt)
        self.received += 1
        return self._emit(
            ReplyObservation(
                nbytes=packet.nbytes,
                source=packet.source or self.target.address,
                sequence=reply.sequence,
                hop_limit=packet.hop_limit,
                rtt=rtt,
            )
        )

    def _handle_time_exceeded(
        self, packet: InFlightPacket, notice: TimeExceeded
    ) -> Optional[Observation]:
        if notice.original_identifier != self.identifier:
            logger.debug(
                "Ignoring time exceeded for foreign id %d", notice.original_identifier
            )
            return None
        before = self.hop_limit
        if before >= self.settings.max_ttl:
            logger.warning("Hop limit is already at its maximum of %d", before)
        else:
            self.sock.set_hop_limit(before + 1)
            self.hop_limit = before + 1
            logger.debug("Hop limit raised to %d", self.hop_limit)
        return self._emit(HopObservation(hop_limit=before, address=packet.source or "?"))

    # ------------------------------------------------------ concurrency

    async def _wait_or_stop(
        self, aw: Awaitable[Any], timeout: Optional[float] = None
    ) -> Optional[asyncio.Future]:
        """Await ``aw`` unless termination or ``timeout`` comes first.

        Returns the finished task, or ``None`` after cancelling it.
        """
        task = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._termination.wait())
        try:
            await asyncio.wait(
                {task, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stopper.cancel()
            finished = task.done()
            if not finished:
                task.cancel()
        return task if finished else None

    async def _receive_loop(self, sock: Any) -> None:
        timeout = self.settings.read_timeout
        try:
            while not self._termination.is_set():
                try:
                    packet = await asyncio.to_thread(sock.receive, timeout)
                except ReadTimeout:
                    continue
                except ReadFault as exc:
                    self.fault = exc
                    logger.error("Receiver stopped: %s", exc)
                    return
                if await self._wait_or_stop(self._packets.put(packet)) is None:
                    return
        finally:
            self._termination.set()

    async def _coordinate(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.settings.interval
        next_tick = loop.time() + interval
        while not self._termination.is_set():
            delay = next_tick - loop.time()
            if delay <= 0:
                self.send_probe()
                next_tick += interval
                if next_tick <= loop.time():
                    next_tick = loop.time() + interval
                continue
            task = await self._wait_or_stop(self._packets.get(), timeout=delay)
            if task is not None:
                self.process_packet(task.result())

    async def run(self) -> Summary:
        """Probe until :meth:`stop` is called or the socket faults."""
        if self._started:
            raise RuntimeError("A Pinger instance can only run once")
        self._started = True
        self._termination.bind(asyncio.get_running_loop())

        sock = self.sock
        self._packets = asyncio.Queue(maxsize=self.settings.queue_size)
        receiver = asyncio.ensure_future(self._receive_loop(sock))
        logger.info(
            "Starting pinging to %s (%s) id=%d ttl=%d",
            self.target.host,
            self.target.address,
            self.identifier,
            self.hop_limit,
        )
        try:
            await self._coordinate()
        finally:
            self._termination.set()
            try:
                await receiver
            finally:
                self.close()

        summary = self.summary()
        logger.info(
            "Stopped pinging %s: sent=%d received=%d",
            self.target.address,
            summary.sent,
            summary.received,
        )
        return summary

    def start(self) -> Summary:
        """Blocking wrapper around :meth:`run`."""
        return asyncio.run(self.run())

    def summary(self) -> Summary:
        return summarize(self.target.address, self.sent, self.received, self.rtts)
