"""Live Textual view of a running :class:`~ttlping.Pinger`."""

from __future__ import annotations

import math
from typing import Optional

from textual.app import App, ComposeResult
from textual.widgets import DataTable, Footer, Header, Static
from textual.worker import Worker, WorkerFailed

from ._models import ErrorObservation, HopObservation, Observation, ReplyObservation
from ._pinger import Pinger
from ._stats import Summary

COLUMNS = ("Event", "From", "Seq", "TTL", "Detail")

__all__ = ["PingApp", "observation_row"]


def _format_ms(value: Optional[float]) -> str:
    if value is None or not math.isfinite(value):
        return "-"
    return f"{value:.2f} ms"


def observation_row(observation: Observation) -> tuple[str, str, str, str, str]:
    if isinstance(observation, ReplyObservation):
        ttl = str(observation.hop_limit) if observation.hop_limit is not None else "?"
        return (
            "reply",
            observation.source,
            str(observation.sequence),
            ttl,
            _format_ms(observation.rtt),
        )
    if isinstance(observation, HopObservation):
        return ("hop", observation.address, "-", str(observation.hop_limit), "ttl exceeded")
    if isinstance(observation, ErrorObservation):
        return ("error", "-", "-", "-", str(observation))
    raise TypeError(f"unexpected observation {observation!r}")


class PingApp(App):
    """Stream replies and discovered hops into a table until stopped."""

    CSS = """
    #events {
        height: 1fr;
    }
    #counters {
        height: 1;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("s", "stop", "Stop"),
        ("q", "quit", "Quit"),
    ]

    def __init__(self, pinger: Pinger) -> None:
        super().__init__()
        self.pinger = pinger
        self.pinger.on_observation = self.record
        self._worker: Optional[Worker] = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield DataTable(id="events")
        yield Static(id="counters")
        yield Footer()

    def on_mount(self) -> None:
        self.title = f"ttlping {self.pinger.target.host}"
        self.sub_title = self.pinger.target.address
        table = self.query_one("#events", DataTable)
        table.add_columns(*COLUMNS)
        self._refresh_counters()
        self._worker = self.run_worker(self.pinger.run(), exclusive=True, name="pinger")

    def record(self, observation: Observation) -> None:
        table = self.query_one("#events", DataTable)
        table.add_row(*observation_row(observation))
        table.move_cursor(row=table.row_count - 1, scroll=True)
        self._refresh_counters()

    def _refresh_counters(self) -> None:
        pinger = self.pinger
        self.query_one("#counters", Static).update(
            f"sent {pinger.sent}  received {pinger.received}  ttl {pinger.hop_limit}"
        )

    async def _finish(self) -> Summary:
        self.pinger.stop()
        if self._worker is not None:
            try:
                await self._worker.wait()
            except WorkerFailed as exc:
                self.notify(f"Error: {exc.error}", severity="error")
        self._refresh_counters()
        return self.pinger.summary()

    async def action_stop(self) -> None:
        summary = await self._finish()
        self.notify(str(summary).strip())

    async def action_quit(self) -> None:
        self.exit(await self._finish())
