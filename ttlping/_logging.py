from __future__ import annotations

import logging
from typing import Union

from rich.console import Console
from rich.logging import RichHandler

console = Console()
logger = logging.getLogger("ttlping")

FORMAT = "%(message)s"


def configure_logging(level: Union[int, str] = "INFO") -> None:
    """Route log records through a :class:`RichHandler` on the shared console."""
    logging.basicConfig(
        level=level,
        format=FORMAT,
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                markup=True,
                show_time=False,
            )
        ],
    )
