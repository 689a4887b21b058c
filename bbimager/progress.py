"""Flashing status messages and best-effort delivery to a progress queue."""

from __future__ import annotations

import asyncio
import queue
from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Preparing:
    """The flasher is getting the target ready."""


@dataclass(frozen=True)
class Flashing:
    """Writing is under way; ``progress`` lies between 0 and 1."""

    progress: float


@dataclass(frozen=True)
class Verifying:
    """The written image is being checked."""


Status = Union[Preparing, Flashing, Verifying]


def send_status(chan: Optional[Any], msg: Any) -> None:
    """Put ``msg`` on ``chan`` without blocking; a full queue drops the message."""
    if chan is None:
        return
    try:
        chan.put_nowait(msg)
    except (queue.Full, asyncio.QueueFull):
        pass