"""
Status notifications.

The pipeline and the elapsed-time ticker both publish through one
:class:`StatusChannel`; deliveries are serialised with a lock so observers
never see interleaved updates, whichever thread or task produced them.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable, List, Optional, Union

from .models import ElapsedEvent, StatusEvent

logger = logging.getLogger(__name__)

Event = Union[StatusEvent, ElapsedEvent]
Observer = Callable[[Event], None]


def format_elapsed(seconds: float) -> str:
    """Format a duration as ``H:MM:SS``, ``M:SS`` or plain seconds."""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    if minutes > 0:
        return f"{minutes}:{secs:02d}"
    return str(secs)


class StatusChannel:
    def __init__(self) -> None:
        self._observers: List[Observer] = []
        self._lock = threading.Lock()

    def subscribe(self, observer: Observer) -> None:
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        with self._lock:
            self._observers.remove(observer)

    def publish(self, event: Event) -> None:
        with self._lock:
            for observer in list(self._observers):
                observer(event)


class LoggingObserver:
    """Log every event, progress rounded to whole percents."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    def __call__(self, event: Event) -> None:
        if isinstance(event, ElapsedEvent):
            self.log.debug("Elapsed %s", event.formatted)
        elif event.progress is not None:
            self.log.info("%s %s %d %%", event.stage.value, event.status.value, round(event.progress))
        else:
            self.log.info("%s %s", event.stage.value, event.status.value)


class ElapsedTicker:
    """Publish an :class:`ElapsedEvent` every ``interval`` seconds.

    Use as an async context manager around a pipeline run::

        async with ElapsedTicker(channel):
            await pipeline.run(job)
    """

    def __init__(self, channel: StatusChannel, interval: float = 1.0) -> None:
        self.channel = channel
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._started = 0.0

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    async def _tick(self) -> None:
        while True:
            seconds = self.elapsed
            self.channel.publish(ElapsedEvent(seconds, format_elapsed(seconds)))
            await asyncio.sleep(self.interval)

    async def __aenter__(self) -> "ElapsedTicker":
        self._started = time.monotonic()
        self._task = asyncio.ensure_future(self._tick())
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
