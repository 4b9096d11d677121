"""Restricted call boundary between the collector and display surfaces."""

import asyncio
import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from sysdash.collector import DEFAULT_INTERVAL_MS, SystemCollector
from sysdash.models import SystemSnapshot

logger = logging.getLogger(__name__)

UpdateListener = Callable[[SystemSnapshot], Any]


class MonitoringPolicy(Enum):
    """What drives the collector's polling loop."""

    ON_SUBSCRIBE = "on-subscribe"  # first listener starts it, last removal stops it
    EXPLICIT = "explicit"  # start_monitoring()/stop_monitoring() signals


class SystemBridge:
    """
    Exposes a narrow telemetry API over a SystemCollector.

    Display code gets one-shot snapshots through get_info() and continuous
    updates through on_update(). The collector itself is never handed out.
    The bridge registers a single relay with the collector and fans each
    snapshot out to its own listeners; it keeps no telemetry state.
    """

    def __init__(
        self,
        collector: SystemCollector,
        policy: MonitoringPolicy = MonitoringPolicy.ON_SUBSCRIBE,
        interval_ms: float = DEFAULT_INTERVAL_MS,
    ) -> None:
        self._collector = collector
        self._policy = policy
        self._interval_ms = interval_ms
        self._listeners: dict[UpdateListener, None] = {}
        self._relaying = False
        self._pending: set[asyncio.Future[Any]] = set()

    @property
    def policy(self) -> MonitoringPolicy:
        return self._policy

    @property
    def is_monitoring(self) -> bool:
        """Check if the relay is subscribed to the collector."""
        return self._relaying

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def get_info(self) -> SystemSnapshot:
        """Return one snapshot from the collector."""
        return await self._collector.get_snapshot()

    def on_update(self, callback: UpdateListener) -> None:
        """Register callback for every broadcast snapshot."""
        self._listeners[callback] = None
        if self._policy is MonitoringPolicy.ON_SUBSCRIBE:
            self.start_monitoring()

    def remove_listener(self, callback: UpdateListener) -> None:
        """
        Unregister callback only; other listeners keep receiving updates.

        Use remove_all_listeners() to drop every listener at once.
        """
        self._listeners.pop(callback, None)
        if self._policy is MonitoringPolicy.ON_SUBSCRIBE and not self._listeners:
            self.stop_monitoring()

    def remove_all_listeners(self) -> None:
        self._listeners.clear()
        if self._policy is MonitoringPolicy.ON_SUBSCRIBE:
            self.stop_monitoring()

    def start_monitoring(self) -> None:
        """Subscribe the relay to the collector's polling loop."""
        if self._relaying:
            return
        self._collector.start_monitoring(self._relay, self._interval_ms)
        self._relaying = True
        logger.debug("Bridge relay started (%s ms)", self._interval_ms)

    def stop_monitoring(self) -> None:
        """Unsubscribe the relay; listeners stay registered."""
        if not self._relaying:
            return
        self._collector.stop_monitoring(self._relay)
        self._relaying = False
        logger.debug("Bridge relay stopped")

    def close(self) -> None:
        """Tear down the boundary: stop the collector loop and drop listeners."""
        self._listeners.clear()
        self._relaying = False
        self._collector.destroy()

    def _relay(self, snapshot: SystemSnapshot) -> None:
        for listener in list(self._listeners):
            if listener not in self._listeners:
                continue
            try:
                result = listener(snapshot)
            except Exception:
                logger.exception("Update listener %r failed", listener)
                continue
            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(self._listener_done)

    def _listener_done(self, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Update listener task failed", exc_info=future.exception())
