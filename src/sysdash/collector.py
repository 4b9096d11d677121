"""Telemetry collector for sysdash."""

import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

from sysdash.models import CpuInfo, SystemSnapshot
from sysdash.sources import MetricSource, PsutilSource

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[SystemSnapshot], Any]

DEFAULT_INTERVAL_MS = 1000


class SystemCollector:
    """
    Produces SystemSnapshots on demand and on a schedule.

    One polling loop is shared by every subscriber: the first call to
    start_monitoring() sets the cadence, every tick gathers a single
    snapshot and broadcasts it to all subscribers in registration order.
    The loop runs as an asyncio task, so all mutation of the subscriber set
    happens on the event loop thread.
    """

    def __init__(
        self,
        source: MetricSource | None = None,
        top_process_count: int = 5,
    ) -> None:
        """
        Initialize the SystemCollector.

        Args:
            source: Metric source to query. Defaults to the local host.
            top_process_count: How many processes to report, by memory.
        """
        self._source = source if source is not None else PsutilSource()
        self._top_process_count = top_process_count
        self._subscribers: dict[SnapshotCallback, None] = {}
        self._task: asyncio.Task[None] | None = None
        self._ticking: asyncio.Task[Any] | None = None
        self._interval_ms: float = DEFAULT_INTERVAL_MS
        self._last_timestamp = 0.0
        self._pending: set[asyncio.Future[Any]] = set()

    @property
    def is_running(self) -> bool:
        """Check if the polling loop is scheduled."""
        return self._task is not None and not self._task.done()

    @property
    def interval_ms(self) -> float:
        """Get the cadence of the current (or last) polling loop."""
        return self._interval_ms

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _now(self) -> float:
        # Wall clock in ms, never behind the previous snapshot
        self._last_timestamp = max(time.time() * 1000, self._last_timestamp)
        return self._last_timestamp

    async def get_snapshot(self) -> SystemSnapshot:
        """
        Gather one snapshot of the host.

        Memory, CPU load and disk are queried concurrently; if any of them
        fails the zeroed fallback snapshot is returned instead. Temperature
        and the supplementary metrics are optional: when they cannot be
        obtained the field is left as None. Never raises.
        """
        source = self._source
        try:
            memory, (load, cores), disk = await asyncio.gather(
                asyncio.to_thread(source.memory),
                asyncio.to_thread(source.cpu_load),
                asyncio.to_thread(source.disk),
            )
        except Exception:
            logger.exception("Failed to get system info, using zeroed snapshot")
            return SystemSnapshot.zeroed(self._now())

        temperature, details, gpus, network, processes = await asyncio.gather(
            self._optional("temperature", source.temperature),
            self._optional("cpu details", source.cpu_details),
            self._optional("gpu", source.gpus),
            self._optional("network", source.network),
            self._optional("processes", source.top_processes, self._top_process_count),
        )
        model, speed = details if details is not None else (None, None)
        if temperature is not None and temperature <= 0:
            temperature = None

        return SystemSnapshot(
            memory=memory,
            cpu=CpuInfo(
                current_load=min(100.0, max(0.0, load)),
                cores=len(cores),
                threads=len(cores),
                model=model,
                speed=speed,
                temperature=temperature,
            ),
            timestamp=self._now(),
            cpu_cores=tuple(cores) if cores else None,
            gpu=tuple(gpus) if gpus else None,
            disk=disk,
            network=network,
            top_processes=tuple(processes) if processes else None,
        )

    async def _optional(self, name: str, query: Callable[..., Any], *args: Any) -> Any:
        """Run a soft metric query; unavailability yields None."""
        try:
            return await asyncio.to_thread(query, *args)
        except Exception as exc:
            logger.debug("%s unavailable: %s", name, exc)
            return None

    def start_monitoring(
        self,
        callback: SnapshotCallback,
        interval_ms: float = DEFAULT_INTERVAL_MS,
    ) -> None:
        """
        Subscribe callback to every broadcast snapshot.

        Starts the polling loop if it is not running; the interval is only
        honoured by the call that starts the loop. Must be called from a
        running event loop.
        """
        self._subscribers[callback] = None

        if not self.is_running:
            self._interval_ms = max(10.0, float(interval_ms))
            ticking = self._ticking
            if ticking is not None and not ticking.done():
                # A stopped loop still finishing its tick carries on
                self._task = ticking
            else:
                self._task = asyncio.get_running_loop().create_task(
                    self._poll_loop(), name="SystemCollector"
                )

    def stop_monitoring(self, callback: SnapshotCallback | None = None) -> None:
        """
        Unsubscribe callback, or every subscriber when callback is None.

        The polling loop is cancelled once no subscribers remain.
        """
        if callback is not None:
            self._subscribers.pop(callback, None)
        else:
            self._subscribers.clear()

        if not self._subscribers:
            self._cancel_loop()

    def destroy(self) -> None:
        """Cancel the polling loop and drop all subscribers. Idempotent."""
        self._cancel_loop()
        self._subscribers.clear()

    def _cancel_loop(self) -> None:
        task, self._task = self._task, None
        # A tick that is already gathering finishes; the loop exits after it
        if task is not None and task is not self._ticking:
            task.cancel()

    async def _poll_loop(self) -> None:
        """Fixed-rate polling loop; ticks that fall behind are skipped."""
        loop = asyncio.get_running_loop()
        me = asyncio.current_task()
        deadline = loop.time() + self._interval_ms / 1000

        while self._task is me:
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            if self._task is not me:
                break

            self._ticking = me
            try:
                snapshot = await self.get_snapshot()
                self._broadcast(snapshot)
            except Exception:
                # Keep the loop running whatever happens in a tick
                logger.exception("Polling tick failed")
            finally:
                if self._ticking is me:
                    self._ticking = None

            interval = self._interval_ms / 1000
            deadline += interval
            now = loop.time()
            if deadline < now:
                missed = int((now - deadline) // interval) + 1
                logger.debug("Gather overran the interval, skipping %d tick(s)", missed)
                deadline += missed * interval

    def _broadcast(self, snapshot: SystemSnapshot) -> None:
        """Hand the snapshot to each subscriber, in registration order."""
        for callback in list(self._subscribers):
            if callback not in self._subscribers:
                # Unsubscribed by an earlier callback in this broadcast
                continue
            try:
                result = callback(snapshot)
            except Exception:
                logger.exception("Subscriber %r failed", callback)
                continue
            if inspect.isawaitable(result):
                # Not awaited: subscribers do not hold up the tick
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(self._callback_done)

    def _callback_done(self, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Subscriber task failed", exc_info=future.exception())
