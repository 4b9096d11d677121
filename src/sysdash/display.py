"""Display-side subscription to system telemetry."""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from sysdash.collector import DEFAULT_INTERVAL_MS
from sysdash.models import SystemSnapshot
from sysdash.synthetic import generate_synthetic_snapshot

logger = logging.getLogger(__name__)


@runtime_checkable
class SystemInfoProvider(Protocol):
    """Capability a live collector boundary offers to the display."""

    async def get_info(self) -> SystemSnapshot: ...


@runtime_checkable
class SystemUpdateProvider(Protocol):
    """Capability that can also push every collector broadcast."""

    async def get_info(self) -> SystemSnapshot: ...

    def on_update(self, callback: Callable[[SystemSnapshot], Any]) -> None: ...

    def remove_listener(self, callback: Callable[[SystemSnapshot], Any]) -> None: ...


class SubscriptionMode(Enum):
    """Where the subscription's snapshots come from."""

    LOADING = "loading"
    LIVE = "live"
    SYNTHETIC = "synthetic"


class SnapshotUnavailableError(Exception):
    """Neither a live nor a synthetic snapshot could be produced."""


class SystemInfoSubscription:
    """
    Keeps a (snapshot, is_loading, error) view current for UI code.

    The mode follows capability presence, not call success. With a live
    capability the subscription is LIVE and polls get_info() every
    interval, or, with push=True and a capability that supports it, takes
    one get_info() snapshot and then listens for pushed updates. A live call
    that fails is answered with a synthetic snapshot for that refresh only;
    the next refresh tries the capability again. Without a capability it
    streams synthetic snapshots at the same cadence. error is only set when
    no snapshot at all can be produced.
    """

    def __init__(
        self,
        capability: Any = None,
        interval_ms: float = DEFAULT_INTERVAL_MS,
        on_change: Callable[["SystemInfoSubscription"], Any] | None = None,
        synthetic: Callable[[], SystemSnapshot] = generate_synthetic_snapshot,
        push: bool = False,
    ) -> None:
        """
        Initialize the subscription.

        Args:
            capability: Live boundary, e.g. a SystemBridge. Anything that does
                not provide get_info() is treated as absent.
            interval_ms: Refresh cadence in milliseconds.
            on_change: Called with the subscription after every state change.
            synthetic: Factory for fallback snapshots.
            push: Listen for pushed updates instead of polling when live.
        """
        self._capability = capability if isinstance(capability, SystemInfoProvider) else None
        self._interval_ms = max(10.0, float(interval_ms))
        self._on_change = on_change
        self._synthetic = synthetic
        self._push = push and isinstance(capability, SystemUpdateProvider)

        self._snapshot: SystemSnapshot | None = None
        self._is_loading = True
        self._error: str | None = None
        self._mode = SubscriptionMode.LOADING

        self._active = False
        self._task: asyncio.Task[None] | None = None
        self._listening = False

    @property
    def snapshot(self) -> SystemSnapshot | None:
        return self._snapshot

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def mode(self) -> SubscriptionMode:
        return self._mode

    @property
    def has_capability(self) -> bool:
        """Check if a live boundary was provided."""
        return self._capability is not None

    @property
    def is_mounted(self) -> bool:
        return self._active

    def mount(self) -> None:
        """Start refreshing. Must be called from a running event loop."""
        if self._active:
            return
        self._active = True
        self._task = asyncio.get_running_loop().create_task(
            self._refresh_loop(), name="SystemInfoSubscription"
        )

    def unmount(self) -> None:
        """Stop refreshing; no state changes happen after this returns."""
        self._active = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
        if self._listening:
            self._listening = False
            self._capability.remove_listener(self._receive)

    async def _refresh_loop(self) -> None:
        interval = self._interval_ms / 1000
        await self.refresh()
        if self._push and self._active and self._mode is SubscriptionMode.LIVE:
            self._capability.on_update(self._receive)
            self._listening = True
            return

        while self._active:
            await asyncio.sleep(interval)
            await self.refresh()

    def _receive(self, snapshot: SystemSnapshot) -> None:
        if not self._active:
            return
        self._snapshot = snapshot
        self._is_loading = False
        self._error = None
        self._notify()

    async def refresh(self) -> None:
        """Fetch one snapshot and update the held state."""
        try:
            snapshot, mode = await self._fetch()
        except SnapshotUnavailableError as exc:
            if not self._active:
                return
            if self._snapshot is None:
                self._error = f"Unable to obtain system information: {exc}"
                self._is_loading = False
                self._notify()
            else:
                logger.warning("Keeping previous snapshot: %s", exc)
            return

        if not self._active:
            return
        self._mode = mode
        self._snapshot = snapshot
        self._is_loading = False
        self._error = None
        self._notify()

    async def _fetch(self) -> tuple[SystemSnapshot, SubscriptionMode]:
        if self._capability is None:
            if self._mode is SubscriptionMode.LOADING:
                logger.info("No live collector available, using synthetic data")
            return self._generate(), SubscriptionMode.SYNTHETIC

        try:
            snapshot = await self._capability.get_info()
        except Exception:
            logger.warning("Live system info failed, using synthetic data this refresh", exc_info=True)
            snapshot = self._generate()
        return snapshot, SubscriptionMode.LIVE

    def _generate(self) -> SystemSnapshot:
        try:
            return self._synthetic()
        except Exception as exc:
            raise SnapshotUnavailableError(str(exc) or type(exc).__name__) from exc

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:
            logger.exception("on_change handler failed")
