"""Tests for the display-side SystemInfoSubscription."""

import asyncio
import random

import pytest

from conftest import wait_for
from sysdash.bridge import SystemBridge
from sysdash.display import SubscriptionMode, SystemInfoSubscription
from sysdash.models import SystemSnapshot
from sysdash.synthetic import generate_synthetic_snapshot


class FakeCapability:
    """Live capability whose calls can be made to fail."""

    def __init__(self) -> None:
        self.calls = 0
        self.fail = False

    async def get_info(self) -> SystemSnapshot:
        self.calls += 1
        if self.fail:
            raise ConnectionError("collector went away")
        return SystemSnapshot.zeroed(float(self.calls))


def test_initial_state_is_loading():
    """Test a fresh subscription is loading with nothing to show."""
    subscription = SystemInfoSubscription()

    assert subscription.is_loading
    assert subscription.snapshot is None
    assert subscription.error is None
    assert subscription.mode is SubscriptionMode.LOADING


def test_non_conforming_capability_is_absent():
    """Test objects without get_info() are not treated as live."""
    assert not SystemInfoSubscription(object()).has_capability
    assert not SystemInfoSubscription(None).has_capability
    assert SystemInfoSubscription(FakeCapability()).has_capability


@pytest.mark.asyncio
async def test_absent_capability_streams_synthetic_data():
    """Test no capability goes straight to synthetic data with no error."""
    subscription = SystemInfoSubscription(None, interval_ms=20)
    subscription.mount()
    try:
        await wait_for(lambda: not subscription.is_loading)

        assert subscription.mode is SubscriptionMode.SYNTHETIC
        assert subscription.error is None
        assert subscription.snapshot is not None
        assert subscription.snapshot.cpu.model == "Synthetic CPU (demo mode)"
    finally:
        subscription.unmount()


@pytest.mark.asyncio
async def test_live_capability_polls():
    """Test a live capability is fetched immediately and then every interval."""
    capability = FakeCapability()
    changes = []
    subscription = SystemInfoSubscription(capability, interval_ms=20, on_change=changes.append)
    subscription.mount()
    try:
        await wait_for(lambda: capability.calls >= 3)

        assert subscription.mode is SubscriptionMode.LIVE
        assert not subscription.is_loading
        assert subscription.error is None
        assert subscription.snapshot.timestamp >= 2.0
        assert all(change is subscription for change in changes)
    finally:
        subscription.unmount()


@pytest.mark.asyncio
async def test_failing_live_call_uses_synthetic_for_that_refresh():
    """Test a throwing live call is covered by synthetic data and retried next refresh."""
    capability = FakeCapability()
    subscription = SystemInfoSubscription(capability, interval_ms=20)
    subscription.mount()
    try:
        await wait_for(lambda: subscription.snapshot is not None)

        capability.fail = True
        await wait_for(lambda: subscription.snapshot.cpu.model == "Synthetic CPU (demo mode)")
        assert subscription.mode is SubscriptionMode.LIVE
        assert subscription.error is None
        calls_during_outage = capability.calls

        capability.fail = False
        await wait_for(lambda: subscription.snapshot.memory.total == 0)
        assert capability.calls > calls_during_outage
        assert subscription.mode is SubscriptionMode.LIVE
    finally:
        subscription.unmount()


@pytest.mark.asyncio
async def test_capability_failing_from_start_stays_live():
    """Test a capability that fails on first contact still reports LIVE with data."""
    capability = FakeCapability()
    capability.fail = True
    subscription = SystemInfoSubscription(capability, interval_ms=20)
    subscription.mount()
    try:
        await wait_for(lambda: capability.calls >= 3)

        assert subscription.mode is SubscriptionMode.LIVE
        assert not subscription.is_loading
        assert subscription.error is None
        assert subscription.snapshot.memory.total > 0
    finally:
        subscription.unmount()


@pytest.mark.asyncio
async def test_error_only_when_no_snapshot_at_all():
    """Test error is set when neither live nor synthetic data exists."""

    def broken_generator():
        raise RuntimeError("no entropy")

    changes = []
    subscription = SystemInfoSubscription(
        None, interval_ms=20, synthetic=broken_generator, on_change=changes.append
    )
    subscription.mount()
    try:
        await wait_for(lambda: subscription.error is not None)

        assert "no entropy" in subscription.error
        assert not subscription.is_loading
        assert subscription.snapshot is None
    finally:
        subscription.unmount()


@pytest.mark.asyncio
async def test_unmount_stops_updates():
    """Test no state change happens after unmount."""
    changes = []
    subscription = SystemInfoSubscription(None, interval_ms=20, on_change=changes.append)
    subscription.mount()
    await wait_for(lambda: len(changes) >= 1)

    subscription.unmount()
    seen = len(changes)
    await asyncio.sleep(0.1)

    assert len(changes) == seen
    assert not subscription.is_mounted


@pytest.mark.asyncio
async def test_unmount_during_fetch_discards_result():
    """Test a fetch that completes after unmount does not update state."""
    release = asyncio.Event()

    class SlowCapability:
        async def get_info(self):
            await release.wait()
            return SystemSnapshot.zeroed(1.0)

    subscription = SystemInfoSubscription(SlowCapability(), interval_ms=20)
    subscription.mount()
    await asyncio.sleep(0.02)

    subscription.unmount()
    release.set()
    await asyncio.sleep(0.02)

    assert subscription.snapshot is None
    assert subscription.is_loading


@pytest.mark.asyncio
async def test_mount_is_idempotent():
    """Test mounting twice keeps a single refresh task."""
    subscription = SystemInfoSubscription(None, interval_ms=20)
    subscription.mount()
    task = subscription._task
    subscription.mount()
    try:
        assert subscription._task is task
    finally:
        subscription.unmount()


@pytest.mark.asyncio
async def test_push_mode_listens_to_bridge(collector):
    """Test push mode takes one snapshot then follows bridge broadcasts."""
    bridge = SystemBridge(collector, interval_ms=20)
    changes = []
    subscription = SystemInfoSubscription(
        bridge, interval_ms=20, on_change=changes.append, push=True
    )
    subscription.mount()
    try:
        await wait_for(lambda: len(changes) >= 3)

        assert subscription.mode is SubscriptionMode.LIVE
        assert bridge.listener_count == 1
        assert collector.is_running
    finally:
        subscription.unmount()

    assert bridge.listener_count == 0
    assert not collector.is_running


@pytest.mark.asyncio
async def test_push_requested_without_support_polls():
    """Test push=True falls back to polling when the capability cannot push."""
    capability = FakeCapability()
    subscription = SystemInfoSubscription(capability, interval_ms=20, push=True)
    subscription.mount()
    try:
        await wait_for(lambda: capability.calls >= 2)
        assert subscription.mode is SubscriptionMode.LIVE
    finally:
        subscription.unmount()


@pytest.mark.asyncio
async def test_custom_synthetic_generator():
    """Test the synthetic factory can be substituted deterministically."""
    rng = random.Random(7)
    subscription = SystemInfoSubscription(
        None, interval_ms=20, synthetic=lambda: generate_synthetic_snapshot(rng)
    )
    subscription.mount()
    try:
        await wait_for(lambda: subscription.snapshot is not None)
        assert subscription.mode is SubscriptionMode.SYNTHETIC
    finally:
        subscription.unmount()
