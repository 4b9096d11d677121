"""Shared fixtures and fakes for sysdash tests."""

import asyncio
import threading
import time

import pytest
import pytest_asyncio

from sysdash.collector import SystemCollector
from sysdash.models import CpuCoreInfo, DiskInfo, MemoryInfo, ProcessMemoryInfo

GIB = 1024**3


class FakeSource:
    """Deterministic metric source; set fail/slow flags to simulate trouble."""

    def __init__(
        self,
        total: int = 17179869184,
        used: int = 8589934592,
        temperature: float | None = 55.0,
    ) -> None:
        self.total = total
        self.used = used
        self._temperature = temperature
        self.fail_memory = False
        self.fail_temperature = False
        self.fail_next = 0  # Number of upcoming memory() calls that raise
        self.delay = 0.0
        self.memory_calls = 0
        self.completed = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def memory(self) -> MemoryInfo:
        with self._lock:
            self.memory_calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            failing = self.fail_memory or self.fail_next > 0
            if self.fail_next > 0:
                self.fail_next -= 1
        try:
            if self.delay:
                time.sleep(self.delay)
            if failing:
                raise RuntimeError("memory source exploded")
            return MemoryInfo(
                total=self.total,
                used=self.used,
                free=self.total - self.used,
                available=self.total - self.used,
                swap_total=4 * GIB,
                swap_used=0,
                swap_free=4 * GIB,
            )
        finally:
            with self._lock:
                self.in_flight -= 1
                self.completed += 1

    def cpu_load(self) -> tuple[float, list[CpuCoreInfo]]:
        return 25.0, [CpuCoreInfo(core=i, load=10.0 * (i + 1)) for i in range(4)]

    def cpu_details(self) -> tuple[str | None, float | None]:
        return "Fake CPU", 3.2

    def disk(self) -> DiskInfo | None:
        return DiskInfo(size=512 * GIB, used=128 * GIB, available=384 * GIB, fs="ext4", mount="/")

    def temperature(self) -> float | None:
        if self.fail_temperature:
            raise OSError("no sensors")
        return self._temperature

    def gpus(self) -> list:
        return []

    def network(self):
        return None

    def top_processes(self, limit: int) -> list[ProcessMemoryInfo]:
        procs = [
            ProcessMemoryInfo(pid=10, name="big", mem=3 * GIB, mem_percentage=18.75),
            ProcessMemoryInfo(pid=20, name="small", mem=GIB, mem_percentage=6.25),
        ]
        return procs[:limit]


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Wait until predicate() is true or fail after timeout seconds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Timed out waiting for condition")
        await asyncio.sleep(0.005)


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest_asyncio.fixture
async def collector(source: FakeSource):
    collector = SystemCollector(source)
    yield collector
    collector.destroy()
