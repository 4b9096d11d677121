"""Synthetic telemetry for running without a live collector."""

import random
import time

from sysdash.models import (
    CpuCoreInfo,
    CpuInfo,
    DiskInfo,
    GpuInfo,
    MemoryInfo,
    NetworkInfo,
    ProcessMemoryInfo,
    SystemSnapshot,
)

GIB = 1024**3
MIB = 1024**2

PROCESS_NAMES = ("Chrome", "VSCode", "Python", "Node.js", "Firefox")


def generate_synthetic_snapshot(rng: random.Random | None = None) -> SystemSnapshot:
    """
    Generate a plausible randomized snapshot.

    Used by the display when no privileged collector is reachable, e.g. in
    demo or preview mode. Pass a seeded Random for reproducible output.
    """
    rng = rng or random.Random()

    memory_total = 16 * GIB
    memory_used = int(memory_total * rng.uniform(0.40, 0.70))
    swap_total = 4 * GIB
    swap_used = swap_total // 10

    cores = tuple(CpuCoreInfo(core=i, load=rng.uniform(15, 75)) for i in range(8))

    gpu_total = 16 * GIB
    gpu_used = int(gpu_total * rng.uniform(0.3, 0.7))

    disk_size = 1024 * GIB

    processes = tuple(
        ProcessMemoryInfo(
            pid=1000 + i,
            name=name,
            mem=int((2 - i * 0.3) * GIB),
            mem_percentage=(12 - i * 2) + rng.uniform(0, 3),
        )
        for i, name in enumerate(PROCESS_NAMES)
    )

    return SystemSnapshot(
        memory=MemoryInfo(
            total=memory_total,
            used=memory_used,
            free=memory_total - memory_used,
            available=memory_total - memory_used,
            swap_total=swap_total,
            swap_used=swap_used,
            swap_free=swap_total - swap_used,
        ),
        cpu=CpuInfo(
            current_load=rng.uniform(20, 70),
            cores=8,
            threads=16,
            model="Synthetic CPU (demo mode)",
            speed=3.6,
            temperature=rng.uniform(45, 60),
        ),
        cpu_cores=cores,
        gpu=(
            GpuInfo(
                model="Synthetic GPU (demo mode)",
                vendor="Synthetic",
                memory_total=gpu_total,
                memory_used=gpu_used,
                memory_free=gpu_total - gpu_used,
                utilization_gpu=rng.uniform(30, 80),
                utilization_memory=rng.uniform(25, 65),
                temperature=rng.uniform(55, 70),
            ),
        ),
        disk=DiskInfo(
            size=disk_size,
            used=disk_size // 2,
            available=disk_size // 2,
            fs="ext4",
            mount="/",
        ),
        network=NetworkInfo(
            interface="eth0",
            tx_sec=rng.uniform(0, 5 * MIB),
            rx_sec=rng.uniform(0, 10 * MIB),
            total_sent=int(2.5 * GIB) + rng.randrange(MIB),
            total_received=int(8.3 * GIB) + rng.randrange(MIB),
            speed=1000.0,
            ip4="192.168.1.100",
            ip6="fe80::1",
            mac="aa:bb:cc:dd:ee:ff",
            operstate="up",
        ),
        top_processes=processes,
        timestamp=time.time() * 1000,
    )
