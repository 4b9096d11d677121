"""OS metric sources backed by psutil."""

import logging
import platform
import socket
import subprocess
import time
from typing import Protocol

import psutil

from sysdash.models import (
    CpuCoreInfo,
    DiskInfo,
    GpuInfo,
    MemoryInfo,
    NetworkInfo,
    ProcessMemoryInfo,
)

logger = logging.getLogger(__name__)

# Sensor chips that report the CPU package temperature, in preference order
CPU_SENSOR_NAMES = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "cpu-thermal", "acpitz")

NVIDIA_SMI_QUERY = (
    "name,memory.total,memory.used,memory.free,"
    "utilization.gpu,utilization.memory,temperature.gpu"
)


class MetricSource(Protocol):
    """Host metric queries used by the collector.

    Every method is blocking; the collector runs them in worker threads.
    """

    def memory(self) -> MemoryInfo: ...

    def cpu_load(self) -> tuple[float, list[CpuCoreInfo]]: ...

    def cpu_details(self) -> tuple[str | None, float | None]: ...

    def disk(self) -> DiskInfo | None: ...

    def temperature(self) -> float | None: ...

    def gpus(self) -> list[GpuInfo]: ...

    def network(self) -> NetworkInfo | None: ...

    def top_processes(self, limit: int) -> list[ProcessMemoryInfo]: ...


def _not_supported(value: str) -> bool:
    return not value or value.startswith("[") or value in ("N/A", "Not Supported")


class PsutilSource:
    """
    Metric source that reads the local host through psutil.

    Keeps the previous network counters so that per-second rates can be
    derived on the next sample.
    """

    def __init__(self) -> None:
        """Initialize the source and prime psutil's CPU counters."""
        self._prev_net: tuple[str, float, int, int] | None = None
        self._cpu_model: str | None = None
        # First call returns 0.0 for every core
        psutil.cpu_percent(percpu=True)

    def memory(self) -> MemoryInfo:
        mem = psutil.virtual_memory()
        swap = psutil.swap_memory()
        return MemoryInfo(
            total=mem.total,
            used=mem.used,
            free=mem.free,
            available=mem.available,
            swap_total=swap.total,
            swap_used=swap.used,
            swap_free=swap.free,
        )

    def cpu_load(self) -> tuple[float, list[CpuCoreInfo]]:
        """Return the aggregate load and the per-core loads from one sample."""
        per_core = psutil.cpu_percent(percpu=True)
        cores = [CpuCoreInfo(core=i, load=float(load)) for i, load in enumerate(per_core)]
        aggregate = sum(per_core) / len(per_core) if per_core else 0.0
        return aggregate, cores

    def cpu_details(self) -> tuple[str | None, float | None]:
        """Return the CPU model name and current clock in GHz."""
        if self._cpu_model is None:
            self._cpu_model = _read_cpu_model()
        freq = psutil.cpu_freq()
        speed = round(freq.current / 1000, 2) if freq and freq.current else None
        return self._cpu_model or None, speed

    def disk(self) -> DiskInfo | None:
        """Return usage of the first partition the host enumerates."""
        partitions = psutil.disk_partitions(all=False)
        if not partitions:
            return None
        primary = partitions[0]
        usage = psutil.disk_usage(primary.mountpoint)
        return DiskInfo(
            size=usage.total,
            used=usage.used,
            available=usage.free,
            fs=primary.fstype,
            mount=primary.mountpoint,
        )

    def temperature(self) -> float | None:
        """Return the CPU package temperature, or None without a sensor."""
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            return None
        readings = sensors()
        if not readings:
            return None
        name = next((n for n in CPU_SENSOR_NAMES if n in readings), next(iter(readings)))
        for entry in readings[name]:
            if entry.current and entry.current > 0:
                return float(entry.current)
        return None

    def gpus(self) -> list[GpuInfo]:
        """Query NVIDIA GPUs through nvidia-smi; empty when unavailable."""
        cmd = ["nvidia-smi", f"--query-gpu={NVIDIA_SMI_QUERY}", "--format=csv,noheader,nounits"]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.SubprocessError):
            return []
        if result.returncode != 0:
            return []

        gpus: list[GpuInfo] = []
        for line in result.stdout.strip().splitlines():
            parts = [part.strip() for part in line.split(",")]
            if len(parts) < 7:
                continue
            try:
                gpus.append(
                    GpuInfo(
                        model=parts[0],
                        vendor="NVIDIA",
                        # MiB to bytes
                        memory_total=int(float(parts[1])) * 1024 * 1024,
                        memory_used=int(float(parts[2])) * 1024 * 1024,
                        memory_free=int(float(parts[3])) * 1024 * 1024,
                        utilization_gpu=0.0 if _not_supported(parts[4]) else float(parts[4]),
                        utilization_memory=0.0 if _not_supported(parts[5]) else float(parts[5]),
                        temperature=None if _not_supported(parts[6]) else float(parts[6]),
                    )
                )
            except ValueError:
                logger.debug("Skipping unparsable nvidia-smi line: %r", line)
        return gpus

    def network(self) -> NetworkInfo | None:
        """Return the primary interface: the first one up that is not loopback."""
        stats = psutil.net_if_stats()
        counters = psutil.net_io_counters(pernic=True)
        addrs = psutil.net_if_addrs()

        name = next(
            (
                nic
                for nic, nic_stats in stats.items()
                if nic_stats.isup and nic in counters and not _is_loopback(nic, addrs)
            ),
            None,
        )
        if name is None:
            return None

        io = counters[name]
        now = time.monotonic()
        tx_sec = rx_sec = 0.0
        if self._prev_net is not None and self._prev_net[0] == name:
            _, prev_time, prev_sent, prev_recv = self._prev_net
            elapsed = now - prev_time
            if elapsed > 0:
                tx_sec = max(0.0, (io.bytes_sent - prev_sent) / elapsed)
                rx_sec = max(0.0, (io.bytes_recv - prev_recv) / elapsed)
        self._prev_net = (name, now, io.bytes_sent, io.bytes_recv)

        ip4 = ip6 = mac = None
        for addr in addrs.get(name, []):
            if addr.family == socket.AF_INET and ip4 is None:
                ip4 = addr.address
            elif addr.family == socket.AF_INET6 and ip6 is None:
                ip6 = addr.address
            elif addr.family == psutil.AF_LINK and mac is None:
                mac = addr.address

        nic_stats = stats[name]
        return NetworkInfo(
            interface=name,
            tx_sec=tx_sec,
            rx_sec=rx_sec,
            total_sent=io.bytes_sent,
            total_received=io.bytes_recv,
            speed=float(nic_stats.speed) if nic_stats.speed else None,
            ip4=ip4,
            ip6=ip6,
            mac=mac,
            operstate="up" if nic_stats.isup else "down",
        )

    def top_processes(self, limit: int) -> list[ProcessMemoryInfo]:
        """
        Return the processes using the most resident memory.

        Handles NoSuchProcess, AccessDenied and ZombieProcess by skipping the
        process.
        """
        processes: list[ProcessMemoryInfo] = []
        for proc in psutil.process_iter(attrs=["pid", "name", "memory_info", "memory_percent"]):
            try:
                info = proc.info
                mem_info = info.get("memory_info")
                processes.append(
                    ProcessMemoryInfo(
                        pid=info.get("pid", 0),
                        name=info.get("name") or "",
                        mem=mem_info.rss if mem_info else 0,
                        mem_percentage=info.get("memory_percent") or 0.0,
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        processes.sort(key=lambda p: p.mem, reverse=True)
        return processes[:limit]


def _is_loopback(name: str, addrs: dict) -> bool:
    if name == "lo" or name.startswith("lo:"):
        return True
    return any(
        addr.family == socket.AF_INET and addr.address.startswith("127.")
        for addr in addrs.get(name, [])
    )


def _read_cpu_model() -> str:
    try:
        with open("/proc/cpuinfo", encoding="utf-8") as cpuinfo:
            for line in cpuinfo:
                if line.startswith("model name"):
                    return line.split(":", 1)[1].strip()
    except OSError:
        pass
    return platform.processor()
