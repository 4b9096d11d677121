"""Data models for sysdash."""

from dataclasses import asdict, dataclass
from typing import Any


def _percentage(part: float, whole: float) -> float:
    """Return part/whole as a percentage clamped to [0, 100]; 0 when whole is 0."""
    if whole <= 0:
        return 0.0
    return min(100.0, max(0.0, part / whole * 100))


@dataclass(slots=True, frozen=True)
class MemoryInfo:
    """Physical and swap memory, in bytes."""

    total: int
    used: int
    free: int
    available: int
    swap_total: int
    swap_used: int
    swap_free: int

    @property
    def used_percentage(self) -> float:
        """Used memory as a percentage of total."""
        return _percentage(self.used, self.total)


@dataclass(slots=True, frozen=True)
class CpuInfo:
    """Aggregate CPU state."""

    current_load: float  # 0.0 - 100.0
    cores: int
    threads: int
    model: str | None = None
    speed: float | None = None  # GHz
    temperature: float | None = None  # Celsius


@dataclass(slots=True, frozen=True)
class CpuCoreInfo:
    """Load of one logical core."""

    core: int
    load: float


@dataclass(slots=True, frozen=True)
class GpuInfo:
    """Immutable snapshot of a GPU."""

    model: str
    vendor: str
    memory_total: int
    memory_used: int
    memory_free: int
    utilization_gpu: float
    utilization_memory: float
    temperature: float | None = None


@dataclass(slots=True, frozen=True)
class DiskInfo:
    """Usage of the primary volume, in bytes."""

    size: int
    used: int
    available: int
    fs: str
    mount: str

    @property
    def used_percentage(self) -> float:
        """Used space as a percentage of the volume size."""
        return _percentage(self.used, self.size)


@dataclass(slots=True, frozen=True)
class NetworkInfo:
    """Primary network interface state."""

    interface: str
    tx_sec: float  # Bytes per second
    rx_sec: float
    total_sent: int
    total_received: int
    speed: float | None = None  # Mbit/s
    ip4: str | None = None
    ip6: str | None = None
    mac: str | None = None
    operstate: str = "unknown"


@dataclass(slots=True, frozen=True)
class ProcessMemoryInfo:
    """Memory footprint of a single process."""

    pid: int
    name: str
    mem: int  # Resident bytes
    mem_percentage: float


@dataclass(slots=True, frozen=True)
class SystemSnapshot:
    """
    Immutable point-in-time telemetry record.

    Optional fields are None when the metric cannot be obtained on the
    current host. They are never zero-filled.
    """

    memory: MemoryInfo
    cpu: CpuInfo
    timestamp: float  # Epoch milliseconds
    cpu_cores: tuple[CpuCoreInfo, ...] | None = None
    gpu: tuple[GpuInfo, ...] | None = None
    disk: DiskInfo | None = None
    network: NetworkInfo | None = None
    top_processes: tuple[ProcessMemoryInfo, ...] | None = None

    @classmethod
    def zeroed(cls, timestamp: float) -> "SystemSnapshot":
        """Build the fallback snapshot used when gathering fails."""
        return cls(
            memory=MemoryInfo(
                total=0,
                used=0,
                free=0,
                available=0,
                swap_total=0,
                swap_used=0,
                swap_free=0,
            ),
            cpu=CpuInfo(current_load=0.0, cores=0, threads=0),
            timestamp=timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Render the snapshot as plain data for consumers outside Python.

        Absent optional fields are omitted rather than emitted as null, and
        derived percentages are included.
        """
        result: dict[str, Any] = {
            "memory": asdict(self.memory),
            "cpu": _drop_none(asdict(self.cpu)),
            "timestamp": self.timestamp,
        }
        result["memory"]["used_percentage"] = self.memory.used_percentage
        if self.cpu_cores is not None:
            result["cpu_cores"] = [asdict(core) for core in self.cpu_cores]
        if self.gpu is not None:
            result["gpu"] = [_drop_none(asdict(gpu)) for gpu in self.gpu]
        if self.disk is not None:
            result["disk"] = asdict(self.disk)
            result["disk"]["used_percentage"] = self.disk.used_percentage
        if self.network is not None:
            result["network"] = _drop_none(asdict(self.network))
        if self.top_processes is not None:
            result["top_processes"] = [asdict(proc) for proc in self.top_processes]
        return result


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}
