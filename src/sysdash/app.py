"""sysdash - Main Textual application."""

import logging
from collections import deque
from collections.abc import Sequence
from enum import Enum

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Header, Sparkline, Static

from sysdash.bridge import MonitoringPolicy, SystemBridge
from sysdash.collector import SystemCollector
from sysdash.config import MonitorConfig
from sysdash.display import SubscriptionMode, SystemInfoSubscription
from sysdash.models import ProcessMemoryInfo, SystemSnapshot

HISTORY_LENGTH = 60


class SortKey(Enum):
    """Sort keys for the process table."""

    MEM = "mem"
    PID = "pid"
    NAME = "name"


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def _bar(percent: float, color: str, width: int = 20) -> str:
    filled = min(width, max(0, int(percent / (100 / width))))
    return f"[{color}]█[/{color}]" * filled + "[dim]░[/dim]" * (width - filled)


class HeaderStats(Static):
    """Header widget showing CPU, memory, disk, network and GPU statistics."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._snapshot: SystemSnapshot | None = None

    @property
    def snapshot(self) -> SystemSnapshot | None:
        return self._snapshot

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_cpu_info(), id="cpu-info"),
            Static(self._get_mem_info(), id="mem-info"),
        )

    def update_stats(self, snapshot: SystemSnapshot) -> None:
        """Update the statistics from a system snapshot."""
        self._snapshot = snapshot
        self._refresh_display()

    def _refresh_display(self) -> None:
        """Refresh the display with current data."""
        if not self.is_mounted:
            return
        self.query_one("#cpu-info", Static).update(self._get_cpu_info())
        self.query_one("#mem-info", Static).update(self._get_mem_info())

    def _get_cpu_info(self) -> str:
        """Get CPU info display."""
        snapshot = self._snapshot
        if snapshot is None:
            return "Loading CPU info..."

        cpu = snapshot.cpu
        title = escape(cpu.model or "CPU")
        extras = []
        if cpu.speed is not None:
            extras.append(f"{cpu.speed:.2f}GHz")
        if cpu.temperature is not None:
            extras.append(f"{cpu.temperature:.0f}°C")
        if extras:
            title = f"{title} ({', '.join(extras)})"

        # Use escaped brackets for the bar containers
        lines = [title, f"All   \\[{_bar(cpu.current_load, 'green')}] {cpu.current_load:5.1f}%"]
        for core in snapshot.cpu_cores or ():
            lines.append(f"CPU{core.core:<2} \\[{_bar(core.load, 'green')}] {core.load:5.1f}%")
        return "\n".join(lines)

    def _get_mem_info(self) -> str:
        """Get memory, disk, network and GPU display."""
        snapshot = self._snapshot
        if snapshot is None:
            return "Loading memory info..."

        mem = snapshot.memory
        swap_percent = mem.swap_used / mem.swap_total * 100 if mem.swap_total > 0 else 0.0
        lines = [
            f"Mem \\[{_bar(mem.used_percentage, 'cyan')}] "
            f"{mem.used / 1024**3:.1f}G/{mem.total / 1024**3:.1f}G",
            f"Swp \\[{_bar(swap_percent, 'yellow')}] "
            f"{mem.swap_used / 1024**3:.1f}G/{mem.swap_total / 1024**3:.1f}G",
        ]

        disk = snapshot.disk
        if disk is not None:
            lines.append(
                f"Dsk \\[{_bar(disk.used_percentage, 'magenta')}] "
                f"{disk.used / 1024**3:.1f}G/{disk.size / 1024**3:.1f}G {disk.mount}"
            )

        net = snapshot.network
        if net is not None:
            lines.append(
                f"Net {escape(net.interface)} ({net.operstate}): "
                f"↑{format_bytes(net.tx_sec).strip()}/s ↓{format_bytes(net.rx_sec).strip()}/s"
            )

        for gpu in snapshot.gpu or ():
            temp = f" {gpu.temperature:.0f}°C" if gpu.temperature is not None else ""
            lines.append(
                f"GPU \\[{_bar(gpu.utilization_gpu, 'red')}] {gpu.utilization_gpu:5.1f}% "
                f"{escape(gpu.model)}{temp}"
            )
        return "\n".join(lines)


class HistoryPanel(Container):
    """Rolling CPU, memory and GPU utilization history as sparklines."""

    DEFAULT_CSS = """
    HistoryPanel {
        height: auto;
        padding: 0 1;
    }

    HistoryPanel Horizontal {
        height: 1;
    }

    HistoryPanel .history-label {
        width: 5;
    }

    HistoryPanel Sparkline {
        width: 1fr;
    }
    """

    SERIES = ("cpu", "mem", "gpu")

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._history: dict[str, deque[float]] = {
            name: deque(maxlen=HISTORY_LENGTH) for name in self.SERIES
        }

    @property
    def history(self) -> dict[str, list[float]]:
        """Get a copy of each series, oldest sample first."""
        return {name: list(samples) for name, samples in self._history.items()}

    def compose(self) -> ComposeResult:
        for name in self.SERIES:
            yield Horizontal(
                Static(name.upper(), classes="history-label"),
                Sparkline([], summary_function=max, id=f"{name}-history"),
            )

    def record(self, snapshot: SystemSnapshot) -> None:
        """Append one sample per series; GPU only when the host has one."""
        self._history["cpu"].append(snapshot.cpu.current_load)
        self._history["mem"].append(snapshot.memory.used_percentage)
        if snapshot.gpu:
            self._history["gpu"].append(snapshot.gpu[0].utilization_gpu)
        if not self.is_mounted:
            return
        for name, samples in self._history.items():
            self.query_one(f"#{name}-history", Sparkline).data = list(samples)


class ProcessTable(Container):
    """Container for the top-process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._sort_key: SortKey = SortKey.MEM
        self._sort_reverse: bool = True  # Default: descending for MEM

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        self._sort_key = keys[(current_index + 1) % len(keys)]
        self._sort_reverse = self._sort_key is SortKey.MEM
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("RES", key="rss", width=8)
        table.add_column("Name", key="name")

    def update_processes(self, processes: Sequence[ProcessMemoryInfo]) -> None:
        """
        Replace the table contents with the given processes.

        Snapshots are full replacements, so the rows are rebuilt in sorted
        order every time.
        """
        table = self.query_one("#process-table", DataTable)
        table.clear()

        for proc in self._sort_processes(processes):
            table.add_row(
                str(proc.pid),
                f"{proc.mem_percentage:5.1f}",
                format_bytes(proc.mem),
                escape(proc.name[:50]),
                key=str(proc.pid),
            )

    def _sort_processes(self, processes: Sequence[ProcessMemoryInfo]) -> list[ProcessMemoryInfo]:
        """Sort processes based on the current sort key."""
        key_func = {
            SortKey.MEM: lambda p: p.mem,
            SortKey.PID: lambda p: p.pid,
            SortKey.NAME: lambda p: p.name.lower(),
        }
        # Duplicate pids can show up while a process is being replaced
        unique = {proc.pid: proc for proc in processes}.values()
        return sorted(unique, key=key_func[self._sort_key], reverse=self._sort_reverse)


class SysdashApp(App):
    """Main sysdash application."""

    TITLE = "sysdash"
    SUB_TITLE = "Loading..."

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
        padding-right: 2;
    }

    #mem-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(self, config: MonitorConfig | None = None) -> None:
        """Initialize the SysdashApp."""
        super().__init__()
        self._monitor_config = config or MonitorConfig()
        self._bridge: SystemBridge | None = None
        if not self._monitor_config.demo:
            collector = SystemCollector(top_process_count=self._monitor_config.top_process_count)
            self._bridge = SystemBridge(
                collector,
                policy=self._monitor_config.policy,
                interval_ms=self._monitor_config.interval_ms,
            )
        self._subscription = SystemInfoSubscription(
            self._bridge,
            interval_ms=self._monitor_config.interval_ms,
            on_change=self._on_system_info,
            push=True,
        )

    @property
    def subscription(self) -> SystemInfoSubscription:
        return self._subscription

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Header()
        yield HeaderStats(id="header-stats")
        yield HistoryPanel(id="history")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the telemetry subscription when the app is mounted."""
        if self._bridge is not None and self._bridge.policy is MonitoringPolicy.EXPLICIT:
            self._bridge.start_monitoring()
        self._subscription.mount()

    def on_unmount(self) -> None:
        self._stop_telemetry()

    def _stop_telemetry(self) -> None:
        self._subscription.unmount()
        if self._bridge is not None:
            self._bridge.close()

    def _on_system_info(self, subscription: SystemInfoSubscription) -> None:
        """Update the UI with the subscription's current state."""
        if subscription.error is not None:
            self.sub_title = subscription.error
            return

        snapshot = subscription.snapshot
        if snapshot is None:
            return
        if subscription.mode is SubscriptionMode.SYNTHETIC:
            self.sub_title = "Demo (synthetic data)"
        else:
            self.sub_title = "Live"

        self.query_one("#header-stats", HeaderStats).update_stats(snapshot)
        self.query_one(HistoryPanel).record(snapshot)
        self.query_one(ProcessTable).update_processes(snapshot.top_processes or ())

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        process_table = self.query_one(ProcessTable)
        new_sort_key = process_table.cycle_sort()
        snapshot = self._subscription.snapshot
        if snapshot is not None:
            process_table.update_processes(snapshot.top_processes or ())
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._stop_telemetry()
        self.exit()


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for sysdash application."""
    config = MonitorConfig.from_args(argv)
    logging.basicConfig(
        level=config.log_level,
        format="%(levelname)s %(name)s: %(message)s",
        handlers=[TextualHandler()],
    )
    app = SysdashApp(config)
    app.run()


if __name__ == "__main__":
    main()
