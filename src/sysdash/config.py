"""Runtime configuration for sysdash."""

import argparse
from collections.abc import Sequence
from dataclasses import dataclass

from sysdash.bridge import MonitoringPolicy
from sysdash.collector import DEFAULT_INTERVAL_MS

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class MonitorConfig:
    """Main configuration class."""

    interval_ms: int = DEFAULT_INTERVAL_MS
    top_process_count: int = 5
    demo: bool = False
    policy: MonitoringPolicy = MonitoringPolicy.ON_SUBSCRIBE
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        """Fix invalid values."""
        if self.interval_ms < 100:
            self.interval_ms = 100
        if self.top_process_count < 0:
            self.top_process_count = 0
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            self.log_level = "WARNING"

    @classmethod
    def from_args(cls, argv: Sequence[str] | None = None) -> "MonitorConfig":
        """Build a configuration from command line arguments."""
        parser = argparse.ArgumentParser(prog="sysdash", description="System monitoring dashboard")
        parser.add_argument(
            "--interval",
            type=int,
            default=DEFAULT_INTERVAL_MS,
            help="refresh interval in milliseconds (default: %(default)s)",
        )
        parser.add_argument(
            "--top",
            type=int,
            default=5,
            help="number of processes to list by memory (default: %(default)s)",
        )
        parser.add_argument(
            "--demo",
            action="store_true",
            help="show synthetic data instead of querying the host",
        )
        parser.add_argument(
            "--policy",
            choices=[policy.value for policy in MonitoringPolicy],
            default=MonitoringPolicy.ON_SUBSCRIBE.value,
            help="what starts the polling loop (default: %(default)s)",
        )
        parser.add_argument("--log-level", default="WARNING", type=str.upper, choices=LOG_LEVELS)
        args = parser.parse_args(argv)
        return cls(
            interval_ms=args.interval,
            top_process_count=args.top,
            demo=args.demo,
            policy=MonitoringPolicy(args.policy),
            log_level=args.log_level,
        )
