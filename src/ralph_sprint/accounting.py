# ABOUTME: Context consumption accounting for a single worker execution
# ABOUTME: Byte counters from the event stream, token estimate, and health bands

"""Resource accounting.

The worker does not report token usage, so consumption is estimated from
the bytes that flow through its context: files read and written, its own
text output and shell output, plus a fixed baseline for the instruction
payload. Four bytes count as one unit.
"""

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger("ralph.accounting")

BYTES_PER_UNIT = 4
BYTES_PER_LINE = 30
DEFAULT_BASELINE = 3000
DEFAULT_THRESHOLD = 80000


class ResourceStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Ledger:
    bytes_read: int = 0
    bytes_written: int = 0
    worker_text: int = 0
    shell_output: int = 0
    baseline: int = DEFAULT_BASELINE

    @property
    def total_bytes(self) -> int:
        return (
            self.baseline
            + self.bytes_read
            + self.bytes_written
            + self.worker_text
            + self.shell_output
        )

    def estimate(self) -> int:
        return self.total_bytes // BYTES_PER_UNIT

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ledger":
        values = {}
        for key in ("bytes_read", "bytes_written", "worker_text", "shell_output", "baseline"):
            if key in data:
                values[key] = int(data[key])
        return cls(**values)


class ResourceAccountant:
    """Sole writer of the ledger for the current worker context."""

    WARNING_RATIO = 0.80
    CRITICAL_RATIO = 0.95

    def __init__(
        self,
        threshold: int = DEFAULT_THRESHOLD,
        baseline: int = DEFAULT_BASELINE,
        store=None,
    ):
        self.threshold = threshold
        self.baseline = baseline
        self.store = store
        self.ledger = Ledger(baseline=baseline)

    def record_read(self, n: int, lines: int = 0) -> int:
        """Count a file read. Zero-size reads fall back to ``lines * 30``."""
        size = n if n > 0 else lines * BYTES_PER_LINE
        self.ledger.bytes_read += size
        return size

    def record_write(self, n: int, lines: int = 0) -> int:
        """Count a file write. Zero-size writes fall back to ``lines * 30``."""
        size = n if n > 0 else lines * BYTES_PER_LINE
        self.ledger.bytes_written += size
        return size

    def record_worker_text(self, n: int) -> None:
        self.ledger.worker_text += max(n, 0)

    def record_shell_output(self, n: int) -> None:
        self.ledger.shell_output += max(n, 0)

    def estimate(self) -> int:
        return self.ledger.estimate()

    def percent(self) -> float:
        if self.threshold <= 0:
            return 0.0
        return self.estimate() * 100.0 / self.threshold

    def status(self) -> ResourceStatus:
        estimate = self.estimate()
        if estimate >= self.threshold * self.CRITICAL_RATIO:
            return ResourceStatus.CRITICAL
        if estimate >= self.threshold * self.WARNING_RATIO:
            return ResourceStatus.WARNING
        return ResourceStatus.HEALTHY

    def reset_for_new_context(self) -> None:
        """Zero all counters and restore the baseline."""
        logger.debug(f"Ledger reset (previous estimate ~{self.estimate()} tokens)")
        self.ledger = Ledger(baseline=self.baseline)

    def flush(self) -> None:
        if self.store is not None:
            self.store.write_ledger(self.ledger)

    def breakdown(self) -> str:
        ledger = self.ledger
        return (
            f"[read:{ledger.bytes_read // 1024}KB "
            f"write:{ledger.bytes_written // 1024}KB "
            f"assist:{ledger.worker_text // 1024}KB "
            f"shell:{ledger.shell_output // 1024}KB]"
        )

    def summary(self, label: Optional[str] = None) -> str:
        prefix = f"{label}: " if label else ""
        return f"{prefix}~{self.estimate()} tokens ({self.percent():.0f}%) {self.breakdown()}"
