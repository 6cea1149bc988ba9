"""
monitoring/capture_report.py - Capture health summary.

Built from store contents only:
- scan progress per chain (last contiguously committed height)
- row counts per table
- failure histogram by error code
- number of audited overwrites (non-zero means a rescan saw different data)
"""

from dataclasses import dataclass, field
from typing import Any

from core.logging import get_logger
from store.sqlite import EventStore

logger = get_logger("monitoring.capture_report")


@dataclass
class CaptureSummary:
    progress: dict[str, int] = field(default_factory=dict)
    table_counts: dict[str, int] = field(default_factory=dict)
    failures_by_code: dict[str, int] = field(default_factory=dict)

    @property
    def overwrites(self) -> int:
        return self.table_counts.get("row_overwrites", 0)

    @property
    def healthy(self) -> bool:
        """No audited overwrites. Rejected events alone do not make a capture unhealthy."""
        return self.overwrites == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "progress": dict(self.progress),
            "table_counts": dict(self.table_counts),
            "failures_by_code": dict(self.failures_by_code),
            "overwrites": self.overwrites,
            "healthy": self.healthy,
        }


def build_capture_summary(store: EventStore) -> CaptureSummary:
    summary = CaptureSummary(
        progress=store.all_scan_progress(),
        table_counts=store.table_counts(),
        failures_by_code=store.failure_histogram(),
    )
    if not summary.healthy:
        logger.warning(
            f"{summary.overwrites} rows were overwritten with different values",
            extra={"context": {"overwrites": summary.overwrites}},
        )
    return summary
