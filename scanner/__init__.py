"""Block range scanner."""

from scanner.cursor import CommitCursor, partition_heights, worker_heights
from scanner.extract import ExtractionStats, extract_block
from scanner.runner import BlockScanner, ScanOptions, ScanResult

__all__ = [
    "BlockScanner",
    "CommitCursor",
    "ExtractionStats",
    "ScanOptions",
    "ScanResult",
    "extract_block",
    "partition_heights",
    "worker_heights",
]
