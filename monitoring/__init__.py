# PATH: monitoring/__init__.py
"""
Monitoring package: capture health derived from the event store.
"""

from monitoring.capture_report import CaptureSummary, build_capture_summary

__all__ = [
    "CaptureSummary",
    "build_capture_summary",
]
