"""Offline correlation of captured events and NDJSON export."""

from correlator.correlator import Correlator, confirmation
from correlator.export import write_ndjson

__all__ = ["Correlator", "confirmation", "write_ndjson"]
