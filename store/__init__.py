"""Persistent keyed event store."""

from store.sqlite import EventStore

__all__ = ["EventStore"]
