"""Violation persistence."""

from fencewatch.store.base import MarkSentResult, ViolationStore
from fencewatch.store.memory import MemoryViolationStore

__all__ = ["MarkSentResult", "MemoryViolationStore", "ViolationStore"]
