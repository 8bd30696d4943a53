"""Outcome recording and the in-memory execution store."""

from agentic_defi.outcomes.recorder import OutcomeRecorder
from agentic_defi.outcomes.store import ExecutionRecord, InMemoryExecutionStore

__all__ = ["ExecutionRecord", "InMemoryExecutionStore", "OutcomeRecorder"]
