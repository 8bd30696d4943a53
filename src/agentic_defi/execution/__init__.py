"""Execution layer: planner, step executor and signing watcher."""

from agentic_defi.execution.executor import StepExecutor
from agentic_defi.execution.planner import ExecutionPlanner
from agentic_defi.execution.quotes import HttpQuoteService
from agentic_defi.execution.signing import ExecutionSigningWatcher

__all__ = [
    "ExecutionPlanner",
    "ExecutionSigningWatcher",
    "HttpQuoteService",
    "StepExecutor",
]
