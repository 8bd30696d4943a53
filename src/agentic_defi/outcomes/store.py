"""In-memory execution store.

Stands in for the backend's strategy-execution table.  A scheduled
execution is created ``awaiting_approval``; the user approves it
(``executing``, which makes it ready to sign) or skips it
(``cancelled``).  :meth:`complete` and :meth:`fail` close the record
from whatever state it is in.  Every change appends to the record's
state history.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from agentic_defi.core.clock import IClock, WallClock
from agentic_defi.core.enums import BackendExecutionState
from agentic_defi.core.errors import ExecutionNotFoundError, InvalidExecutionStateError
from agentic_defi.core.ids import new_id

logger = logging.getLogger(__name__)

B = BackendExecutionState


class StateChange(BaseModel):
    from_state: Optional[BackendExecutionState] = None
    to_state: BackendExecutionState
    trigger: str
    reason: Optional[str] = None
    error_code: Optional[str] = None
    timestamp: datetime


class ExecutionRecord(BaseModel):
    """One execution attempt of a strategy, as the backend holds it."""

    execution_id: str = Field(default_factory=new_id)
    strategy_id: str
    strategy_type: str
    config: dict[str, Any] = Field(default_factory=dict)
    wallet_address: str
    session_id: Optional[str] = None

    state: BackendExecutionState = B.AWAITING_APPROVAL
    state_entered_at: Optional[datetime] = None
    approval_reason: Optional[str] = None
    approved_by: Optional[str] = None

    tx_hash: Optional[str] = None
    output_data: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    recoverable: bool = True

    history: list[StateChange] = Field(default_factory=list)


class InMemoryExecutionStore:
    """Execution records keyed by execution ID."""

    def __init__(self, clock: IClock | None = None) -> None:
        self._clock = clock or WallClock()
        self._records: dict[str, ExecutionRecord] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Creation & approval
    # ------------------------------------------------------------------

    async def create_pending(
        self,
        strategy_id: str,
        strategy_type: str,
        config: dict[str, Any],
        wallet_address: str,
        *,
        session_id: str | None = None,
        approval_reason: str | None = None,
    ) -> ExecutionRecord:
        now = self._clock.now()
        reason = approval_reason or "Scheduled execution ready"
        record = ExecutionRecord(
            strategy_id=strategy_id,
            strategy_type=strategy_type,
            config=dict(config),
            wallet_address=wallet_address.lower(),
            session_id=session_id,
            state_entered_at=now,
            approval_reason=reason,
            history=[
                StateChange(
                    to_state=B.AWAITING_APPROVAL,
                    trigger="scheduled_execution",
                    reason=reason,
                    timestamp=now,
                )
            ],
        )
        async with self._lock:
            self._records[record.execution_id] = record
        logger.info(
            "Execution created: id=%s strategy=%s type=%s",
            record.execution_id,
            strategy_id,
            strategy_type,
        )
        return record

    async def approve(self, execution_id: str, approver_address: str) -> ExecutionRecord:
        """Move ``awaiting_approval`` -> ``executing`` (ready to sign)."""
        async with self._lock:
            record = self._require(execution_id)
            self._require_state(record, B.AWAITING_APPROVAL, "approve")
            record.approved_by = approver_address.lower()
            self._move(record, B.EXECUTING, "user_approved", f"Approved by {approver_address}")
        return record

    async def skip(self, execution_id: str, reason: str | None = None) -> ExecutionRecord:
        async with self._lock:
            record = self._require(execution_id)
            self._require_state(record, B.AWAITING_APPROVAL, "skip")
            self._move(
                record, B.CANCELLED, "user_skipped", reason or "User skipped this execution"
            )
        return record

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def complete(
        self,
        execution_id: str,
        tx_hash: Optional[str] = None,
        output_data: Optional[dict[str, Any]] = None,
    ) -> None:
        async with self._lock:
            record = self._require(execution_id)
            record.tx_hash = tx_hash
            record.output_data = dict(output_data or {})
            self._move(
                record,
                B.COMPLETED,
                "execution_success",
                f"Transaction: {tx_hash}" if tx_hash else "Completed successfully",
            )

    async def fail(
        self,
        execution_id: str,
        error_message: str,
        error_code: Optional[str] = None,
        recoverable: bool = False,
    ) -> None:
        async with self._lock:
            record = self._require(execution_id)
            record.error_message = error_message
            record.error_code = error_code
            record.recoverable = recoverable
            self._move(record, B.FAILED, "execution_error", error_message, error_code)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, execution_id: str) -> ExecutionRecord:
        return self._require(execution_id)

    async def get_ready_to_sign(self, wallet_address: str) -> list[ExecutionRecord]:
        """Approved executions for the wallet, oldest first."""
        return self._by_state(wallet_address, B.EXECUTING)

    async def get_pending_approvals(self, wallet_address: str) -> list[ExecutionRecord]:
        return self._by_state(wallet_address, B.AWAITING_APPROVAL)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _by_state(
        self, wallet_address: str, state: BackendExecutionState
    ) -> list[ExecutionRecord]:
        key = wallet_address.lower()
        return [
            r
            for r in self._records.values()
            if r.wallet_address == key and r.state == state
        ]

    def _require(self, execution_id: str) -> ExecutionRecord:
        record = self._records.get(execution_id)
        if record is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        return record

    @staticmethod
    def _require_state(
        record: ExecutionRecord, expected: BackendExecutionState, action: str
    ) -> None:
        if record.state != expected:
            raise InvalidExecutionStateError(
                f"Cannot {action} execution in state: {record.state.value}"
            )

    def _move(
        self,
        record: ExecutionRecord,
        to_state: BackendExecutionState,
        trigger: str,
        reason: str | None = None,
        error_code: str | None = None,
    ) -> None:
        now = self._clock.now()
        old_state = record.state
        record.history.append(
            StateChange(
                from_state=old_state,
                to_state=to_state,
                trigger=trigger,
                reason=reason,
                error_code=error_code,
                timestamp=now,
            )
        )
        record.state = to_state
        record.state_entered_at = now
        logger.debug(
            "Execution %s: %s -> %s (%s)",
            record.execution_id,
            old_state.value,
            to_state.value,
            trigger,
        )
