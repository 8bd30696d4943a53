"""Outcome recorder.

Writes execution outcomes to the backend execution store and, for
executions tied to a session key, applies the executed value to the
session budget.  This is the only caller of the session ledger's
``record_usage``; policy evaluation only ever reads session usage.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from agentic_defi.core.clock import IClock, WallClock
from agentic_defi.core.enums import ErrorCode
from agentic_defi.core.interfaces import IExecutionStore, ISessionLedger
from agentic_defi.core.ids import to_ms
from agentic_defi.observability import metrics

logger = logging.getLogger(__name__)


class OutcomeRecorder:
    """Durably records completions and failures.

    Parameters
    ----------
    store:
        Backend execution store.
    ledger:
        Session-budget ledger.  Optional; without it session usage is
        never applied.
    """

    def __init__(
        self,
        store: IExecutionStore,
        ledger: ISessionLedger | None = None,
        clock: IClock | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._clock = clock or WallClock()

    async def record_completion(
        self,
        execution_id: str,
        tx_hash: str,
        *,
        executed_amount_usd: Optional[float] = None,
        session_id: Optional[str] = None,
        confirmed_at: Optional[datetime] = None,
        action_type: str = "swap",
    ) -> None:
        """Mark the execution completed and charge the session, if any.

        Raises:
            SessionBudgetExceededError: The ledger refused the increment.
                The execution record is already completed.
        """
        confirmed = confirmed_at or self._clock.now()
        await self._store.complete(
            execution_id,
            tx_hash=tx_hash,
            output_data={"confirmed_at": to_ms(confirmed)},
        )
        metrics.record_outcome("completed")
        logger.info("Execution completed: id=%s tx=%s", execution_id, tx_hash)

        if session_id is None or self._ledger is None:
            return
        if not executed_amount_usd:
            logger.warning(
                "Execution %s has no executed USD amount; session %s not charged",
                execution_id,
                session_id,
            )
            return
        await self._ledger.record_usage(
            session_id,
            execution_id,
            executed_amount_usd,
            tx_hash=tx_hash,
            action_type=action_type,
        )

    async def record_failure(
        self,
        execution_id: str,
        error_message: str,
        error_code: ErrorCode | str | None = None,
        recoverable: bool = True,
    ) -> None:
        code = error_code.value if isinstance(error_code, ErrorCode) else error_code
        await self._store.fail(
            execution_id,
            error_message,
            error_code=code,
            recoverable=recoverable,
        )
        metrics.record_outcome("failed")
        logger.info(
            "Execution failed: id=%s code=%s recoverable=%s error=%s",
            execution_id,
            code,
            recoverable,
            error_message,
        )
