"""Detection of backend-approved executions.

The backend marks an execution ``executing`` once the user approves it in
chat.  :class:`ExecutionSigningWatcher` polls for such executions and
starts the step executor on the first one it has not handled yet.  The
executor's processed set makes this idempotent: an execution that was
completed, failed or dismissed is never picked up again, even if a stale
read still lists it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Optional

from agentic_defi.core.enums import ExecutionSource
from agentic_defi.core.interfaces import IExecutionStore

from .executor import StepExecutor

logger = logging.getLogger(__name__)


class ExecutionSigningWatcher:
    """Polls the execution store and hands ready executions to the executor.

    Parameters
    ----------
    executor:
        The step executor to start.  Its wallet address is the one polled.
    store:
        Backend execution store exposing ``get_ready_to_sign``.
    interval:
        Seconds between polls for :meth:`run`.
    """

    def __init__(
        self,
        executor: StepExecutor,
        store: IExecutionStore,
        interval: float = 5.0,
    ) -> None:
        self._executor = executor
        self._store = store
        self._interval = interval
        self._last_ready: list[Any] = []
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._error_count = 0

    @property
    def pending_count(self) -> int:
        """Ready executions from the last poll that are not yet processed."""
        processed = self._executor.processed_ids
        return sum(1 for r in self._last_ready if r.execution_id not in processed)

    @property
    def is_running(self) -> bool:
        return self._running

    async def poll(self) -> Optional[str]:
        """Start the next unprocessed execution, if the executor is free.

        Returns the started execution ID, or ``None``.
        """
        wallet = self._executor.wallet_address
        if not wallet:
            self._last_ready = []
            return None

        self._last_ready = list(await self._store.get_ready_to_sign(wallet))
        if self._executor.is_active:
            return None

        processed = self._executor.processed_ids
        record = next(
            (r for r in self._last_ready if r.execution_id not in processed), None
        )
        if record is None:
            return None

        logger.info(
            "Backend-approved execution detected: id=%s strategy=%s",
            record.execution_id,
            record.strategy_id,
        )
        await self._executor.execute(
            record.execution_id,
            record.strategy_id,
            record.strategy_type,
            record.config,
            source=ExecutionSource.BACKEND,
            session_id=record.session_id,
        )
        return record.execution_id

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def run(self, interval: float | None = None) -> None:
        """Poll until :meth:`stop` is called."""
        wait = self._interval if interval is None else interval
        self._running = True
        while self._running:
            try:
                await self.poll()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._error_count += 1
                logger.exception(
                    "Signing watcher poll failed (errors=%d)", self._error_count
                )
            await asyncio.sleep(wait)

    def start(self) -> None:
        """Run the poll loop as a background task."""
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="execution-signing-watcher")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
