"""Step executor.

Walks an :class:`ExecutionPlan` one step at a time through the wallet,
tracks each sent transaction until the chain confirms it, and hands the
outcome to the :class:`OutcomeRecorder`.

Two sources share the machine:

- ``strategy``: user-initiated.  Steps run back to back; an approval
  confirmation continues straight into the next step.
- ``backend``: a backend-approved execution picked up by
  :class:`ExecutionSigningWatcher`.  The machine waits in
  ``awaiting_signature`` before every step until :meth:`StepExecutor.sign`
  is called.

Transaction hashes, confirmations, chain failures and dismissals arrive
as events on a queue that is drained one event at a time.  Confirmation
is never awaited inline: the watcher calls back and the callback posts a
:class:`TxConfirmed` event.

Usage::

    executor = StepExecutor(signer, chain, watcher, planner, recorder)
    executor.add_observer(lambda s: print(s.status))
    await executor.execute(execution_id, strategy_id, "dca", config)
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Union

from agentic_defi.core.clock import IClock, WallClock
from agentic_defi.core.enums import (
    ErrorCode,
    ExecutionPhase,
    ExecutionSource,
    ExecutionStatus,
)
from agentic_defi.core.errors import ChainReadError, WalletRejectedError
from agentic_defi.core.interfaces import (
    IChainReader,
    IConfirmationWatcher,
    IWalletSigner,
)
from agentic_defi.core.models import MAX_UINT256, ExecutionState, ExecutionStep
from agentic_defi.observability import metrics
from agentic_defi.observability.logger import bind_execution, clear_execution
from agentic_defi.outcomes.recorder import OutcomeRecorder

from .planner import ExecutionPlanner
from .state_machine import (
    WAITING_STATUSES,
    check_transition,
    is_active,
    status_for,
)

logger = logging.getLogger(__name__)

# Allowances at or above this are treated as an existing unlimited approval.
SUFFICIENT_ALLOWANCE = MAX_UINT256 // 2

DISMISS_MESSAGE = "User dismissed signing request"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TxHashAssigned:
    tx_hash: str
    chain_id: int
    is_approval: bool
    run_id: int


@dataclass(frozen=True)
class TxConfirmed:
    tx_hash: str


@dataclass(frozen=True)
class TxFailed:
    tx_hash: str
    reason: str


@dataclass(frozen=True)
class Dismissed:
    pass


ExecutorEvent = Union[TxHashAssigned, TxConfirmed, TxFailed, Dismissed]
StateObserver = Callable[[ExecutionState], Any]


@dataclass
class _PendingTx:
    tx_hash: str
    is_approval: bool


# ---------------------------------------------------------------------------
# StepExecutor
# ---------------------------------------------------------------------------

class StepExecutor:
    """Single-execution state machine over wallet, chain and backend."""

    def __init__(
        self,
        signer: IWalletSigner,
        chain_reader: IChainReader,
        watcher: IConfirmationWatcher,
        planner: ExecutionPlanner,
        recorder: OutcomeRecorder,
        clock: IClock | None = None,
    ) -> None:
        self._signer = signer
        self._chain = chain_reader
        self._watcher = watcher
        self._planner = planner
        self._recorder = recorder
        self._clock = clock or WallClock()

        self._state = ExecutionState()
        self._step_index = 0
        # Bumped on every new execution, dismissal and reset; work that
        # resumes under an older run ID is discarded.
        self._run_id = 0
        self._pending: Optional[_PendingTx] = None

        self._events: deque[ExecutorEvent] = deque()
        self._draining = False
        self._processed: set[str] = set()
        self._observers: list[StateObserver] = []

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExecutionState:
        """Snapshot of the current state."""
        return replace(self._state)

    @property
    def is_active(self) -> bool:
        return is_active(self._state.status)

    @property
    def wallet_address(self) -> Optional[str]:
        return self._signer.address

    @property
    def processed_ids(self) -> frozenset[str]:
        """Execution IDs that must not be started again by the watcher."""
        return frozenset(self._processed)

    def mark_processed(self, execution_id: str) -> None:
        self._processed.add(execution_id)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_observer(self, observer: StateObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: StateObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self) -> None:
        snapshot = self.state
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("State observer %r failed", observer)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def execute(
        self,
        execution_id: str,
        strategy_id: str,
        strategy_type: str,
        config: dict[str, Any],
        *,
        source: ExecutionSource = ExecutionSource.STRATEGY,
        session_id: Optional[str] = None,
    ) -> None:
        """Plan and start an execution.

        Ignored while another execution is active.  Failures end in the
        ``failed`` status with ``state.error`` set; nothing is raised.
        """
        if self.is_active:
            logger.warning(
                "Execution %s ignored: executor busy with %s (%s)",
                execution_id,
                self._state.execution_id,
                self._state.status.value,
            )
            return

        self._run_id += 1
        run = self._run_id
        self._step_index = 0
        self._pending = None
        self._state = ExecutionState(
            status=self._state.status,
            source=source,
            execution_id=execution_id,
            strategy_id=strategy_id,
            session_id=session_id,
        )
        bind_execution(execution_id, strategy_id, source.value)

        wallet = self._signer.address
        if not wallet:
            await self._fail(
                "Wallet not connected", ErrorCode.WALLET_NOT_CONNECTED, notify_backend=False
            )
            return

        logger.info(
            "Execution %s starting: strategy=%s type=%s source=%s",
            execution_id,
            strategy_id,
            strategy_type,
            source.value,
        )
        self._enter(ExecutionPhase.PREPARE)
        try:
            plan = await self._planner.plan(
                execution_id,
                strategy_id,
                strategy_type,
                config,
                wallet_address=wallet,
                chain_id=self._signer.chain_id,
            )
        except Exception as exc:
            if run != self._run_id:
                return
            logger.warning("Planning failed for %s: %s", execution_id, exc)
            await self._fail(str(exc) or "Planning failed", ErrorCode.PLANNING_ERROR)
            return

        if run != self._run_id:
            logger.info("Plan for %s discarded: execution was aborted", execution_id)
            return
        if not plan.steps:
            await self._fail("No execution steps generated", ErrorCode.PLANNING_ERROR)
            return

        for warning in plan.warnings:
            logger.warning("Plan warning for %s: %s", execution_id, warning)
        self._state.plan = plan
        self._state.total_steps = plan.step_count
        await self._drive(run, confirmed=source == ExecutionSource.STRATEGY)

    async def advance(self) -> bool:
        """Resume a machine waiting for the user.  Returns False if not waiting."""
        if self._state.status not in WAITING_STATUSES or self._state.plan is None:
            logger.warning(
                "Nothing to sign: execution=%s status=%s",
                self._state.execution_id,
                self._state.status.value,
            )
            return False
        await self._drive(self._run_id, confirmed=True)
        return True

    async def sign(self) -> bool:
        """User accepted the signing prompt for the current step."""
        return await self.advance()

    async def dismiss(self) -> None:
        """Abort the current execution; a no-op once completed or aborted."""
        await self._post(Dismissed())

    def reset(self) -> None:
        """Return to ``idle`` from any status, dropping all pending work."""
        if self._pending is not None:
            self._watcher.unwatch(self._pending.tx_hash)
        self._events.clear()
        self._run_id += 1
        self._step_index = 0
        self._pending = None
        old = self._state.status
        self._state = ExecutionState()
        clear_execution()
        if old != ExecutionStatus.IDLE:
            metrics.record_transition(self._state.source.value, ExecutionStatus.IDLE.value)
            logger.debug("Executor reset from %s", old.value)
            self._notify()

    # ------------------------------------------------------------------
    # Watcher callbacks
    # ------------------------------------------------------------------

    async def _on_watch_confirmed(self, tx_hash: str) -> None:
        await self._post(TxConfirmed(tx_hash))

    async def _on_watch_failed(self, tx_hash: str, reason: str) -> None:
        await self._post(TxFailed(tx_hash, reason))

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    async def _post(self, event: ExecutorEvent) -> None:
        self._events.append(event)
        if self._draining:
            return
        self._draining = True
        try:
            while self._events:
                await self._handle(self._events.popleft())
        finally:
            self._draining = False

    async def _handle(self, event: ExecutorEvent) -> None:
        if isinstance(event, TxHashAssigned):
            self._on_hash_assigned(event)
        elif isinstance(event, TxConfirmed):
            await self._on_confirmed(event)
        elif isinstance(event, TxFailed):
            await self._on_tx_failed(event)
        elif isinstance(event, Dismissed):
            await self._on_dismissed()

    def _on_hash_assigned(self, event: TxHashAssigned) -> None:
        if event.run_id != self._run_id:
            logger.warning("Ignoring hash %s from an aborted execution", event.tx_hash)
            return
        self._pending = _PendingTx(event.tx_hash, event.is_approval)
        if event.is_approval:
            self._state.approval_tx_hash = event.tx_hash
        else:
            self._state.tx_hash = event.tx_hash
        self._enter(ExecutionPhase.CONFIRM)
        self._watcher.watch(
            event.tx_hash,
            event.chain_id,
            self._on_watch_confirmed,
            self._on_watch_failed,
        )

    def _take_pending(self, tx_hash: str) -> Optional[_PendingTx]:
        pending = self._pending
        if pending is None or pending.tx_hash != tx_hash:
            logger.debug("Ignoring stale event for %s", tx_hash)
            return None
        self._pending = None
        return pending

    async def _on_confirmed(self, event: TxConfirmed) -> None:
        pending = self._take_pending(event.tx_hash)
        if pending is None:
            return
        plan = self._state.plan
        assert plan is not None
        logger.info(
            "Execution %s: step %d/%d confirmed (%s)",
            self._state.execution_id,
            self._step_index + 1,
            plan.step_count,
            event.tx_hash,
        )
        self._step_index += 1
        if self._step_index < plan.step_count:
            auto = self._state.source == ExecutionSource.STRATEGY
            await self._drive(self._run_id, confirmed=auto)
        else:
            await self._complete(event.tx_hash)

    async def _on_tx_failed(self, event: TxFailed) -> None:
        if self._take_pending(event.tx_hash) is None:
            return
        await self._fail(event.reason or "Transaction failed", ErrorCode.TX_ERROR)

    async def _on_dismissed(self) -> None:
        status = self._state.status
        if not is_active(status):
            logger.debug("Dismiss ignored in status %s", status.value)
            return

        execution_id = self._state.execution_id
        if self._pending is not None:
            self._watcher.unwatch(self._pending.tx_hash)
            self._pending = None
        self._run_id += 1
        self._step_index = 0

        was_failed = status == ExecutionStatus.FAILED
        self._state.plan = None
        self._state.current_step = 0
        self._state.total_steps = 0
        self._state.tx_hash = None
        self._state.approval_tx_hash = None
        self._state.error = None if was_failed else DISMISS_MESSAGE
        self._state.error_code = None if was_failed else ErrorCode.USER_DISMISSED
        self._enter(ExecutionPhase.ABORT)

        if execution_id is None:
            return
        self._processed.add(execution_id)
        if was_failed:
            # Failure was already recorded
            return
        try:
            await self._recorder.record_failure(
                execution_id, DISMISS_MESSAGE, ErrorCode.USER_DISMISSED, recoverable=True
            )
        except Exception:
            logger.exception("Failed to record dismissal of %s", execution_id)

    # ------------------------------------------------------------------
    # Step driving
    # ------------------------------------------------------------------

    async def _drive(self, run: int, confirmed: bool) -> None:
        """Run steps from the current index until one is sent or must wait.

        ``confirmed`` is whether the user has agreed to send the current
        step; backend executions stop in the await phase without it.
        """
        plan = self._state.plan
        assert plan is not None

        while self._step_index < plan.step_count:
            step = plan.steps[self._step_index]
            self._state.current_step = self._step_index + 1

            if step.is_approval:
                self._enter(ExecutionPhase.AWAIT_APPROVAL)
            else:
                self._enter(ExecutionPhase.AWAIT_MAIN)
                if not step.transaction.has_calldata:
                    await self._fail(
                        f"No transaction data for step: {step.description}. "
                        "The strategy may not be fully configured or the quote failed.",
                        ErrorCode.EMPTY_TRANSACTION,
                    )
                    return

            if not confirmed:
                return

            try:
                if step.is_approval:
                    tx_hash = await self._send_approval(step)
                else:
                    self._enter(ExecutionPhase.SEND_MAIN)
                    tx_hash = await self._signer.send_transaction(step.transaction)
            except WalletRejectedError as exc:
                if run == self._run_id:
                    await self._fail(
                        str(exc) or "User rejected the request", ErrorCode.USER_REJECTED
                    )
                return
            except ChainReadError as exc:
                if run == self._run_id:
                    logger.warning("%s (execution %s)", exc, self._state.execution_id)
                    await self._fail(str(exc), ErrorCode.CHAIN_READ_ERROR)
                return
            except Exception as exc:
                if run == self._run_id:
                    logger.exception(
                        "Step %d failed for %s",
                        self._step_index + 1,
                        self._state.execution_id,
                    )
                    await self._fail(str(exc) or "Transaction failed", ErrorCode.TX_ERROR)
                return

            if run != self._run_id:
                logger.warning("Transaction %s sent after execution was aborted", tx_hash)
                return

            if tx_hash is None:
                # Allowance already in place
                self._step_index += 1
                continue

            await self._post(
                TxHashAssigned(
                    tx_hash=tx_hash,
                    chain_id=step.transaction.chain_id,
                    is_approval=step.is_approval,
                    run_id=run,
                )
            )
            return

        await self._fail("Plan has no transaction to send", ErrorCode.PLANNING_ERROR)

    async def _send_approval(self, step: ExecutionStep) -> Optional[str]:
        """Send the approval, or return ``None`` when none is needed."""
        tx = step.transaction
        if tx.has_calldata:
            self._enter(ExecutionPhase.SEND_APPROVAL)
            return await self._signer.send_transaction(tx)

        owner = self._signer.address
        if not step.token_address or not step.spender_address or not owner:
            return None

        try:
            allowance = await self._chain.allowance(
                step.token_address, owner, step.spender_address, tx.chain_id
            )
        except Exception as exc:
            raise ChainReadError(
                f"Allowance lookup failed for {step.token_address}: {exc}"
            ) from exc
        if allowance >= SUFFICIENT_ALLOWANCE:
            logger.info(
                "Allowance for %s already sufficient; skipping approval",
                step.token_address,
            )
            return None

        self._enter(ExecutionPhase.SEND_APPROVAL)
        return await self._signer.approve(
            step.token_address, step.spender_address, MAX_UINT256, tx.chain_id
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _complete(self, tx_hash: str) -> None:
        state = self._state
        state.tx_hash = tx_hash
        self._set_status(ExecutionStatus.COMPLETED)
        execution_id = state.execution_id
        assert execution_id is not None
        if state.source == ExecutionSource.BACKEND:
            self._processed.add(execution_id)

        plan = state.plan
        try:
            await self._recorder.record_completion(
                execution_id,
                tx_hash,
                executed_amount_usd=plan.amount_usd if plan else None,
                session_id=state.session_id,
                confirmed_at=self._clock.now(),
            )
        except Exception:
            logger.exception("Failed to record completion of %s", execution_id)

    async def _fail(
        self,
        message: str,
        code: ErrorCode,
        *,
        notify_backend: bool = True,
    ) -> None:
        state = self._state
        state.error = message
        state.error_code = code
        self._set_status(ExecutionStatus.FAILED)
        logger.warning(
            "Execution %s failed (%s): %s", state.execution_id, code.value, message
        )

        execution_id = state.execution_id
        if execution_id is None or not notify_backend:
            return
        if state.source == ExecutionSource.BACKEND:
            self._processed.add(execution_id)
        try:
            await self._recorder.record_failure(
                execution_id, message, code, recoverable=True
            )
        except Exception:
            logger.exception("Failed to record failure of %s", execution_id)

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def _enter(self, phase: ExecutionPhase) -> None:
        self._set_status(status_for(self._state.source, phase))

    def _set_status(self, new: ExecutionStatus) -> None:
        old = self._state.status
        check_transition(old, new)
        self._state.status = new
        if old != new:
            metrics.record_transition(self._state.source.value, new.value)
            logger.debug(
                "Execution %s: %s -> %s",
                self._state.execution_id,
                old.value,
                new.value,
            )
        self._notify()
