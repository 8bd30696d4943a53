"""Integration test: policy gate -> backend approval -> signing -> ledger.

Wires the real stores, evaluator, planner, executor, signing watcher and
outcome recorder together.  Only the wallet, chain and quote service are
faked.
"""

from datetime import datetime, timedelta, timezone

from agentic_defi.core.enums import (
    BackendExecutionState,
    CheckStatus,
    ErrorCode,
    ExecutionStatus,
    Permission,
    SessionStatus,
)
from agentic_defi.execution.signing import ExecutionSigningWatcher
from agentic_defi.policy.evaluator import PolicyEvaluator
from agentic_defi.policy.provider import StorePolicyDataProvider
from agentic_defi.policy.stores import RiskPolicyStore, SystemPolicyStore

WALLET = "0x1111111111111111111111111111111111111111"
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _wire(harness):
    system = SystemPolicyStore()
    risk = RiskPolicyStore()
    evaluator = PolicyEvaluator(
        StorePolicyDataProvider(system, risk, harness.sessions), clock=harness.clock
    )
    watcher = ExecutionSigningWatcher(harness.executor, harness.store)
    return system, evaluator, watcher


class TestFullFlow:
    async def test_approved_execution_charges_session(
        self, make_harness, make_quote, make_intent
    ):
        h = make_harness(quote=make_quote(approval=True, amount_in=100.0))
        _, evaluator, watcher = _wire(h)
        session = h.sessions.create(
            WALLET,
            permissions=[Permission.SWAP],
            max_value_per_tx_usd=500.0,
            max_total_value_usd=120.0,
            expires_at=T0 + timedelta(days=7),
        )

        # 1. Gate the intent
        result = evaluator.evaluate(make_intent(amount_usd=100.0), WALLET)
        assert result.can_proceed is True
        assert result.get("session-budget").status == CheckStatus.WARN

        # 2. Backend schedules and the user approves
        record = await h.pending_execution(session_id=session.session_id)
        assert record.state == BackendExecutionState.EXECUTING

        # 3. Watcher picks it up; the executor stops at the wallet prompt
        started = await watcher.poll()
        assert started == record.execution_id
        assert h.executor.state.status == ExecutionStatus.AWAITING_SIGNATURE
        assert watcher.pending_count == 1

        # 4. Approval, then swap
        assert await h.executor.sign() is True
        await h.watcher.confirm(next(iter(h.watcher.watching)))
        assert h.executor.state.status == ExecutionStatus.AWAITING_SIGNATURE
        assert await h.executor.sign() is True
        swap_hash = next(iter(h.watcher.watching))
        await h.watcher.confirm(swap_hash)

        assert h.executor.state.status == ExecutionStatus.COMPLETED
        stored = await h.store.get(record.execution_id)
        assert stored.state == BackendExecutionState.COMPLETED
        assert stored.tx_hash == swap_hash

        charged = h.sessions.get(session.session_id)
        assert charged.total_value_used_usd == 100.0
        assert charged.transaction_count == 1
        assert charged.usage_log[0].execution_id == record.execution_id

        # 5. Processed executions are not started again
        assert watcher.pending_count == 0
        assert await watcher.poll() is None

        # 6. The next $100 intent no longer fits the session
        result = evaluator.evaluate(make_intent(amount_usd=100.0), WALLET)
        assert result.can_proceed is False
        assert result.get("session-budget").status == CheckStatus.FAIL
        assert charged.status == SessionStatus.ACTIVE

    async def test_emergency_stop_blocks_before_any_send(self, harness, make_intent):
        h = harness
        system, evaluator, _ = _wire(h)
        system.set_emergency_stop(True, "Incident response")

        result = evaluator.evaluate(make_intent(), WALLET)
        assert result.can_proceed is False
        assert result.checks[0].id == "system-emergency"
        assert h.signer.send_count == 0

    async def test_maintenance_halts_intents(self, harness, make_intent):
        system, evaluator, _ = _wire(harness)
        system.set_maintenance(True, message="Router upgrade")

        result = evaluator.evaluate(make_intent(), WALLET)
        assert result.can_proceed is False
        assert result.blocking_count == 0
        assert result.checks[0].id == "system-maintenance"
        assert result.checks[0].message == "Router upgrade"

        system.set_maintenance(False)
        assert evaluator.evaluate(make_intent(), WALLET).can_proceed is True

    async def test_dismiss_records_backend_failure(self, harness):
        h = harness
        _, _, watcher = _wire(h)
        record = await h.pending_execution()

        await watcher.poll()
        assert h.executor.state.status == ExecutionStatus.AWAITING_SIGNATURE
        await h.executor.dismiss()

        assert h.executor.state.status == ExecutionStatus.DISMISSED
        stored = await h.store.get(record.execution_id)
        assert stored.state == BackendExecutionState.FAILED
        assert stored.error_code == ErrorCode.USER_DISMISSED.value
        assert h.signer.send_count == 0
        assert await watcher.poll() is None

    async def test_chain_failure_leaves_session_untouched(
        self, make_harness, session_store, swap_session
    ):
        h = make_harness(session_store=session_store)
        _, _, watcher = _wire(h)
        record = await h.pending_execution(session_id=swap_session.session_id)

        await watcher.poll()
        await h.executor.sign()
        await h.watcher.fail(next(iter(h.watcher.watching)), "execution reverted")

        assert h.executor.state.status == ExecutionStatus.FAILED
        stored = await h.store.get(record.execution_id)
        assert stored.state == BackendExecutionState.FAILED
        assert stored.error_message == "execution reverted"
        assert h.sessions.get(swap_session.session_id).total_value_used_usd == 0.0
