"""Property test: the session ledger never overspends.

Random sequences of usage writes (including retries of the same
execution) must leave the session total equal to the sum of accepted
increments and never above the budget.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from hypothesis import given, settings, strategies as st

from agentic_defi.core.clock import SimClock
from agentic_defi.core.enums import Permission, SessionStatus
from agentic_defi.core.errors import SessionBudgetExceededError
from agentic_defi.policy.sessions import SessionKeyStore

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
WALLET = "0x1111111111111111111111111111111111111111"

writes = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=9),  # execution ID; repeats are retries
        st.floats(min_value=0, max_value=400, allow_nan=False),
    ),
    max_size=30,
)


@settings(max_examples=150, deadline=None)
@given(writes=writes, budget=st.floats(min_value=1, max_value=2_000))
def test_total_matches_accepted_writes(writes, budget):
    async def scenario():
        clock = SimClock(start=T0)
        store = SessionKeyStore(clock=clock)
        session = store.create(
            WALLET,
            permissions=[Permission.SWAP],
            max_value_per_tx_usd=budget,
            max_total_value_usd=budget,
            expires_at=T0 + timedelta(days=1),
        )
        accepted: dict[int, float] = {}
        for exec_no, value in writes:
            try:
                await store.record_usage(session.session_id, f"exec-{exec_no}", value)
            except SessionBudgetExceededError:
                continue
            accepted.setdefault(exec_no, value)
        return store.get(session.session_id), accepted

    final, accepted = asyncio.run(scenario())
    assert final.total_value_used_usd <= budget * (1 + 1e-12)
    assert final.total_value_used_usd == sum(accepted.values())
    assert final.transaction_count == len(accepted)
    if final.total_value_used_usd >= budget:
        assert final.status == SessionStatus.EXHAUSTED
