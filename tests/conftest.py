"""Shared fixtures for the agentic-defi test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from agentic_defi.core.clock import SimClock
from agentic_defi.core.enums import IntentType, Permission
from agentic_defi.core.errors import QuoteServiceError, WalletRejectedError
from agentic_defi.core.interfaces import ConfirmedCallback, FailedCallback
from agentic_defi.core.models import (
    ExecutionTransaction,
    QuoteRoute,
    QuoteStep,
    QuoteStepItem,
    QuoteTransaction,
    SwapQuote,
    SwapQuoteRequest,
    TokenRef,
    TransactionIntent,
)
from agentic_defi.execution.executor import StepExecutor
from agentic_defi.execution.planner import ExecutionPlanner
from agentic_defi.outcomes.recorder import OutcomeRecorder
from agentic_defi.outcomes.store import InMemoryExecutionStore
from agentic_defi.policy.sessions import SessionKeyStore

WALLET = "0x1111111111111111111111111111111111111111"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
ROUTER = "0x2222222222222222222222222222222222222222"
SWAP_CALLDATA = "0x3593564c0000"
APPROVE_CALLDATA = "0x095ea7b30000"

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------

def _make_intent(
    amount_usd: float = 50.0,
    slippage_percent: float = 0.4,
    gas_estimate_usd: float = 1.0,
    intent_type: IntentType = IntentType.SWAP,
    from_chain: int = 1,
    to_chain: int = 1,
    contract_address: Optional[str] = None,
) -> TransactionIntent:
    return TransactionIntent(
        type=intent_type,
        from_token=TokenRef(address=USDC, symbol="USDC", chain_id=from_chain),
        to_token=TokenRef(address=WETH, symbol="WETH", chain_id=to_chain),
        amount_usd=amount_usd,
        slippage_percent=slippage_percent,
        gas_estimate_usd=gas_estimate_usd,
        contract_address=contract_address,
    )


@pytest.fixture
def make_intent():
    """Factory for USDC -> WETH intents; keywords override the defaults."""
    return _make_intent


@pytest.fixture
def swap_intent(make_intent) -> TransactionIntent:
    """$50 USDC -> WETH swap on mainnet, well inside default limits."""
    return make_intent()


# ---------------------------------------------------------------------------
# Clock & stores
# ---------------------------------------------------------------------------

@pytest.fixture
def sim_clock() -> SimClock:
    return SimClock(start=T0)


@pytest.fixture
def session_store(sim_clock) -> SessionKeyStore:
    return SessionKeyStore(clock=sim_clock)


@pytest.fixture
def execution_store(sim_clock) -> InMemoryExecutionStore:
    return InMemoryExecutionStore(clock=sim_clock)


@pytest.fixture
def swap_session(session_store, sim_clock):
    """Active session with swap permission and a $1000 budget."""
    return session_store.create(
        WALLET,
        permissions=[Permission.SWAP],
        max_value_per_tx_usd=500.0,
        max_total_value_usd=1_000.0,
        expires_at=sim_clock.now() + timedelta(days=7),
    )


# ---------------------------------------------------------------------------
# Wallet, chain and watcher fakes
# ---------------------------------------------------------------------------

class FakeSigner:
    """Records sends and returns sequential hashes."""

    def __init__(self, address: Optional[str] = WALLET, chain_id: Optional[int] = 1):
        self._address = address
        self._chain_id = chain_id
        self.sent: list[ExecutionTransaction] = []
        self.approvals: list[tuple[str, str, int, int]] = []
        self.reject = False
        self.error: Optional[Exception] = None
        self._counter = 0

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def chain_id(self) -> Optional[int]:
        return self._chain_id

    def connect(self, address: str = WALLET) -> None:
        self._address = address

    def disconnect(self) -> None:
        self._address = None

    def _next_hash(self) -> str:
        if self.reject:
            raise WalletRejectedError("User rejected the request")
        if self.error is not None:
            raise self.error
        self._counter += 1
        return f"0x{self._counter:064x}"

    async def send_transaction(self, tx: ExecutionTransaction) -> str:
        tx_hash = self._next_hash()
        self.sent.append(tx)
        return tx_hash

    async def approve(
        self, token_address: str, spender_address: str, amount: int, chain_id: int
    ) -> str:
        tx_hash = self._next_hash()
        self.approvals.append((token_address, spender_address, amount, chain_id))
        return tx_hash

    @property
    def send_count(self) -> int:
        return len(self.sent) + len(self.approvals)


class FakeChainReader:
    def __init__(self, allowance: int = 0):
        self.allowance_value = allowance
        self.error: Optional[Exception] = None
        self.reads: list[tuple[str, str, str, int]] = []

    async def allowance(
        self, token_address: str, owner_address: str, spender_address: str, chain_id: int
    ) -> int:
        self.reads.append((token_address, owner_address, spender_address, chain_id))
        if self.error is not None:
            raise self.error
        return self.allowance_value


class FakeWatcher:
    """Holds callbacks until the test confirms or fails a hash."""

    def __init__(self):
        self.watching: dict[str, tuple[ConfirmedCallback, FailedCallback]] = {}
        self.unwatched: list[str] = []

    def watch(
        self,
        tx_hash: str,
        chain_id: int,
        on_confirmed: ConfirmedCallback,
        on_failed: FailedCallback,
    ) -> None:
        self.watching[tx_hash] = (on_confirmed, on_failed)

    def unwatch(self, tx_hash: str) -> None:
        self.unwatched.append(tx_hash)
        self.watching.pop(tx_hash, None)

    async def confirm(self, tx_hash: str) -> None:
        on_confirmed, _ = self.watching.pop(tx_hash)
        await on_confirmed(tx_hash)

    async def fail(self, tx_hash: str, reason: str = "reverted") -> None:
        _, on_failed = self.watching.pop(tx_hash)
        await on_failed(tx_hash, reason)


# ---------------------------------------------------------------------------
# Quote service fake
# ---------------------------------------------------------------------------

def _make_quote(
    *,
    approval: bool = False,
    prebuilt_approval: bool = False,
    success: bool = True,
    with_tx: bool = True,
    amount_in: float = 100.0,
    price_in_usd: float = 1.0,
    warnings: Optional[list[str]] = None,
) -> SwapQuote:
    steps: list[QuoteStep] = []
    if approval:
        items = []
        if prebuilt_approval:
            items.append(
                QuoteStepItem(data=QuoteTransaction(to=USDC, data=APPROVE_CALLDATA))
            )
        steps.append(QuoteStep(id="approve", action="approve", items=items))
    steps.append(QuoteStep(id="swap", action="swap"))
    return SwapQuote(
        success=success,
        from_token="USDC",
        to_token="WETH",
        amount_in=amount_in,
        amount_out_est=0.0412,
        price_in_usd=price_in_usd,
        price_out_usd=2400.0,
        route=QuoteRoute(
            kind="swap",
            steps=steps,
            tx_ready=with_tx,
            primary_tx=(
                QuoteTransaction(to=ROUTER, data=SWAP_CALLDATA, value="0x0")
                if with_tx
                else None
            ),
        ),
        warnings=warnings or [],
    )


class FakeQuoteService:
    def __init__(self, quote: Optional[SwapQuote] = None, error: Optional[Exception] = None):
        self.quote = quote or _make_quote()
        self.error = error
        self.requests: list[SwapQuoteRequest] = []

    async def request(self, req: SwapQuoteRequest) -> SwapQuote:
        self.requests.append(req)
        if self.error is not None:
            raise self.error
        return self.quote


class CountingPlanner(ExecutionPlanner):
    """Planner that counts calls before delegating."""

    def __init__(self, quotes: FakeQuoteService):
        super().__init__(quotes)
        self.calls = 0

    async def plan(self, *args: Any, **kwargs: Any):
        self.calls += 1
        return await super().plan(*args, **kwargs)


DCA_CONFIG: dict[str, Any] = {
    "fromToken": {"symbol": "USDC", "address": USDC},
    "toToken": {"symbol": "WETH", "address": WETH},
    "amountPerExecutionUsd": 100,
}


# ---------------------------------------------------------------------------
# Executor harness
# ---------------------------------------------------------------------------

class ExecutorHarness:
    """A StepExecutor wired to fakes and an in-memory store."""

    def __init__(
        self,
        *,
        quote: Optional[SwapQuote] = None,
        quote_error: Optional[Exception] = None,
        quotes: Optional[FakeQuoteService] = None,
        allowance: int = 0,
        wallet: Optional[str] = WALLET,
        clock: Optional[SimClock] = None,
        session_store: Optional[SessionKeyStore] = None,
    ):
        self.clock = clock or SimClock(start=T0)
        self.signer = FakeSigner(address=wallet)
        self.chain = FakeChainReader(allowance=allowance)
        self.watcher = FakeWatcher()
        self.quotes = quotes or FakeQuoteService(quote, quote_error)
        self.planner = CountingPlanner(self.quotes)
        self.store = InMemoryExecutionStore(clock=self.clock)
        self.sessions = session_store or SessionKeyStore(clock=self.clock)
        self.recorder = OutcomeRecorder(self.store, self.sessions, clock=self.clock)
        self.executor = StepExecutor(
            self.signer,
            self.chain,
            self.watcher,
            self.planner,
            self.recorder,
            clock=self.clock,
        )
        self.statuses: list[str] = []
        self.executor.add_observer(lambda s: self.statuses.append(s.status.value))

    async def pending_execution(self, config: Optional[dict[str, Any]] = None, **kw: Any):
        """Create a backend record already approved and ready to sign."""
        record = await self.store.create_pending(
            "strat-1", "dca", config or DCA_CONFIG, WALLET, **kw
        )
        return await self.store.approve(record.execution_id, WALLET)


@pytest.fixture
def make_quote():
    """Factory for swap quotes routed through the test router."""
    return _make_quote


@pytest.fixture
def make_quote_service():
    """Factory for quote services that return a fixed quote or raise.

    Call with ``quote=`` and/or ``error=``; the returned service records
    every request in ``.requests``.
    """
    return FakeQuoteService


@pytest.fixture
def make_harness():
    """Factory for executor harnesses; keywords as for ExecutorHarness."""
    def _make(**kwargs: Any) -> ExecutorHarness:
        return ExecutorHarness(**kwargs)

    return _make


@pytest.fixture
def harness(make_harness) -> ExecutorHarness:
    return make_harness()


@pytest.fixture
def failing_quotes() -> FakeQuoteService:
    return FakeQuoteService(error=QuoteServiceError("upstream timeout"))
