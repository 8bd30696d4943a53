"""Core domain models shared by the policy and execution layers.

:class:`TransactionIntent` is what the policy evaluator gates.  The
execution models describe an :class:`ExecutionPlan` of immutable
:class:`ExecutionStep` objects and the mutable :class:`ExecutionState`
of the step executor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    ErrorCode,
    ExecutionSource,
    ExecutionStatus,
    IntentType,
    StepType,
)
from .ids import new_id, utc_now

NATIVE_TOKEN = "0x0000000000000000000000000000000000000000"
NATIVE_TOKEN_ALIAS = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"
MAX_UINT256 = 2**256 - 1
EMPTY_CALLDATA = "0x"


def is_native_token(address: str | None) -> bool:
    """A missing address or either native sentinel counts as native."""
    if not address:
        return True
    return address.lower() in (NATIVE_TOKEN, NATIVE_TOKEN_ALIAS)


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------

class TokenRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str = ""
    symbol: str = "UNKNOWN"
    chain_id: int = 1

    @property
    def allowlist_key(self) -> str:
        """``chainId:address`` key used by session token allowlists."""
        return f"{self.chain_id}:{self.address.lower()}"


class TransactionIntent(BaseModel):
    """A proposed on-chain action awaiting authorization."""

    model_config = ConfigDict(frozen=True)

    type: IntentType
    from_token: TokenRef
    to_token: TokenRef
    amount_usd: float = 0.0
    slippage_percent: float = 0.0
    gas_estimate_usd: float = 0.0
    contract_address: Optional[str] = None

    @property
    def is_bridge(self) -> bool:
        return self.type == IntentType.BRIDGE


# ---------------------------------------------------------------------------
# Execution plan
# ---------------------------------------------------------------------------

class ExecutionTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    to: str
    data: str = EMPTY_CALLDATA
    value: int = 0  # wei
    chain_id: int = 1

    @property
    def has_calldata(self) -> bool:
        return bool(self.data) and self.data != EMPTY_CALLDATA


class ExecutionStep(BaseModel):
    """One on-chain action in a plan.  Never patched once planned."""

    model_config = ConfigDict(frozen=True)

    type: StepType
    description: str
    transaction: ExecutionTransaction
    token_address: Optional[str] = None     # Approval steps only
    spender_address: Optional[str] = None   # Approval steps only

    @property
    def is_approval(self) -> bool:
        return self.type == StepType.APPROVAL


class ExecutionPlan(BaseModel):
    """Ordered steps for one execution attempt.

    A failed or stale plan is discarded; a retry always plans again.
    """

    model_config = ConfigDict(frozen=True)

    plan_id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utc_now)
    strategy_id: str
    execution_id: str
    strategy_type: str
    steps: tuple[ExecutionStep, ...] = ()
    warnings: tuple[str, ...] = ()
    amount_usd: Optional[float] = None

    @property
    def step_count(self) -> int:
        return len(self.steps)


# ---------------------------------------------------------------------------
# Executor state
# ---------------------------------------------------------------------------

@dataclass
class ExecutionState:
    """Observable state of the step executor.

    ``current_step`` is 1-based for display; 0 means no step has started.
    """

    status: ExecutionStatus = ExecutionStatus.IDLE
    current_step: int = 0
    total_steps: int = 0
    tx_hash: Optional[str] = None
    approval_tx_hash: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    plan: Optional[ExecutionPlan] = None
    source: ExecutionSource = ExecutionSource.STRATEGY
    execution_id: Optional[str] = None
    strategy_id: Optional[str] = None
    session_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Quote service payloads
# ---------------------------------------------------------------------------

class QuoteTransaction(BaseModel):
    """Prepared transaction returned by the routing service."""

    model_config = ConfigDict(populate_by_name=True)

    to: str
    data: str = EMPTY_CALLDATA
    value: Optional[str] = None
    chain_id: Optional[int] = Field(default=None, alias="chainId")
    gas_limit: Optional[str] = Field(default=None, alias="gasLimit")

    def to_execution_tx(self, fallback_chain_id: int) -> ExecutionTransaction:
        return ExecutionTransaction(
            to=self.to,
            data=self.data or EMPTY_CALLDATA,
            value=int(self.value, 0) if self.value else 0,
            chain_id=self.chain_id or fallback_chain_id,
        )


class QuoteStepItem(BaseModel):
    data: Optional[QuoteTransaction] = None


class QuoteStep(BaseModel):
    id: str = ""
    action: str = ""
    items: list[QuoteStepItem] = Field(default_factory=list)

    @property
    def is_approval(self) -> bool:
        return self.id == "approve" or self.action == "approve"


class QuoteRoute(BaseModel):
    kind: str = ""
    request_id: Optional[str] = None
    steps: list[QuoteStep] = Field(default_factory=list)
    tx_ready: bool = False
    primary_tx: Optional[QuoteTransaction] = None
    tx: Optional[QuoteTransaction] = None

    @property
    def executable_tx(self) -> Optional[QuoteTransaction]:
        return self.primary_tx or self.tx

    @property
    def approval_step(self) -> Optional[QuoteStep]:
        return next((s for s in self.steps if s.is_approval), None)


class SwapQuoteRequest(BaseModel):
    token_in: str
    token_out: str
    amount_in: Optional[float] = None
    amount_usd: Optional[float] = None
    chain: str = "ethereum"
    slippage_bps: int = 50
    wallet_address: str


class SwapQuote(BaseModel):
    success: bool = False
    from_token: str = ""
    to_token: str = ""
    amount_in: float = 0.0
    amount_out_est: float = 0.0
    price_in_usd: float = 0.0
    price_out_usd: float = 0.0
    fee_est: float = 0.0
    slippage_bps: int = 0
    route: QuoteRoute = Field(default_factory=QuoteRoute)
    warnings: list[str] = Field(default_factory=list)
