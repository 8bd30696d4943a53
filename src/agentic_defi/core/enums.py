"""Enumerations used across the trust and execution core."""

from enum import Enum


class IntentType(str, Enum):
    SWAP = "swap"
    BRIDGE = "bridge"


class Permission(str, Enum):
    """Actions a session key may be granted."""

    SWAP = "swap"
    BRIDGE = "bridge"
    TRANSFER = "transfer"
    APPROVE = "approve"
    STAKE = "stake"
    UNSTAKE = "unstake"
    CLAIM = "claim"
    WRAP = "wrap"
    UNWRAP = "unwrap"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    EXHAUSTED = "exhausted"


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class RiskPresetKey(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class StepType(str, Enum):
    APPROVAL = "approval"
    SWAP = "swap"
    BRIDGE = "bridge"
    TRANSFER = "transfer"
    CUSTOM = "custom"


class StrategyType(str, Enum):
    DCA = "dca"                  # Periodic buy
    LIMIT_ORDER = "limit_order"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    REBALANCE = "rebalance"
    CUSTOM = "custom"


PRICE_TRIGGERED_STRATEGIES = frozenset(
    {StrategyType.LIMIT_ORDER, StrategyType.STOP_LOSS, StrategyType.TAKE_PROFIT}
)


class ExecutionSource(str, Enum):
    """Who started an execution."""

    STRATEGY = "strategy"   # User-initiated from the strategy UI
    BACKEND = "backend"     # Backend-approved, detected by polling


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    # User-initiated flow
    PREPARING = "preparing"
    AWAITING_APPROVAL_TX = "awaiting_approval_tx"
    APPROVING = "approving"
    AWAITING_MAIN_TX = "awaiting_main_tx"
    EXECUTING = "executing"
    # Backend-initiated flow
    FETCHING_QUOTE = "fetching_quote"
    AWAITING_SIGNATURE = "awaiting_signature"
    SIGNING = "signing"
    # Shared
    CONFIRMING = "confirming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DISMISSED = "dismissed"


class ExecutionPhase(str, Enum):
    """Source-independent phases of the execution protocol."""

    PREPARE = "prepare"
    AWAIT_APPROVAL = "await_approval"
    SEND_APPROVAL = "send_approval"
    AWAIT_MAIN = "await_main"
    SEND_MAIN = "send_main"
    CONFIRM = "confirm"
    ABORT = "abort"


class ErrorCode(str, Enum):
    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"
    PLANNING_ERROR = "PLANNING_ERROR"
    EMPTY_TRANSACTION = "EMPTY_TRANSACTION"
    USER_REJECTED = "USER_REJECTED"
    TX_ERROR = "TX_ERROR"
    CHAIN_READ_ERROR = "CHAIN_READ_ERROR"
    USER_DISMISSED = "USER_DISMISSED"
    EXECUTION_ERROR = "EXECUTION_ERROR"


class BackendExecutionState(str, Enum):
    """Lifecycle of an execution record held by the backend store."""

    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
