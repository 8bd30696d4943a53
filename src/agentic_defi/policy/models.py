"""Policy layer models.

Three layers feed an evaluation:

- **System policy**: platform-wide controls (emergency stop, maintenance,
  chain/token/contract lists).  Admin-owned.
- **Risk policy**: a wallet holder's personal limits (:class:`RiskPolicyConfig`).
- **Session keys**: delegated, budget-limited grants (:class:`SessionKeyData`).

Evaluation output is a list of :class:`PolicyCheck` aggregated into a
:class:`PolicyEvaluationResult`.  Neither is ever persisted.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from agentic_defi.core.enums import (
    CheckStatus,
    Permission,
    RiskPresetKey,
    SessionStatus,
)


# ---------------------------------------------------------------------------
# Risk policy
# ---------------------------------------------------------------------------


class RiskPolicyConfig(BaseModel):
    """Personal risk limits for one wallet."""

    # Position limits
    max_position_percent: float = 25.0       # % of portfolio in one asset
    max_position_value_usd: float = 10_000.0

    # Daily limits
    max_daily_volume_usd: float = 50_000.0
    max_daily_loss_usd: float = 1_000.0

    # Transaction limits
    max_single_tx_usd: float = 5_000.0
    require_approval_above_usd: float = 2_000.0

    # Slippage tolerance (percent)
    max_slippage_percent: float = 3.0
    warn_slippage_percent: float = 1.5

    # Gas as percent of transaction value
    max_gas_percent: float = 5.0
    warn_gas_percent: float = 2.0

    min_liquidity_usd: float = 100_000.0

    enabled: bool = True


class RiskPreset(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: RiskPresetKey
    name: str
    description: str
    overrides: dict[str, float] = Field(default_factory=dict)

    def to_config(self) -> RiskPolicyConfig:
        """Apply the preset on top of the defaults."""
        return RiskPolicyConfig(**self.overrides)


RISK_PRESETS: dict[RiskPresetKey, RiskPreset] = {
    RiskPresetKey.CONSERVATIVE: RiskPreset(
        key=RiskPresetKey.CONSERVATIVE,
        name="Conservative",
        description="Lower limits, tighter controls for careful trading",
        overrides={
            "max_position_percent": 10,
            "max_position_value_usd": 2_500,
            "max_daily_volume_usd": 10_000,
            "max_daily_loss_usd": 200,
            "max_single_tx_usd": 1_000,
            "require_approval_above_usd": 500,
            "max_slippage_percent": 1.0,
            "warn_slippage_percent": 0.5,
            "max_gas_percent": 2.0,
            "warn_gas_percent": 1.0,
            "min_liquidity_usd": 500_000,
        },
    ),
    RiskPresetKey.MODERATE: RiskPreset(
        key=RiskPresetKey.MODERATE,
        name="Moderate",
        description="Balanced settings for everyday trading",
        overrides={},
    ),
    RiskPresetKey.AGGRESSIVE: RiskPreset(
        key=RiskPresetKey.AGGRESSIVE,
        name="Aggressive",
        description="Higher limits for experienced traders",
        overrides={
            "max_position_percent": 50,
            "max_position_value_usd": 50_000,
            "max_daily_volume_usd": 250_000,
            "max_daily_loss_usd": 5_000,
            "max_single_tx_usd": 25_000,
            "require_approval_above_usd": 10_000,
            "max_slippage_percent": 5.0,
            "warn_slippage_percent": 2.5,
            "max_gas_percent": 10.0,
            "warn_gas_percent": 5.0,
            "min_liquidity_usd": 50_000,
        },
    ),
}


# ---------------------------------------------------------------------------
# Session keys
# ---------------------------------------------------------------------------


class UsageEntry(BaseModel):
    execution_id: str
    action_type: str = "swap"
    value_usd: float
    tx_hash: Optional[str] = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class SessionKeyData(BaseModel):
    """A delegated-access grant.

    ``total_value_used_usd`` only ever grows, and only through the
    session ledger's ``record_usage``.
    """

    session_id: str
    wallet_address: str
    agent_id: Optional[str] = None
    permissions: list[Permission] = Field(default_factory=list)

    max_value_per_tx_usd: float
    max_total_value_usd: float
    total_value_used_usd: float = 0.0
    transaction_count: int = 0
    max_transactions: Optional[int] = None

    chain_allowlist: list[int] = Field(default_factory=list)
    token_allowlist: list[str] = Field(default_factory=list)  # "chainId:address"
    contract_allowlist: list[str] = Field(default_factory=list)

    status: SessionStatus = SessionStatus.ACTIVE
    expires_at: datetime
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    last_used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoke_reason: Optional[str] = None
    usage_log: list[UsageEntry] = Field(default_factory=list)

    @property
    def remaining_budget_usd(self) -> float:
        return self.max_total_value_usd - self.total_value_used_usd

    def is_active_at(self, now: datetime) -> bool:
        return self.status == SessionStatus.ACTIVE and self.expires_at > now


# ---------------------------------------------------------------------------
# System policy
# ---------------------------------------------------------------------------


def _default_allowed_chains() -> list[int]:
    return [1, 137, 42161, 8453, 10]  # Ethereum, Polygon, Arbitrum, Base, Optimism


class SystemPolicy(BaseModel):
    """Platform-wide controls.  Singleton, admin-owned."""

    emergency_stop: bool = False
    emergency_stop_reason: Optional[str] = None
    in_maintenance: bool = False
    maintenance_message: Optional[str] = None

    blocked_contracts: list[str] = Field(default_factory=list)
    blocked_tokens: list[str] = Field(default_factory=list)
    blocked_chains: list[int] = Field(default_factory=list)
    allowed_chains: list[int] = Field(default_factory=_default_allowed_chains)

    max_single_tx_usd: float = 100_000.0
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_by: Optional[str] = None


class SystemPolicyStatus(BaseModel):
    """Public view of the system policy."""

    operational: bool = True
    emergency_stop: bool = False
    in_maintenance: bool = False
    message: Optional[str] = None

    @property
    def can_trade(self) -> bool:
        return not self.emergency_stop and not self.in_maintenance


# ---------------------------------------------------------------------------
# Resolved evaluation inputs
# ---------------------------------------------------------------------------


class ListVerdicts(BaseModel):
    """Chain/token/contract list lookups, already resolved for one intent."""

    from_chain_allowed: bool = True
    to_chain_allowed: bool = True
    from_token_blocked: bool = False
    to_token_blocked: bool = False
    contract_blocked: bool = False


class PolicyData(BaseModel):
    """Everything the evaluator needs, resolved ahead of time."""

    system: SystemPolicyStatus = Field(default_factory=SystemPolicyStatus)
    risk_policy: RiskPolicyConfig = Field(default_factory=RiskPolicyConfig)
    sessions: list[SessionKeyData] = Field(default_factory=list)
    lists: ListVerdicts = Field(default_factory=ListVerdicts)


# ---------------------------------------------------------------------------
# Evaluation results
# ---------------------------------------------------------------------------


class CheckDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    current: float
    limit: float


class PolicyCheck(BaseModel):
    """One named pass/warn/fail evaluation."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    status: CheckStatus
    message: str
    details: Optional[CheckDetails] = None


class PolicyEvaluationResult(BaseModel):
    can_proceed: bool = True
    checks: list[PolicyCheck] = Field(default_factory=list)
    blocking_count: int = 0
    warning_count: int = 0

    def get(self, check_id: str) -> Optional[PolicyCheck]:
        """Return the first check with the given ID, if any."""
        return next((c for c in self.checks if c.id == check_id), None)
