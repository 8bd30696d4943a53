"""Layered policy evaluator.

Evaluates a :class:`TransactionIntent` against every policy layer and
produces a :class:`PolicyEvaluationResult`:

- System policy (emergency stop, maintenance, chain/token/contract lists)
- Risk policy (transaction size, slippage, gas ratio)
- Session key (permission, per-tx limit, budget, allowlists), only when
  the wallet has an active, unexpired session

Checks are emitted in a fixed order: system, chain, token, contract,
size, slippage, gas, session.  :func:`evaluate_intent` is a pure
function of its inputs and is safe to call on every input change.

Usage::

    evaluator = PolicyEvaluator(provider)
    result = evaluator.evaluate(intent, "0xabc...")
    if not result.can_proceed:
        # surface result.checks to the user
        pass
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from agentic_defi.core.clock import IClock, WallClock
from agentic_defi.core.enums import CheckStatus
from agentic_defi.core.models import TransactionIntent
from agentic_defi.observability import metrics

from .models import (
    CheckDetails,
    PolicyCheck,
    PolicyData,
    PolicyEvaluationResult,
    RiskPolicyConfig,
    SessionKeyData,
)
from .provider import IPolicyDataProvider

logger = logging.getLogger(__name__)

# Projected session usage above this share of the total budget warns.
SESSION_BUDGET_WARN_PERCENT = 80.0


def _check(
    status: CheckStatus,
    check_id: str,
    label: str,
    message: str,
    current: float | None = None,
    limit: float | None = None,
) -> PolicyCheck:
    details = None
    if current is not None and limit is not None:
        details = CheckDetails(current=current, limit=limit)
    return PolicyCheck(
        id=check_id,
        label=label,
        status=status,
        message=message,
        details=details,
    )


def _usd(value: float) -> str:
    return f"${value:,.0f}"


def _pct(value: float) -> str:
    return f"{value:.2f}%"


def _tier(value: float, fail_above: float, warn_above: float) -> CheckStatus:
    """Three-way threshold test: fail > warn > pass."""
    if value > fail_above:
        return CheckStatus.FAIL
    if value > warn_above:
        return CheckStatus.WARN
    return CheckStatus.PASS


def select_active_session(
    sessions: list[SessionKeyData],
    now: datetime,
) -> Optional[SessionKeyData]:
    """Return the first session that is active and unexpired.

    Sessions are taken in discovery order; there is no priority among
    several matching sessions.
    """
    return next((s for s in sessions if s.is_active_at(now)), None)


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------


def _system_checks(data: PolicyData) -> list[PolicyCheck]:
    system = data.system
    if system.emergency_stop:
        return [
            _check(
                CheckStatus.FAIL,
                "system-emergency",
                "System status",
                system.message or "Trading is temporarily disabled",
            )
        ]
    if system.in_maintenance:
        return [
            _check(
                CheckStatus.WARN,
                "system-maintenance",
                "System status",
                system.message or "Maintenance in progress",
            )
        ]
    return [_check(CheckStatus.PASS, "system-status", "System status", "Operational")]


def _list_checks(intent: TransactionIntent, data: PolicyData) -> list[PolicyCheck]:
    lists = data.lists
    checks: list[PolicyCheck] = []

    if not lists.from_chain_allowed:
        checks.append(
            _check(
                CheckStatus.FAIL,
                "chain-from-blocked",
                "Source chain",
                f"Chain {intent.from_token.chain_id} is not supported",
            )
        )
    elif intent.is_bridge and not lists.to_chain_allowed:
        checks.append(
            _check(
                CheckStatus.FAIL,
                "chain-to-blocked",
                "Destination chain",
                f"Chain {intent.to_token.chain_id} is not supported",
            )
        )
    else:
        checks.append(
            _check(CheckStatus.PASS, "chain-allowed", "Chain allowed", "Chain is supported")
        )

    if lists.from_token_blocked:
        checks.append(
            _check(
                CheckStatus.FAIL,
                "token-from-blocked",
                "Source token",
                f"{intent.from_token.symbol} is blocked",
            )
        )
    elif lists.to_token_blocked:
        checks.append(
            _check(
                CheckStatus.FAIL,
                "token-to-blocked",
                "Destination token",
                f"{intent.to_token.symbol} is blocked",
            )
        )
    else:
        checks.append(
            _check(CheckStatus.PASS, "token-allowed", "Token allowed", "Tokens are allowed")
        )

    if intent.contract_address and lists.contract_blocked:
        checks.append(
            _check(
                CheckStatus.FAIL,
                "contract-blocked",
                "Contract",
                "Transaction target contract is blocked",
            )
        )
    return checks


def evaluate_tx_limit(intent: TransactionIntent, policy: RiskPolicyConfig) -> PolicyCheck:
    amount = intent.amount_usd
    status = _tier(amount, policy.max_single_tx_usd, policy.require_approval_above_usd)
    if status == CheckStatus.FAIL:
        message = f"Exceeds {_usd(policy.max_single_tx_usd)} limit"
        limit = policy.max_single_tx_usd
    elif status == CheckStatus.WARN:
        message = f"Above {_usd(policy.require_approval_above_usd)} approval threshold"
        limit = policy.require_approval_above_usd
    else:
        message = f"{_usd(amount)} within limit"
        limit = policy.max_single_tx_usd
    return _check(status, "tx-limit", "Transaction limit", message, amount, limit)


def evaluate_slippage(intent: TransactionIntent, policy: RiskPolicyConfig) -> PolicyCheck:
    slippage = intent.slippage_percent
    status = _tier(slippage, policy.max_slippage_percent, policy.warn_slippage_percent)
    if status == CheckStatus.FAIL:
        message = f"{_pct(slippage)} exceeds {_pct(policy.max_slippage_percent)} limit"
    elif status == CheckStatus.WARN:
        message = f"{_pct(slippage)} is high"
    else:
        message = f"{_pct(slippage)} OK"
    return _check(
        status, "slippage", "Slippage", message, slippage, policy.max_slippage_percent
    )


def gas_percent(intent: TransactionIntent) -> float:
    """Gas as a percentage of the transaction value; 0 for a zero amount."""
    if intent.amount_usd <= 0:
        return 0.0
    return intent.gas_estimate_usd / intent.amount_usd * 100.0


def evaluate_gas_cost(intent: TransactionIntent, policy: RiskPolicyConfig) -> PolicyCheck:
    ratio = gas_percent(intent)
    status = _tier(ratio, policy.max_gas_percent, policy.warn_gas_percent)
    if status == CheckStatus.FAIL:
        message = (
            f"{_pct(ratio)} of transaction exceeds {_pct(policy.max_gas_percent)} limit"
        )
    elif status == CheckStatus.WARN:
        message = f"{_pct(ratio)} of transaction is high"
    else:
        message = f"{_usd(intent.gas_estimate_usd)} ({_pct(ratio)}) OK"
    return _check(status, "gas-cost", "Gas cost", message, ratio, policy.max_gas_percent)


def evaluate_session(
    intent: TransactionIntent,
    session: SessionKeyData,
) -> list[PolicyCheck]:
    """Session-key tier: permission, per-tx limit, budget, allowlists."""
    checks: list[PolicyCheck] = []
    amount = intent.amount_usd
    required = intent.type.value

    if required in {p.value for p in session.permissions}:
        checks.append(
            _check(
                CheckStatus.PASS,
                "session-permission",
                "Session permission",
                f'"{required}" allowed',
            )
        )
    else:
        checks.append(
            _check(
                CheckStatus.FAIL,
                "session-permission",
                "Session permission",
                f'Session doesn\'t have "{required}" permission',
            )
        )

    if amount > session.max_value_per_tx_usd:
        checks.append(
            _check(
                CheckStatus.FAIL,
                "session-tx-limit",
                "Session tx limit",
                f"Exceeds {_usd(session.max_value_per_tx_usd)} per-transaction limit",
                amount,
                session.max_value_per_tx_usd,
            )
        )
    else:
        checks.append(
            _check(
                CheckStatus.PASS,
                "session-tx-limit",
                "Session tx limit",
                f"{_usd(amount)} within per-transaction limit",
                amount,
                session.max_value_per_tx_usd,
            )
        )

    remaining = session.remaining_budget_usd
    projected = session.total_value_used_usd + amount
    if amount > remaining:
        checks.append(
            _check(
                CheckStatus.FAIL,
                "session-budget",
                "Session budget",
                f"Exceeds remaining budget of {_usd(remaining)}",
                amount,
                remaining,
            )
        )
    else:
        usage_pct = (
            projected / session.max_total_value_usd * 100.0
            if session.max_total_value_usd > 0
            else 100.0
        )
        if usage_pct > SESSION_BUDGET_WARN_PERCENT:
            checks.append(
                _check(
                    CheckStatus.WARN,
                    "session-budget",
                    "Session budget",
                    f"Will use {usage_pct:.0f}% of session budget",
                    projected,
                    session.max_total_value_usd,
                )
            )
        else:
            checks.append(
                _check(
                    CheckStatus.PASS,
                    "session-budget",
                    "Session budget",
                    f"{_usd(remaining)} remaining",
                    amount,
                    remaining,
                )
            )

    if session.chain_allowlist:
        allowed = intent.from_token.chain_id in session.chain_allowlist and (
            not intent.is_bridge or intent.to_token.chain_id in session.chain_allowlist
        )
        if not allowed:
            checks.append(
                _check(
                    CheckStatus.FAIL,
                    "session-chain",
                    "Session chains",
                    "Chain not in session allowlist",
                )
            )

    if session.token_allowlist:
        listed = {t.lower() for t in session.token_allowlist}
        if (
            intent.from_token.allowlist_key not in listed
            or intent.to_token.allowlist_key not in listed
        ):
            checks.append(
                _check(
                    CheckStatus.FAIL,
                    "session-token",
                    "Session tokens",
                    "Token not in session allowlist",
                )
            )

    return checks


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def aggregate(checks: list[PolicyCheck], trading_enabled: bool) -> PolicyEvaluationResult:
    blocking = sum(1 for c in checks if c.status == CheckStatus.FAIL)
    warnings = sum(1 for c in checks if c.status == CheckStatus.WARN)
    return PolicyEvaluationResult(
        can_proceed=blocking == 0 and trading_enabled,
        checks=checks,
        blocking_count=blocking,
        warning_count=warnings,
    )


def evaluate_intent(
    intent: Optional[TransactionIntent],
    wallet_address: Optional[str],
    data: PolicyData,
    now: datetime,
) -> PolicyEvaluationResult:
    """Evaluate an intent against already-resolved policy data.

    With no intent or no wallet there is nothing to gate and the result
    is an empty, proceedable evaluation.
    """
    if intent is None or not wallet_address:
        return PolicyEvaluationResult()

    checks: list[PolicyCheck] = []
    checks.extend(_system_checks(data))
    checks.extend(_list_checks(intent, data))

    policy = data.risk_policy
    checks.append(evaluate_tx_limit(intent, policy))
    checks.append(evaluate_slippage(intent, policy))
    checks.append(evaluate_gas_cost(intent, policy))

    session = select_active_session(data.sessions, now)
    if session is not None:
        checks.extend(evaluate_session(intent, session))

    return aggregate(checks, trading_enabled=data.system.can_trade)


# ---------------------------------------------------------------------------
# Evaluator facade
# ---------------------------------------------------------------------------


class PolicyEvaluator:
    """Resolves policy data for a wallet and evaluates intents against it.

    Never raises: when the data provider fails, the result carries a
    single blocking ``policy-data`` check instead.
    """

    def __init__(
        self,
        provider: IPolicyDataProvider,
        clock: IClock | None = None,
    ) -> None:
        self._provider = provider
        self._clock = clock or WallClock()

    def evaluate(
        self,
        intent: Optional[TransactionIntent],
        wallet_address: Optional[str],
    ) -> PolicyEvaluationResult:
        if intent is None or not wallet_address:
            return PolicyEvaluationResult()

        try:
            data = self._provider.resolve(intent, wallet_address)
        except Exception:
            logger.exception(
                "Policy data unavailable for wallet=%s; blocking intent",
                wallet_address,
            )
            result = aggregate(
                [
                    _check(
                        CheckStatus.FAIL,
                        "policy-data",
                        "Policy data",
                        "Policy data could not be loaded",
                    )
                ],
                trading_enabled=True,
            )
        else:
            result = evaluate_intent(intent, wallet_address, data, self._clock.now())

        metrics.record_evaluation(result)
        logger.debug(
            "Policy evaluation: wallet=%s type=%s amount_usd=%.2f "
            "can_proceed=%s blocking=%d warnings=%d",
            wallet_address,
            intent.type.value,
            intent.amount_usd,
            result.can_proceed,
            result.blocking_count,
            result.warning_count,
        )
        return result
