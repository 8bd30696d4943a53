"""Execution planner: strategy config -> ordered on-chain steps.

For a strategy execution the planner normalises the config, asks the
quote service for a route and lays out the steps the executor will walk:

- ``dca`` (periodic buy): an ``approval`` step when the quote supplies
  approval calldata, or calls for an approval and the spent token is a
  known ERC-20; then the ``swap`` step
- ``limit_order`` / ``stop_loss`` / ``take_profit``: a single ``swap``
  step.  The trigger already fired upstream; no approval detection is
  done for these types.
- ``rebalance`` and unknown types: a placeholder ``custom`` step and a
  warning.  The placeholder carries no calldata and the executor will
  refuse to send it.

Plans are immutable.  A retry always plans again.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from agentic_defi.core.config import ExecutionConfig
from agentic_defi.core.enums import (
    PRICE_TRIGGERED_STRATEGIES,
    StepType,
    StrategyType,
)
from agentic_defi.core.errors import QuoteServiceError, WalletNotConnectedError
from agentic_defi.core.interfaces import IQuoteService
from agentic_defi.core.models import (
    EMPTY_CALLDATA,
    NATIVE_TOKEN,
    ExecutionPlan,
    ExecutionStep,
    ExecutionTransaction,
    SwapQuote,
    SwapQuoteRequest,
    is_native_token,
)

from .config_adapter import SwapParams, normalize_swap_config

logger = logging.getLogger(__name__)


class ExecutionPlanner:
    """Builds :class:`ExecutionPlan` objects against a quote service."""

    def __init__(
        self,
        quote_service: IQuoteService,
        config: ExecutionConfig | None = None,
    ) -> None:
        self._quotes = quote_service
        self._config = config or ExecutionConfig()

    async def plan(
        self,
        execution_id: str,
        strategy_id: str,
        strategy_type: str,
        config: dict[str, Any],
        *,
        wallet_address: Optional[str],
        chain_id: Optional[int] = None,
    ) -> ExecutionPlan:
        """Plan one execution.

        Raises:
            WalletNotConnectedError: No wallet address.
            StrategyConfigError: Config has no usable tokens or amount.
            QuoteServiceError: Quote failed or returned no executable tx.
        """
        if not wallet_address:
            raise WalletNotConnectedError("Wallet not connected")

        chain = chain_id or self._config.default_chain_id
        try:
            kind: Optional[StrategyType] = StrategyType(strategy_type)
        except ValueError:
            kind = None

        if kind == StrategyType.DCA:
            plan = await self._plan_periodic_buy(
                execution_id, strategy_id, strategy_type, config, wallet_address, chain
            )
        elif kind in PRICE_TRIGGERED_STRATEGIES:
            plan = await self._plan_triggered(
                execution_id, strategy_id, strategy_type, config, wallet_address, chain
            )
        elif kind == StrategyType.REBALANCE:
            plan = self._placeholder(
                execution_id,
                strategy_id,
                strategy_type,
                chain,
                "Rebalance portfolio (multi-step)",
                "Rebalance execution requires multiple transactions",
            )
        else:
            plan = self._placeholder(
                execution_id,
                strategy_id,
                strategy_type,
                chain,
                f"Execute {strategy_type}",
                f'Strategy type "{strategy_type}" execution not fully implemented',
            )

        logger.info(
            "Plan built: execution=%s type=%s steps=%d warnings=%d",
            execution_id,
            strategy_type,
            plan.step_count,
            len(plan.warnings),
        )
        return plan

    # ------------------------------------------------------------------
    # Strategy types
    # ------------------------------------------------------------------

    async def _plan_periodic_buy(
        self,
        execution_id: str,
        strategy_id: str,
        strategy_type: str,
        config: dict[str, Any],
        wallet: str,
        chain: int,
    ) -> ExecutionPlan:
        params = normalize_swap_config(
            config,
            default_slippage_bps=self._config.default_slippage_bps,
            strategy_type=strategy_type,
        )
        quote = await self._quote(params, wallet, chain)
        main_tx = self._executable_tx(quote, chain)

        steps: list[ExecutionStep] = []
        approval = quote.route.approval_step
        prebuilt = None
        if approval is not None:
            prebuilt = next((i.data for i in approval.items if i.data is not None), None)
        approval_tx: Optional[ExecutionTransaction] = None
        if prebuilt is not None:
            # Quote-supplied calldata is sent as-is, whatever the config says
            approval_tx = prebuilt.to_execution_tx(chain)
        elif approval is not None and not is_native_token(params.token_in_address):
            # No calldata: the executor reads the allowance and approves
            approval_tx = ExecutionTransaction(
                to=params.token_in_address or NATIVE_TOKEN,
                data=EMPTY_CALLDATA,
                chain_id=chain,
            )
        if approval_tx is not None:
            steps.append(
                ExecutionStep(
                    type=StepType.APPROVAL,
                    description=f"Approve {params.token_in} for swap",
                    transaction=approval_tx,
                    token_address=params.token_in_address or approval_tx.to,
                    spender_address=main_tx.to,
                )
            )

        steps.append(
            ExecutionStep(
                type=StepType.SWAP,
                description=(
                    f"Swap {quote.amount_in:g} {params.token_in} to "
                    f"~{quote.amount_out_est:.4f} {params.token_out}"
                ),
                transaction=main_tx,
            )
        )
        return ExecutionPlan(
            strategy_id=strategy_id,
            execution_id=execution_id,
            strategy_type=strategy_type,
            steps=tuple(steps),
            warnings=tuple(quote.warnings),
            amount_usd=_executed_usd(quote, params),
        )

    async def _plan_triggered(
        self,
        execution_id: str,
        strategy_id: str,
        strategy_type: str,
        config: dict[str, Any],
        wallet: str,
        chain: int,
    ) -> ExecutionPlan:
        params = normalize_swap_config(
            config,
            default_slippage_bps=self._config.default_slippage_bps,
            strategy_type=strategy_type,
        )
        quote = await self._quote(params, wallet, chain)
        step = ExecutionStep(
            type=StepType.SWAP,
            description=(
                f"Execute {strategy_type.replace('_', ' ')}: "
                f"{params.token_in} -> {params.token_out}"
            ),
            transaction=self._executable_tx(quote, chain),
        )
        return ExecutionPlan(
            strategy_id=strategy_id,
            execution_id=execution_id,
            strategy_type=strategy_type,
            steps=(step,),
            warnings=tuple(quote.warnings),
            amount_usd=_executed_usd(quote, params),
        )

    @staticmethod
    def _placeholder(
        execution_id: str,
        strategy_id: str,
        strategy_type: str,
        chain: int,
        description: str,
        warning: str,
    ) -> ExecutionPlan:
        step = ExecutionStep(
            type=StepType.CUSTOM,
            description=description,
            transaction=ExecutionTransaction(
                to=NATIVE_TOKEN, data=EMPTY_CALLDATA, chain_id=chain
            ),
        )
        return ExecutionPlan(
            strategy_id=strategy_id,
            execution_id=execution_id,
            strategy_type=strategy_type,
            steps=(step,),
            warnings=(warning,),
        )

    # ------------------------------------------------------------------
    # Quote helpers
    # ------------------------------------------------------------------

    async def _quote(self, params: SwapParams, wallet: str, chain: int) -> SwapQuote:
        req = SwapQuoteRequest(
            token_in=params.token_in,
            token_out=params.token_out,
            amount_usd=params.amount_usd,
            amount_in=params.amount_tokens if params.amount_usd is None else None,
            chain=self._config.chain_name(chain),
            slippage_bps=params.slippage_bps,
            wallet_address=wallet,
        )
        try:
            quote = await self._quotes.request(req)
        except QuoteServiceError as exc:
            raise QuoteServiceError(f"Failed to get swap quote: {exc}") from exc
        if not quote.success:
            raise QuoteServiceError("Swap quote failed - no route available")
        return quote

    @staticmethod
    def _executable_tx(quote: SwapQuote, chain: int) -> ExecutionTransaction:
        tx = quote.route.executable_tx
        if tx is None:
            raise QuoteServiceError(
                "Quote service did not return executable transaction data"
            )
        return tx.to_execution_tx(chain)


def _executed_usd(quote: SwapQuote, params: SwapParams) -> Optional[float]:
    """USD value the swap will move, as priced by the quote."""
    if quote.price_in_usd > 0 and quote.amount_in > 0:
        return quote.price_in_usd * quote.amount_in
    return params.amount_usd
