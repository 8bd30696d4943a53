"""Test the execution planner's step layout per strategy type."""

import pytest

from agentic_defi.core.config import ExecutionConfig
from agentic_defi.core.enums import StepType
from agentic_defi.core.errors import (
    QuoteServiceError,
    StrategyConfigError,
    WalletNotConnectedError,
)
from agentic_defi.core.models import NATIVE_TOKEN
from agentic_defi.execution.planner import ExecutionPlanner

WALLET = "0x1111111111111111111111111111111111111111"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
ROUTER = "0x2222222222222222222222222222222222222222"
SWAP_CALLDATA = "0x3593564c0000"
APPROVE_CALLDATA = "0x095ea7b30000"
DCA_CONFIG = {
    "fromToken": {"symbol": "USDC", "address": USDC},
    "toToken": {"symbol": "WETH", "address": "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"},
    "amountPerExecutionUsd": 100,
}


async def _plan(quotes, strategy_type="dca", config=None, **kwargs):
    kwargs.setdefault("wallet_address", WALLET)
    planner = ExecutionPlanner(quotes)
    return await planner.plan(
        "exec-1", "strat-1", strategy_type, config or DCA_CONFIG, **kwargs
    )


class TestPeriodicBuy:
    async def test_swap_only_without_approval_step(self, make_quote_service):
        plan = await _plan(make_quote_service())
        assert [s.type for s in plan.steps] == [StepType.SWAP]
        swap = plan.steps[0]
        assert swap.transaction.to == ROUTER
        assert swap.transaction.data == SWAP_CALLDATA
        assert swap.description == "Swap 100 USDC to ~0.0412 WETH"
        assert plan.execution_id == "exec-1"
        assert plan.strategy_id == "strat-1"

    async def test_approval_step_without_calldata(self, make_quote_service, make_quote):
        plan = await _plan(make_quote_service(quote=make_quote(approval=True)))
        assert [s.type for s in plan.steps] == [StepType.APPROVAL, StepType.SWAP]
        approval = plan.steps[0]
        assert approval.transaction.data == "0x"
        assert approval.token_address == USDC
        assert approval.spender_address == ROUTER

    async def test_prebuilt_approval_carried(self, make_quote_service, make_quote):
        quote = make_quote(approval=True, prebuilt_approval=True)
        plan = await _plan(make_quote_service(quote=quote))
        assert plan.steps[0].transaction.data == APPROVE_CALLDATA

    async def test_native_input_skips_approval(self, make_quote_service, make_quote):
        config = {
            "fromToken": {"symbol": "ETH", "address": NATIVE_TOKEN},
            "toToken": {"symbol": "USDC", "address": USDC},
            "amountPerExecutionUsd": 50,
        }
        quotes = make_quote_service(quote=make_quote(approval=True))
        plan = await _plan(quotes, config=config)
        assert [s.type for s in plan.steps] == [StepType.SWAP]

    async def test_symbol_only_config_keeps_quoted_approval(
        self, make_quote_service, make_quote
    ):
        config = {"from_token": "USDC", "to_token": "ETH", "amount_usd": 100}
        quote = make_quote(approval=True, prebuilt_approval=True)
        plan = await _plan(make_quote_service(quote=quote), config=config)

        assert [s.type for s in plan.steps] == [StepType.APPROVAL, StepType.SWAP]
        approval = plan.steps[0]
        assert approval.transaction.data == APPROVE_CALLDATA
        assert approval.token_address == USDC
        assert approval.spender_address == ROUTER

    async def test_symbol_only_config_without_calldata_skips_approval(
        self, make_quote_service, make_quote
    ):
        config = {"from_token": "USDC", "to_token": "ETH", "amount_usd": 100}
        quotes = make_quote_service(quote=make_quote(approval=True))
        plan = await _plan(quotes, config=config)
        assert [s.type for s in plan.steps] == [StepType.SWAP]

    async def test_request_fields(self, make_quote_service):
        quotes = make_quote_service()
        await _plan(quotes, chain_id=8453)
        req = quotes.requests[0]
        assert req.chain == "base"
        assert req.amount_usd == 100.0
        assert req.amount_in is None
        assert req.slippage_bps == 50
        assert req.wallet_address == WALLET

    async def test_token_amount_request(self, make_quote_service):
        quotes = make_quote_service()
        config = {"from_token": "WETH", "to_token": "USDC", "amount": 0.5}
        await _plan(quotes, config=config, chain_id=31337)
        req = quotes.requests[0]
        assert req.amount_in == 0.5
        assert req.amount_usd is None
        assert req.chain == "ethereum"

    async def test_warnings_and_amount_propagate(self, make_quote_service, make_quote):
        quote = make_quote(warnings=["High price impact"], amount_in=40, price_in_usd=2.5)
        plan = await _plan(make_quote_service(quote=quote))
        assert plan.warnings == ("High price impact",)
        assert plan.amount_usd == pytest.approx(100.0)

    async def test_amount_falls_back_to_config_usd(self, make_quote_service, make_quote):
        plan = await _plan(make_quote_service(quote=make_quote(price_in_usd=0)))
        assert plan.amount_usd == 100.0


class TestPriceTriggered:
    @pytest.mark.parametrize("strategy_type", ["limit_order", "stop_loss", "take_profit"])
    async def test_single_swap_no_approval_detection(
        self, strategy_type, make_quote_service, make_quote
    ):
        quotes = make_quote_service(quote=make_quote(approval=True))
        plan = await _plan(quotes, strategy_type)
        assert [s.type for s in plan.steps] == [StepType.SWAP]
        assert plan.steps[0].description.startswith("Execute ")
        assert "USDC -> WETH" in plan.steps[0].description


class TestPlaceholders:
    async def test_rebalance(self, make_quote_service):
        quotes = make_quote_service()
        plan = await _plan(quotes, "rebalance", config={})
        assert plan.steps[0].type == StepType.CUSTOM
        assert plan.steps[0].transaction.data == "0x"
        assert "multiple transactions" in plan.warnings[0]
        assert quotes.requests == []

    async def test_unknown_type(self, make_quote_service):
        plan = await _plan(make_quote_service(), "grid_bot", config={})
        assert plan.steps[0].type == StepType.CUSTOM
        assert '"grid_bot"' in plan.warnings[0]


class TestPlannerErrors:
    async def test_missing_wallet(self, make_quote_service):
        quotes = make_quote_service()
        with pytest.raises(WalletNotConnectedError):
            await _plan(quotes, wallet_address=None)
        assert quotes.requests == []

    async def test_bad_config(self, make_quote_service):
        with pytest.raises(StrategyConfigError):
            await _plan(make_quote_service(), config={"amount": 1})

    async def test_quote_transport_failure_wrapped(self, failing_quotes):
        with pytest.raises(QuoteServiceError, match="Failed to get swap quote: upstream"):
            await _plan(failing_quotes)

    async def test_unsuccessful_quote(self, make_quote_service, make_quote):
        with pytest.raises(QuoteServiceError, match="no route"):
            await _plan(make_quote_service(quote=make_quote(success=False)))

    async def test_no_executable_tx(self, make_quote_service, make_quote):
        with pytest.raises(QuoteServiceError, match="executable transaction"):
            await _plan(make_quote_service(quote=make_quote(with_tx=False)))

    async def test_configured_chain_names(self, make_quote_service):
        quotes = make_quote_service()
        planner = ExecutionPlanner(quotes, ExecutionConfig(chain_names={56: "bsc"}))
        await planner.plan(
            "exec-1", "strat-1", "dca", DCA_CONFIG, wallet_address=WALLET, chain_id=56
        )
        assert quotes.requests[0].chain == "bsc"
