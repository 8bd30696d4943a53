"""Test TransactionIntent extraction from quote widget payloads."""

import pytest

from agentic_defi.core.enums import IntentType
from agentic_defi.policy.intent import (
    DEFAULT_SLIPPAGE_PERCENT,
    extract_transaction_intent,
    parse_numeric,
)

ROUTER = "0x2222222222222222222222222222222222222222"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"


def _swap_payload(**overrides):
    payload = {
        "quote_type": "swap",
        "input": {"address": USDC, "symbol": "USDC", "chainId": 8453},
        "output": {"address": WETH, "symbol": "WETH", "chainId": 8453},
        "usd_estimates": {"input": "$1,250.50", "gas": 2.4},
        "breakdown": {"fees": {"slippage_percent": "0.8%"}},
        "tx": {"to": ROUTER, "data": "0x1234"},
    }
    payload.update(overrides)
    return payload


class TestParseNumeric:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (12, 12.0),
            (1.5, 1.5),
            ("$1,234.50", 1234.5),
            ("0.5%", 0.5),
            ("  42 ", 42.0),
        ],
    )
    def test_parses(self, value, expected):
        assert parse_numeric(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", True, float("nan"), "inf", {}])
    def test_rejects(self, value):
        assert parse_numeric(value) is None


class TestExtractIntent:
    def test_swap_payload(self):
        intent = extract_transaction_intent(_swap_payload())
        assert intent.type == IntentType.SWAP
        assert intent.from_token.address == USDC
        assert intent.from_token.chain_id == 8453
        assert intent.to_token.symbol == "WETH"
        assert intent.amount_usd == 1250.5
        assert intent.slippage_percent == 0.8
        assert intent.gas_estimate_usd == 2.4
        assert intent.contract_address == ROUTER

    def test_bridge_destination_chain(self):
        payload = {
            "quote_type": "bridge",
            "from": {"token": {"address": USDC, "symbol": "USDC"}, "chain_id": 1},
            "to": {"token": {"address": USDC, "symbol": "USDC"}},
            "destinationChainId": 42161,
            "usd_estimates": {"input": 500},
        }
        intent = extract_transaction_intent(payload)
        assert intent.is_bridge
        assert intent.from_token.chain_id == 1
        assert intent.to_token.chain_id == 42161

    def test_swap_ignores_destination_chain(self):
        payload = _swap_payload(destinationChainId=10)
        payload["output"] = {"address": WETH, "symbol": "WETH"}
        intent = extract_transaction_intent(payload)
        assert intent.to_token.chain_id == 8453

    def test_output_symbol_from_breakdown(self):
        payload = _swap_payload(breakdown={"output": {"symbol": "cbETH"}})
        intent = extract_transaction_intent(payload)
        assert intent.to_token.symbol == "cbETH"

    def test_defaults(self):
        payload = {
            "quote_type": "swap",
            "input": {"address": USDC, "symbol": "USDC"},
            "output": {"address": WETH},
        }
        intent = extract_transaction_intent(payload)
        assert intent.amount_usd == 0.0
        assert intent.slippage_percent == DEFAULT_SLIPPAGE_PERCENT
        assert intent.gas_estimate_usd == 0.0
        assert intent.from_token.chain_id == 1
        assert intent.to_token.symbol == "UNKNOWN"
        assert intent.contract_address is None

    def test_output_usd_fallback(self):
        payload = _swap_payload(usd_estimates={"output": "99.5"})
        assert extract_transaction_intent(payload).amount_usd == 99.5

    def test_nothing_to_evaluate(self):
        assert extract_transaction_intent({"quote_type": "swap"}) is None
        assert extract_transaction_intent(None) is None

    @pytest.mark.parametrize(
        "widget_id, expected",
        [("relay_swap_quote", IntentType.SWAP), ("relay_bridge_quote", IntentType.BRIDGE)],
    )
    def test_type_inferred_from_widget(self, widget_id, expected):
        payload = _swap_payload()
        del payload["quote_type"]
        assert extract_transaction_intent(payload, widget_id).type == expected

    def test_unknown_quote_type_falls_back(self, caplog):
        payload = _swap_payload(quote_type="limit")
        intent = extract_transaction_intent(payload, "relay_swap_quote")
        assert intent.type == IntentType.SWAP
        assert "Unrecognised quote_type" in caplog.text
