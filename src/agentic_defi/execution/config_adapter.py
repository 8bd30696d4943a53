"""Strategy config normalisation.

Strategy configs arrive in two shapes: camelCase token objects written by
the strategy UI (``fromToken: {symbol, address}``) and flat snake_case
strings written by the chat agent (``from_token: "USDC"``).  Shapes are
tried in a fixed priority order and the first complete match wins, so
the planner only ever sees a :class:`SwapParams`.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from agentic_defi.core.errors import StrategyConfigError

# Tried in order; the first positive number wins.
USD_AMOUNT_KEYS = ("amount_usd", "amountPerExecutionUsd", "amountPerExecution")
TOKEN_AMOUNT_KEYS = ("amount_tokens", "amount")
SLIPPAGE_KEYS = ("maxSlippageBps", "max_slippage_bps")


class SwapParams(BaseModel):
    """Normalised swap parameters for one execution."""

    model_config = ConfigDict(frozen=True)

    token_in: str
    token_out: str
    token_in_address: Optional[str] = None
    token_out_address: Optional[str] = None
    amount_usd: Optional[float] = None
    amount_tokens: Optional[float] = None
    slippage_bps: int = 50


def _token_object(value: Any) -> tuple[Optional[str], Optional[str]]:
    if isinstance(value, dict):
        return value.get("symbol") or None, value.get("address") or None
    return None, None


def _positive(config: dict[str, Any], keys: tuple[str, ...]) -> Optional[float]:
    for key in keys:
        value = config.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and value > 0:
            return float(value)
    return None


def normalize_swap_config(
    config: dict[str, Any],
    *,
    default_slippage_bps: int = 50,
    strategy_type: str = "strategy",
) -> SwapParams:
    """Resolve tokens, amount and slippage from a strategy config.

    Raises:
        StrategyConfigError: No shape yields both tokens, or no amount
            field is present.
    """
    in_symbol, in_address = _token_object(config.get("fromToken"))
    out_symbol, out_address = _token_object(config.get("toToken"))

    if not (in_symbol and out_symbol):
        in_symbol = config.get("from_token") or None
        out_symbol = config.get("to_token") or None
        in_address = config.get("from_token_address") or None
        out_address = config.get("to_token_address") or None

    if not in_symbol or not out_symbol:
        raise StrategyConfigError(
            f"{strategy_type} strategy missing token configuration. "
            f"Found: from={in_symbol}, to={out_symbol}"
        )

    amount_usd = _positive(config, USD_AMOUNT_KEYS)
    amount_tokens = None if amount_usd is not None else _positive(config, TOKEN_AMOUNT_KEYS)
    if amount_usd is None and amount_tokens is None:
        raise StrategyConfigError(
            f"{strategy_type} strategy missing amount. Expected one of: "
            f"{', '.join(USD_AMOUNT_KEYS + TOKEN_AMOUNT_KEYS)}"
        )

    slippage = _positive(config, SLIPPAGE_KEYS)

    return SwapParams(
        token_in=str(in_symbol),
        token_out=str(out_symbol),
        token_in_address=in_address,
        token_out_address=out_address,
        amount_usd=amount_usd,
        amount_tokens=amount_tokens,
        slippage_bps=int(slippage) if slippage is not None else default_slippage_bps,
    )
