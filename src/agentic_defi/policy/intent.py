"""Build a :class:`TransactionIntent` from a quote-widget payload.

The chat agent renders swap and bridge quotes as loosely-shaped JSON
payloads.  :func:`extract_transaction_intent` pulls out what the policy
evaluator needs and tolerates the field-name variants seen in practice
(``input``/``from``, ``chainId``/``chain_id``, numbers sent as
``"$1,234.50"`` strings).
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Optional

from agentic_defi.core.enums import IntentType
from agentic_defi.core.models import TokenRef, TransactionIntent

logger = logging.getLogger(__name__)

DEFAULT_SLIPPAGE_PERCENT = 0.5
SWAP_QUOTE_WIDGET_ID = "relay_swap_quote"

_NUMERIC_NOISE = re.compile(r"[,$%]")


def parse_numeric(value: Any) -> Optional[float]:
    """Parse numbers sent as numbers or display strings; ``None`` if not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = _NUMERIC_NOISE.sub("", value).strip()
        if not cleaned:
            return None
        try:
            parsed = float(cleaned)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _first(*values: Any) -> Any:
    """First truthy value, mirroring ``a or b or c`` over optional lookups."""
    for v in values:
        if v:
            return v
    return None


def _section(payload: dict[str, Any], *keys: str) -> dict[str, Any]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, dict):
            return value
    return {}


def _resolve_type(payload: dict[str, Any], widget_id: Optional[str]) -> IntentType:
    quote_type = payload.get("quote_type")
    if isinstance(quote_type, str):
        lowered = quote_type.lower()
        if lowered in (IntentType.SWAP.value, IntentType.BRIDGE.value):
            return IntentType(lowered)
        logger.warning("Unrecognised quote_type %r; inferring from widget", quote_type)
    # Bridge is the stricter evaluation (both chains checked)
    return IntentType.SWAP if widget_id == SWAP_QUOTE_WIDGET_ID else IntentType.BRIDGE


def extract_transaction_intent(
    payload: Optional[dict[str, Any]],
    widget_id: Optional[str] = None,
) -> Optional[TransactionIntent]:
    """Return the intent described by a quote payload.

    Returns ``None`` when the payload carries no USD amount and no token
    addresses, i.e. there is nothing to evaluate.
    """
    payload = payload or {}
    intent_type = _resolve_type(payload, widget_id)

    token_in = _section(payload, "input", "from")
    nested_in = _section(token_in, "token")
    from_chain = int(
        _first(
            token_in.get("chainId"),
            token_in.get("chain_id"),
            payload.get("chainId"),
            payload.get("chain_id"),
        )
        or 1
    )
    from_token = TokenRef(
        address=str(_first(token_in.get("address"), nested_in.get("address")) or ""),
        symbol=str(_first(token_in.get("symbol"), nested_in.get("symbol")) or "UNKNOWN"),
        chain_id=from_chain,
    )

    token_out = _section(payload, "output", "to")
    nested_out = _section(token_out, "token")
    breakdown = _section(payload, "breakdown")
    output_section = _section(breakdown, "output")
    destination = None
    if intent_type == IntentType.BRIDGE:
        destination = _first(
            payload.get("destinationChainId"), payload.get("destination_chain_id")
        )
    to_chain = int(
        _first(token_out.get("chainId"), token_out.get("chain_id"), destination)
        or from_chain
    )
    to_token = TokenRef(
        address=str(_first(token_out.get("address"), nested_out.get("address")) or ""),
        symbol=str(
            _first(
                output_section.get("symbol"),
                token_out.get("symbol"),
                nested_out.get("symbol"),
            )
            or "UNKNOWN"
        ),
        chain_id=to_chain,
    )

    usd = _section(payload, "usd_estimates")
    input_usd = parse_numeric(
        _first(usd.get("input"), token_in.get("value_usd"), token_in.get("usd_value"))
    )
    output_usd = parse_numeric(
        _first(
            usd.get("output"),
            output_section.get("value_usd"),
            token_out.get("value_usd"),
        )
    )
    amount_usd = input_usd or output_usd or 0.0

    fees = breakdown.get("fees") if isinstance(breakdown.get("fees"), dict) else None
    fees = fees or _section(payload, "fees")
    slippage = (
        parse_numeric(
            _first(fees.get("slippage_percent"), fees.get("slippage"), payload.get("slippage"))
        )
        or DEFAULT_SLIPPAGE_PERCENT
    )
    gas_usd = (
        parse_numeric(_first(usd.get("gas"), fees.get("gas_usd"), fees.get("gas"))) or 0.0
    )

    tx = _section(payload, "tx")
    contract = tx.get("to") if isinstance(tx.get("to"), str) else None

    if amount_usd == 0 and not from_token.address and not to_token.address:
        return None

    return TransactionIntent(
        type=intent_type,
        from_token=from_token,
        to_token=to_token,
        amount_usd=amount_usd,
        slippage_percent=slippage,
        gas_estimate_usd=gas_usd,
        contract_address=contract,
    )
