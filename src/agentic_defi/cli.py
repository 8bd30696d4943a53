"""CLI entry point for the DeFi trust and execution core."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import click

from .core.enums import RiskPresetKey
from .core.errors import DefiError

if TYPE_CHECKING:
    from .core.config import Settings


@click.group()
@click.option("--config", "config_path", default=None, help="TOML config file path")
@click.option("--log-level", default=None, help="Override log level")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """Agentic DeFi policy and execution tools."""
    from .core.config import load_settings
    from .observability.logger import setup_logging

    settings = load_settings(config_path)
    setup_logging(
        level=log_level or settings.observability.log_level,
        format=settings.observability.log_format,
    )
    ctx.obj = settings


@main.command()
@click.argument("intent_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--wallet", required=True, help="Wallet address being evaluated")
@click.option(
    "--preset",
    type=click.Choice([p.value for p in RiskPresetKey]),
    default=None,
    help="Risk preset to evaluate against (defaults apply otherwise)",
)
@click.option("--quote-payload", is_flag=True, help="INTENT_FILE is a quote widget payload")
@click.option("--emergency-stop", default=None, help="Evaluate with emergency stop on, with reason")
@click.option("--maintenance", default=None, help="Evaluate in maintenance, with message")
@click.pass_obj
def evaluate(
    settings: Settings,
    intent_file: str,
    wallet: str,
    preset: str | None,
    quote_payload: bool,
    emergency_stop: str | None,
    maintenance: str | None,
) -> None:
    """Evaluate a transaction intent and print the result as JSON."""
    from .core.models import TransactionIntent
    from .policy import (
        PolicyEvaluator,
        RiskPolicyStore,
        StorePolicyDataProvider,
        SystemPolicyStore,
        extract_transaction_intent,
    )

    raw = json.loads(Path(intent_file).read_text())
    if quote_payload:
        intent = extract_transaction_intent(raw, raw.get("widget_id"))
    else:
        intent = TransactionIntent.model_validate(raw)

    system = SystemPolicyStore()
    if emergency_stop:
        system.set_emergency_stop(True, reason=emergency_stop, admin_id="cli")
    if maintenance:
        system.set_maintenance(True, message=maintenance, admin_id="cli")
    risk = RiskPolicyStore(persist_dir=settings.policy.risk_policy_dir)
    if preset:
        risk.apply_preset(wallet, preset)

    evaluator = PolicyEvaluator(StorePolicyDataProvider(system, risk))
    result = evaluator.evaluate(intent, wallet)
    click.echo(result.model_dump_json(indent=2))
    if not result.can_proceed:
        raise SystemExit(1)


@main.command()
def presets() -> None:
    """List the risk presets."""
    from .policy.models import RISK_PRESETS

    for preset in RISK_PRESETS.values():
        config = preset.to_config()
        click.echo(f"{preset.key.value:14s} {preset.name}: {preset.description}")
        click.echo(
            f"    max tx ${config.max_single_tx_usd:,.0f}  "
            f"approval above ${config.require_approval_above_usd:,.0f}  "
            f"slippage {config.max_slippage_percent:.1f}%  "
            f"gas {config.max_gas_percent:.1f}%"
        )


@main.command()
@click.argument("strategy_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--strategy-type", required=True, help="dca, limit_order, stop_loss, ...")
@click.option("--wallet", required=True, help="Wallet address that will sign")
@click.option("--chain-id", type=int, default=None, help="Chain the wallet is on")
@click.option("--strategy-id", default="cli", help="Strategy ID recorded on the plan")
@click.pass_obj
def plan(
    settings: Settings,
    strategy_file: str,
    strategy_type: str,
    wallet: str,
    chain_id: int | None,
    strategy_id: str,
) -> None:
    """Build an execution plan against the configured quote service."""
    import asyncio

    from .core.ids import new_id
    from .execution import ExecutionPlanner, HttpQuoteService

    config = json.loads(Path(strategy_file).read_text())

    async def _run() -> str:
        async with HttpQuoteService(
            settings.quote_service.base_url,
            timeout=settings.quote_service.timeout_seconds,
        ) as quotes:
            planner = ExecutionPlanner(quotes, settings.execution)
            result = await planner.plan(
                new_id(),
                strategy_id,
                strategy_type,
                config,
                wallet_address=wallet,
                chain_id=chain_id,
            )
            return result.model_dump_json(indent=2)

    try:
        output = asyncio.run(_run())
    except DefiError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(output)


if __name__ == "__main__":
    main()
