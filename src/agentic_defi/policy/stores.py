"""Risk policy and system policy stores.

:class:`RiskPolicyStore` keeps one :class:`RiskPolicyConfig` per wallet.
Defaults materialise on first access; edits go through :meth:`save` or
:meth:`apply_preset`; :meth:`reset` returns a wallet to the defaults.
Policies are never deleted.

:class:`SystemPolicyStore` holds the singleton :class:`SystemPolicy`.

Usage::

    risk = RiskPolicyStore(persist_dir="data/risk_policies")
    risk.apply_preset("0xabc...", RiskPresetKey.CONSERVATIVE)
    config = risk.get_or_default("0xabc...")

    system = SystemPolicyStore()
    system.set_emergency_stop(True, reason="Oracle incident", admin_id="ops")
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from agentic_defi.core.enums import RiskPresetKey
from agentic_defi.core.errors import PolicyConfigError

from .models import (
    RISK_PRESETS,
    RiskPolicyConfig,
    SystemPolicy,
    SystemPolicyStatus,
)

logger = logging.getLogger(__name__)


def validate_risk_policy(config: RiskPolicyConfig) -> None:
    """Raise :class:`PolicyConfigError` if the config is inconsistent."""
    if config.warn_slippage_percent >= config.max_slippage_percent:
        raise PolicyConfigError("Warn slippage must be less than max slippage")
    if config.warn_gas_percent >= config.max_gas_percent:
        raise PolicyConfigError("Warn gas must be less than max gas")
    if config.require_approval_above_usd > config.max_single_tx_usd:
        raise PolicyConfigError(
            "Approval threshold cannot exceed max transaction limit"
        )
    if not 1 <= config.max_position_percent <= 100:
        raise PolicyConfigError("Max position percent must be between 1 and 100")
    if not 0.1 <= config.max_slippage_percent <= 10:
        raise PolicyConfigError("Max slippage must be between 0.1% and 10%")
    if not 0.1 <= config.max_gas_percent <= 20:
        raise PolicyConfigError("Max gas percent must be between 0.1% and 20%")


# ---------------------------------------------------------------------------
# Risk policy
# ---------------------------------------------------------------------------


class RiskPolicyStore:
    """Per-wallet risk policies with optional JSON file persistence."""

    def __init__(self, persist_dir: str | None = None) -> None:
        self._policies: dict[str, RiskPolicyConfig] = {}
        self._persist_dir = Path(persist_dir) if persist_dir else None

        if self._persist_dir is not None:
            self._persist_dir.mkdir(parents=True, exist_ok=True)
            self._load_from_dir()

    def get_or_default(self, wallet_address: str) -> RiskPolicyConfig:
        """Return the wallet's policy, materialising defaults if absent."""
        key = wallet_address.lower()
        policy = self._policies.get(key)
        if policy is None:
            policy = RiskPolicyConfig()
            self._policies[key] = policy
            logger.debug("RiskPolicyStore: defaults materialised for %s", key)
        return policy

    def save(self, wallet_address: str, config: RiskPolicyConfig) -> RiskPolicyConfig:
        """Validate and store a policy for the wallet."""
        validate_risk_policy(config)
        key = wallet_address.lower()
        self._policies[key] = config
        self._persist(key, config)
        logger.info(
            "RiskPolicyStore: saved policy for %s (max_tx=%.0f, max_slippage=%.2f%%)",
            key,
            config.max_single_tx_usd,
            config.max_slippage_percent,
        )
        return config

    def apply_preset(
        self, wallet_address: str, preset: RiskPresetKey | str
    ) -> RiskPolicyConfig:
        """Replace the wallet's policy with a preset over the defaults."""
        preset_key = RiskPresetKey(preset)
        return self.save(wallet_address, RISK_PRESETS[preset_key].to_config())

    def reset(self, wallet_address: str) -> RiskPolicyConfig:
        """Return the wallet to the default policy."""
        key = wallet_address.lower()
        config = RiskPolicyConfig()
        self._policies[key] = config
        self._persist(key, config)
        logger.info("RiskPolicyStore: reset policy for %s", key)
        return config

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, key: str, config: RiskPolicyConfig) -> None:
        if self._persist_dir is None:
            return
        path = self._persist_dir / f"{key}.json"
        path.write_text(config.model_dump_json(indent=2))

    def _load_from_dir(self) -> None:
        assert self._persist_dir is not None
        for path in sorted(self._persist_dir.glob("*.json")):
            try:
                config = RiskPolicyConfig.model_validate_json(path.read_text())
            except ValueError:
                logger.warning("RiskPolicyStore: skipping unreadable %s", path)
                continue
            self._policies[path.stem] = config
        if self._policies:
            logger.info(
                "RiskPolicyStore: loaded %d policies from %s",
                len(self._policies),
                self._persist_dir,
            )


# ---------------------------------------------------------------------------
# System policy
# ---------------------------------------------------------------------------


class SystemPolicyStore:
    """Singleton platform controls and chain/token/contract lists."""

    def __init__(self, policy: SystemPolicy | None = None) -> None:
        self._policy = policy or SystemPolicy()

    @property
    def policy(self) -> SystemPolicy:
        return self._policy

    def get_status(self) -> SystemPolicyStatus:
        p = self._policy
        if p.emergency_stop:
            message: Optional[str] = p.emergency_stop_reason
        elif p.in_maintenance:
            message = p.maintenance_message
        else:
            message = None
        return SystemPolicyStatus(
            operational=not p.emergency_stop and not p.in_maintenance,
            emergency_stop=p.emergency_stop,
            in_maintenance=p.in_maintenance,
            message=message,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def is_chain_allowed(self, chain_id: int) -> bool:
        if chain_id in self._policy.blocked_chains:
            return False
        return chain_id in self._policy.allowed_chains

    def is_token_blocked(self, token_address: str) -> bool:
        if not token_address:
            return False
        needle = token_address.lower()
        return any(a.lower() == needle for a in self._policy.blocked_tokens)

    def is_contract_blocked(self, contract_address: str) -> bool:
        if not contract_address:
            return False
        needle = contract_address.lower()
        return any(a.lower() == needle for a in self._policy.blocked_contracts)

    # ------------------------------------------------------------------
    # Admin mutations
    # ------------------------------------------------------------------

    def set_emergency_stop(
        self, enabled: bool, reason: str | None = None, admin_id: str | None = None
    ) -> SystemPolicy:
        if enabled and not reason:
            raise PolicyConfigError("Reason is required when enabling emergency stop")
        self._update(
            admin_id,
            emergency_stop=enabled,
            emergency_stop_reason=reason if enabled else None,
        )
        logger.warning(
            "SystemPolicyStore: emergency stop %s by %s (%s)",
            "ENABLED" if enabled else "disabled",
            admin_id,
            reason or "-",
        )
        return self._policy

    def set_maintenance(
        self, enabled: bool, message: str | None = None, admin_id: str | None = None
    ) -> SystemPolicy:
        self._update(
            admin_id,
            in_maintenance=enabled,
            maintenance_message=message if enabled else None,
        )
        logger.info(
            "SystemPolicyStore: maintenance %s by %s",
            "on" if enabled else "off",
            admin_id,
        )
        return self._policy

    def block_token(self, token_address: str, admin_id: str | None = None) -> None:
        if not self.is_token_blocked(token_address):
            self._update(
                admin_id,
                blocked_tokens=[*self._policy.blocked_tokens, token_address.lower()],
            )

    def unblock_token(self, token_address: str, admin_id: str | None = None) -> None:
        needle = token_address.lower()
        self._update(
            admin_id,
            blocked_tokens=[a for a in self._policy.blocked_tokens if a.lower() != needle],
        )

    def block_contract(self, contract_address: str, admin_id: str | None = None) -> None:
        if not self.is_contract_blocked(contract_address):
            self._update(
                admin_id,
                blocked_contracts=[
                    *self._policy.blocked_contracts,
                    contract_address.lower(),
                ],
            )

    def unblock_contract(
        self, contract_address: str, admin_id: str | None = None
    ) -> None:
        needle = contract_address.lower()
        self._update(
            admin_id,
            blocked_contracts=[
                a for a in self._policy.blocked_contracts if a.lower() != needle
            ],
        )

    def block_chain(self, chain_id: int, admin_id: str | None = None) -> None:
        if chain_id not in self._policy.blocked_chains:
            self._update(
                admin_id, blocked_chains=[*self._policy.blocked_chains, chain_id]
            )

    def unblock_chain(self, chain_id: int, admin_id: str | None = None) -> None:
        self._update(
            admin_id,
            blocked_chains=[c for c in self._policy.blocked_chains if c != chain_id],
        )

    def _update(self, admin_id: str | None, **changes: object) -> None:
        self._policy = self._policy.model_copy(
            update={
                **changes,
                "updated_at": datetime.now(timezone.utc),
                "updated_by": admin_id,
            }
        )
