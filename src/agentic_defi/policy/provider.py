"""Policy data providers.

A provider resolves everything the evaluator needs for one
``(intent, wallet)`` pair: system status, the wallet's risk policy, its
session keys, and the list verdicts for the intent's chains, tokens and
target contract.  The evaluator itself never touches a store.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from agentic_defi.core.models import TransactionIntent

from .models import ListVerdicts, PolicyData
from .sessions import SessionKeyStore
from .stores import RiskPolicyStore, SystemPolicyStore


@runtime_checkable
class IPolicyDataProvider(Protocol):
    """Resolves policy data for an intent and wallet."""

    def resolve(self, intent: TransactionIntent, wallet_address: str) -> PolicyData: ...


class StorePolicyDataProvider:
    """Resolves policy data from the in-process stores."""

    def __init__(
        self,
        system_store: SystemPolicyStore,
        risk_store: RiskPolicyStore,
        session_store: SessionKeyStore | None = None,
    ) -> None:
        self._system = system_store
        self._risk = risk_store
        self._sessions = session_store

    def resolve(self, intent: TransactionIntent, wallet_address: str) -> PolicyData:
        system = self._system
        lists = ListVerdicts(
            from_chain_allowed=system.is_chain_allowed(intent.from_token.chain_id),
            to_chain_allowed=system.is_chain_allowed(intent.to_token.chain_id),
            from_token_blocked=system.is_token_blocked(intent.from_token.address),
            to_token_blocked=system.is_token_blocked(intent.to_token.address),
            contract_blocked=(
                system.is_contract_blocked(intent.contract_address)
                if intent.contract_address
                else False
            ),
        )
        sessions = (
            self._sessions.list_by_wallet(wallet_address)
            if self._sessions is not None
            else []
        )
        return PolicyData(
            system=system.get_status(),
            risk_policy=self._risk.get_or_default(wallet_address),
            sessions=sessions,
            lists=lists,
        )


class StaticPolicyDataProvider:
    """Returns the same pre-built :class:`PolicyData` for every call.

    Useful for the CLI and for tests that pin the evaluation inputs.
    """

    def __init__(self, data: PolicyData | None = None) -> None:
        self.data = data or PolicyData()

    def resolve(self, intent: TransactionIntent, wallet_address: str) -> PolicyData:
        return self.data
