"""Policy layer: system, risk and session-key policies and the evaluator.

Modules:
    models.py     Policy configs, session keys, checks and results
    evaluator.py  PolicyEvaluator and the pure evaluate_intent
    stores.py     RiskPolicyStore, SystemPolicyStore
    sessions.py   SessionKeyStore and the session-budget ledger
    provider.py   Policy data providers feeding the evaluator
    intent.py     TransactionIntent extraction from quote payloads
"""

from agentic_defi.policy.evaluator import PolicyEvaluator, evaluate_intent
from agentic_defi.policy.intent import extract_transaction_intent
from agentic_defi.policy.models import (
    RISK_PRESETS,
    PolicyCheck,
    PolicyData,
    PolicyEvaluationResult,
    RiskPolicyConfig,
    SessionKeyData,
    SystemPolicy,
)
from agentic_defi.policy.provider import (
    IPolicyDataProvider,
    StaticPolicyDataProvider,
    StorePolicyDataProvider,
)
from agentic_defi.policy.sessions import SessionKeyStore
from agentic_defi.policy.stores import RiskPolicyStore, SystemPolicyStore

__all__ = [
    "IPolicyDataProvider",
    "PolicyCheck",
    "PolicyData",
    "PolicyEvaluationResult",
    "PolicyEvaluator",
    "RISK_PRESETS",
    "RiskPolicyConfig",
    "RiskPolicyStore",
    "SessionKeyData",
    "SessionKeyStore",
    "StaticPolicyDataProvider",
    "StorePolicyDataProvider",
    "SystemPolicy",
    "SystemPolicyStore",
    "evaluate_intent",
    "extract_transaction_intent",
]
