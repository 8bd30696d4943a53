"""Prometheus metrics.

Counters for policy evaluations, executor transitions and recorded
outcomes.  Helpers keep label names in one place so callers never build
label dicts themselves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Info, start_http_server

if TYPE_CHECKING:
    from agentic_defi.policy.models import PolicyEvaluationResult

# ---------------------------------------------------------------------------
# System metrics
# ---------------------------------------------------------------------------

SYSTEM_INFO = Info("defi_system", "DeFi execution core information")

# ---------------------------------------------------------------------------
# Policy metrics
# ---------------------------------------------------------------------------

POLICY_EVALUATIONS = Counter(
    "defi_policy_evaluations_total",
    "Total policy evaluations",
    ["outcome"],
)

POLICY_CHECKS = Counter(
    "defi_policy_checks_total",
    "Policy checks emitted",
    ["check_id", "status"],
)

# ---------------------------------------------------------------------------
# Execution metrics
# ---------------------------------------------------------------------------

EXECUTION_TRANSITIONS = Counter(
    "defi_execution_transitions_total",
    "Step executor state transitions",
    ["source", "status"],
)

OUTCOMES_RECORDED = Counter(
    "defi_outcomes_recorded_total",
    "Execution outcomes written to the backend",
    ["kind"],
)

SESSION_USAGE_USD = Counter(
    "defi_session_usage_usd_total",
    "USD value applied to session budgets",
)


def start_metrics_server(port: int = 9090) -> None:
    """Start Prometheus metrics HTTP server in a background thread."""
    SYSTEM_INFO.info({"version": "0.1.0"})
    start_http_server(port)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def record_evaluation(result: PolicyEvaluationResult) -> None:
    """Record one evaluation and each check it emitted."""
    if result.can_proceed:
        outcome = "warn" if result.warning_count else "pass"
    else:
        outcome = "blocked"
    POLICY_EVALUATIONS.labels(outcome=outcome).inc()
    for check in result.checks:
        POLICY_CHECKS.labels(check_id=check.id, status=check.status.value).inc()


def record_transition(source: str, status: str) -> None:
    EXECUTION_TRANSITIONS.labels(source=source, status=status).inc()


def record_outcome(kind: str) -> None:
    """Record a completion or failure write ("completed" / "failed")."""
    OUTCOMES_RECORDED.labels(kind=kind).inc()
