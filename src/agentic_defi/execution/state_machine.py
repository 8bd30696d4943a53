"""Step executor status model.

One machine serves both execution sources.  Behaviour is written against
source-independent :class:`ExecutionPhase` values; :func:`status_for`
maps a phase to the status each source reports.  Every status change
goes through :func:`check_transition`.
"""

from __future__ import annotations

from agentic_defi.core.enums import ExecutionPhase, ExecutionSource, ExecutionStatus
from agentic_defi.core.errors import InvalidTransitionError

S = ExecutionStatus

# ---------------------------------------------------------------------------
# Phase -> status per source
# ---------------------------------------------------------------------------

PHASE_STATUS: dict[ExecutionSource, dict[ExecutionPhase, ExecutionStatus]] = {
    ExecutionSource.STRATEGY: {
        ExecutionPhase.PREPARE: S.PREPARING,
        ExecutionPhase.AWAIT_APPROVAL: S.AWAITING_APPROVAL_TX,
        ExecutionPhase.SEND_APPROVAL: S.APPROVING,
        ExecutionPhase.AWAIT_MAIN: S.AWAITING_MAIN_TX,
        ExecutionPhase.SEND_MAIN: S.EXECUTING,
        ExecutionPhase.CONFIRM: S.CONFIRMING,
        ExecutionPhase.ABORT: S.CANCELLED,
    },
    ExecutionSource.BACKEND: {
        ExecutionPhase.PREPARE: S.FETCHING_QUOTE,
        ExecutionPhase.AWAIT_APPROVAL: S.AWAITING_SIGNATURE,
        ExecutionPhase.SEND_APPROVAL: S.SIGNING,
        ExecutionPhase.AWAIT_MAIN: S.AWAITING_SIGNATURE,
        ExecutionPhase.SEND_MAIN: S.SIGNING,
        ExecutionPhase.CONFIRM: S.CONFIRMING,
        ExecutionPhase.ABORT: S.DISMISSED,
    },
}

# A new execution may only start from these.
INACTIVE_STATUSES = frozenset({S.IDLE, S.COMPLETED, S.DISMISSED, S.CANCELLED})

# Statuses where the machine waits for the user before sending.
WAITING_STATUSES = frozenset(
    {S.AWAITING_APPROVAL_TX, S.AWAITING_MAIN_TX, S.AWAITING_SIGNATURE}
)

# ---------------------------------------------------------------------------
# Valid state transitions
# ---------------------------------------------------------------------------

_START = frozenset({S.PREPARING, S.FETCHING_QUOTE, S.FAILED})
_ABORT = frozenset({S.FAILED, S.CANCELLED, S.DISMISSED})

_VALID_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    S.IDLE: _START,
    # User-initiated flow
    S.PREPARING: frozenset({S.AWAITING_APPROVAL_TX, S.AWAITING_MAIN_TX}) | _ABORT,
    # Allowance already sufficient: straight on to the next step
    S.AWAITING_APPROVAL_TX: frozenset({S.APPROVING, S.AWAITING_MAIN_TX}) | _ABORT,
    S.APPROVING: frozenset({S.CONFIRMING}) | _ABORT,
    S.AWAITING_MAIN_TX: frozenset({S.EXECUTING}) | _ABORT,
    S.EXECUTING: frozenset({S.CONFIRMING}) | _ABORT,
    # Backend-initiated flow
    S.FETCHING_QUOTE: frozenset({S.AWAITING_SIGNATURE}) | _ABORT,
    S.AWAITING_SIGNATURE: frozenset({S.SIGNING}) | _ABORT,
    S.SIGNING: frozenset({S.CONFIRMING}) | _ABORT,
    # Shared
    S.CONFIRMING: frozenset(
        {S.AWAITING_APPROVAL_TX, S.AWAITING_MAIN_TX, S.AWAITING_SIGNATURE, S.COMPLETED}
    )
    | _ABORT,
    S.FAILED: frozenset({S.CANCELLED, S.DISMISSED}),
    # Resting states: only a new execution leaves them
    S.COMPLETED: _START,
    S.CANCELLED: _START,
    S.DISMISSED: _START,
}


def status_for(source: ExecutionSource, phase: ExecutionPhase) -> ExecutionStatus:
    return PHASE_STATUS[source][phase]


def is_active(status: ExecutionStatus) -> bool:
    """True while an execution is in flight or failed and not yet cleared."""
    return status not in INACTIVE_STATUSES


def is_valid_transition(old: ExecutionStatus, new: ExecutionStatus) -> bool:
    if old == new:
        return True
    return new in _VALID_TRANSITIONS.get(old, frozenset())


def check_transition(old: ExecutionStatus, new: ExecutionStatus) -> None:
    """Raise :class:`InvalidTransitionError` for an illegal status change."""
    if not is_valid_transition(old, new):
        raise InvalidTransitionError(
            f"Invalid execution transition: {old.value} -> {new.value}"
        )
