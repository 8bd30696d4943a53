"""Session key store and authoritative session-budget ledger.

Session keys are delegated, budget- and permission-limited grants.  The
store lists and administers them; :meth:`SessionKeyStore.record_usage`
is the single place ``total_value_used_usd`` changes.  It runs under a
lock so concurrent executions against the same session cannot
double-spend, refuses increments past ``max_total_value_usd``, and is
idempotent per execution ID so a retried completion is counted once.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Optional

from agentic_defi.core.clock import IClock, WallClock
from agentic_defi.core.enums import Permission, SessionStatus
from agentic_defi.core.errors import (
    PolicyConfigError,
    SessionBudgetExceededError,
    SessionNotFoundError,
)
from agentic_defi.core.ids import new_session_id
from agentic_defi.observability import metrics

from .models import SessionKeyData, UsageEntry

logger = logging.getLogger(__name__)

_DAY = timedelta(days=1)


class SessionKeyStore:
    """In-memory session keys keyed by session ID.

    Parameters
    ----------
    clock:
        Time source for expiry decisions.
    usage_log_size:
        Number of usage entries retained per session.
    """

    def __init__(self, clock: IClock | None = None, usage_log_size: int = 100) -> None:
        self._clock = clock or WallClock()
        self._usage_log_size = usage_log_size
        self._sessions: dict[str, SessionKeyData] = {}
        # session_id -> execution IDs already applied to the budget
        self._applied: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Creation & lookup
    # ------------------------------------------------------------------

    def create(
        self,
        wallet_address: str,
        *,
        permissions: list[Permission],
        max_value_per_tx_usd: float,
        max_total_value_usd: float,
        expires_at: datetime,
        max_transactions: int | None = None,
        chain_allowlist: list[int] | None = None,
        token_allowlist: list[str] | None = None,
        contract_allowlist: list[str] | None = None,
        agent_id: str | None = None,
    ) -> SessionKeyData:
        now = self._clock.now()
        session = SessionKeyData(
            session_id=new_session_id(now),
            wallet_address=wallet_address.lower(),
            agent_id=agent_id,
            permissions=permissions,
            max_value_per_tx_usd=max_value_per_tx_usd,
            max_total_value_usd=max_total_value_usd,
            max_transactions=max_transactions,
            chain_allowlist=chain_allowlist or [],
            token_allowlist=token_allowlist or [],
            contract_allowlist=contract_allowlist or [],
            expires_at=expires_at,
            created_at=now,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info(
            "Session created: id=%s wallet=%s budget=%.2f expires=%s",
            session.session_id,
            session.wallet_address,
            max_total_value_usd,
            expires_at.isoformat(),
        )
        return session

    def add(self, session: SessionKeyData) -> None:
        """Register an existing session record (e.g. loaded from the backend)."""
        with self._lock:
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> SessionKeyData:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def list_by_wallet(
        self,
        wallet_address: str,
        *,
        include_expired: bool = False,
        include_revoked: bool = False,
    ) -> list[SessionKeyData]:
        """Sessions for a wallet in creation order."""
        key = wallet_address.lower()
        now = self._clock.now()
        result = []
        for s in self._sessions.values():
            if s.wallet_address != key:
                continue
            if not include_expired and s.expires_at < now:
                continue
            if not include_revoked and s.status == SessionStatus.REVOKED:
                continue
            result.append(s)
        return result

    def active_count(self, wallet_address: str) -> int:
        now = self._clock.now()
        return sum(
            1
            for s in self.list_by_wallet(wallet_address, include_expired=True)
            if s.is_active_at(now)
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def revoke(self, session_id: str, reason: str) -> SessionKeyData:
        with self._lock:
            session = self.get(session_id)
            updated = session.model_copy(
                update={
                    "status": SessionStatus.REVOKED,
                    "revoked_at": self._clock.now(),
                    "revoke_reason": reason,
                }
            )
            self._sessions[session_id] = updated
        logger.info("Session revoked: id=%s reason=%s", session_id, reason)
        return updated

    def extend(self, session_id: str, additional_days: int) -> datetime:
        """Extend expiry, re-activating an expired session.

        Extends from now when already expired, otherwise from the
        current expiry.
        """
        if not 1 <= additional_days <= 365:
            raise PolicyConfigError("Additional days must be between 1 and 365")
        with self._lock:
            session = self.get(session_id)
            if session.status == SessionStatus.REVOKED:
                raise PolicyConfigError("Cannot extend a revoked session")
            if session.status == SessionStatus.EXHAUSTED:
                raise PolicyConfigError("Cannot extend an exhausted session")
            now = self._clock.now()
            base = now if session.expires_at < now else session.expires_at
            new_expiry = base + additional_days * _DAY
            self._sessions[session_id] = session.model_copy(
                update={"expires_at": new_expiry, "status": SessionStatus.ACTIVE}
            )
        return new_expiry

    def cleanup_expired(self) -> int:
        """Mark active sessions past their expiry as expired."""
        now = self._clock.now()
        expired = 0
        with self._lock:
            for sid, s in list(self._sessions.items()):
                if s.status == SessionStatus.ACTIVE and s.expires_at < now:
                    self._sessions[sid] = s.model_copy(
                        update={"status": SessionStatus.EXPIRED}
                    )
                    expired += 1
        if expired:
            logger.info("Marked %d sessions expired", expired)
        return expired

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def budget_usage(self, session_id: str) -> dict[str, float]:
        s = self.get(session_id)
        percent = (
            s.total_value_used_usd / s.max_total_value_usd * 100.0
            if s.max_total_value_usd > 0
            else 0.0
        )
        return {
            "used": s.total_value_used_usd,
            "total": s.max_total_value_usd,
            "percent": percent,
        }

    def days_remaining(self, session_id: str) -> int:
        s = self.get(session_id)
        remaining = s.expires_at - self._clock.now()
        return max(0, remaining.days)

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def record_usage(
        self,
        session_id: str,
        execution_id: str,
        value_usd: float,
        tx_hash: Optional[str] = None,
        action_type: str = "swap",
    ) -> SessionKeyData:
        """Atomically add executed value to a session's running total.

        Raises:
            SessionNotFoundError: Unknown session.
            SessionBudgetExceededError: The increment would exceed
                ``max_total_value_usd``.  Nothing is applied.
        """
        if value_usd < 0:
            raise ValueError(f"Usage cannot be negative: {value_usd}")

        with self._lock:
            session = self.get(session_id)
            applied = self._applied.setdefault(session_id, set())
            if execution_id in applied:
                logger.info(
                    "Session usage already applied: session=%s execution=%s",
                    session_id,
                    execution_id,
                )
                return session

            remaining = session.remaining_budget_usd
            if value_usd > remaining:
                raise SessionBudgetExceededError(session_id, value_usd, remaining)

            now = self._clock.now()
            total = session.total_value_used_usd + value_usd
            count = session.transaction_count + 1
            status = session.status
            if total >= session.max_total_value_usd or (
                session.max_transactions is not None
                and count >= session.max_transactions
            ):
                status = SessionStatus.EXHAUSTED

            log = [
                *session.usage_log,
                UsageEntry(
                    execution_id=execution_id,
                    action_type=action_type,
                    value_usd=value_usd,
                    tx_hash=tx_hash,
                    timestamp=now,
                ),
            ][-self._usage_log_size:]

            updated = session.model_copy(
                update={
                    "total_value_used_usd": total,
                    "transaction_count": count,
                    "status": status,
                    "last_used_at": now,
                    "usage_log": log,
                }
            )
            self._sessions[session_id] = updated
            applied.add(execution_id)

        metrics.SESSION_USAGE_USD.inc(value_usd)
        logger.info(
            "Session usage recorded: session=%s execution=%s value=%.2f "
            "total=%.2f/%.2f status=%s",
            session_id,
            execution_id,
            value_usd,
            total,
            session.max_total_value_usd,
            status.value,
        )
        return updated
