"""Protocol interfaces for external collaborators.

The wallet, chain, quote service and backend stores are all outside this
package.  Implementations can be swapped (real wallet, test fakes)
without changing callers.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from .models import ExecutionTransaction, SwapQuote, SwapQuoteRequest

ConfirmedCallback = Callable[[str], Awaitable[None]]
FailedCallback = Callable[[str, str], Awaitable[None]]


# ---------------------------------------------------------------------------
# Quote / routing service
# ---------------------------------------------------------------------------

@runtime_checkable
class IQuoteService(Protocol):
    """Swap/bridge quote and transaction preparation."""

    async def request(self, req: SwapQuoteRequest) -> SwapQuote: ...


# ---------------------------------------------------------------------------
# Wallet & chain
# ---------------------------------------------------------------------------

@runtime_checkable
class IWalletSigner(Protocol):
    """Wallet signing interface.

    Each send resolves to a transaction hash once the wallet has signed
    and broadcast, or raises ``WalletRejectedError`` when the user
    declines.
    """

    @property
    def address(self) -> Optional[str]: ...

    @property
    def chain_id(self) -> Optional[int]: ...

    async def send_transaction(self, tx: ExecutionTransaction) -> str: ...

    async def approve(
        self,
        token_address: str,
        spender_address: str,
        amount: int,
        chain_id: int,
    ) -> str: ...


@runtime_checkable
class IChainReader(Protocol):
    """Read-only chain client."""

    async def allowance(
        self,
        token_address: str,
        owner_address: str,
        spender_address: str,
        chain_id: int,
    ) -> int: ...


@runtime_checkable
class IConfirmationWatcher(Protocol):
    """Watches a transaction hash and calls back on receipt.

    Callbacks fire asynchronously; ``watch`` itself never blocks on the
    chain.
    """

    def watch(
        self,
        tx_hash: str,
        chain_id: int,
        on_confirmed: ConfirmedCallback,
        on_failed: FailedCallback,
    ) -> None: ...

    def unwatch(self, tx_hash: str) -> None: ...


# ---------------------------------------------------------------------------
# Backend stores
# ---------------------------------------------------------------------------

@runtime_checkable
class IExecutionStore(Protocol):
    """Backend record of strategy executions."""

    async def complete(
        self,
        execution_id: str,
        tx_hash: Optional[str] = None,
        output_data: Optional[dict[str, Any]] = None,
    ) -> None: ...

    async def fail(
        self,
        execution_id: str,
        error_message: str,
        error_code: Optional[str] = None,
        recoverable: bool = False,
    ) -> None: ...

    async def get_ready_to_sign(self, wallet_address: str) -> list[Any]: ...


@runtime_checkable
class ISessionLedger(Protocol):
    """Authoritative, atomic session-budget accounting."""

    async def record_usage(
        self,
        session_id: str,
        execution_id: str,
        value_usd: float,
        tx_hash: Optional[str] = None,
        action_type: str = "swap",
    ) -> Any: ...
