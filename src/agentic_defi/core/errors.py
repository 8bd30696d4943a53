"""Custom exception hierarchy for the trust and execution core."""


class DefiError(Exception):
    """Base exception for all errors raised by this package."""


# --- Configuration ---
class ConfigError(DefiError):
    """Invalid or missing configuration."""


class PolicyConfigError(ConfigError):
    """A risk or system policy edit violates its constraints."""


# --- Validation ---
class ValidationError(DefiError):
    """Input is missing or malformed; the user can fix it and retry."""


class WalletNotConnectedError(ValidationError):
    """No wallet is connected."""


class StrategyConfigError(ValidationError):
    """Strategy configuration lacks token or amount information."""


class EmptyTransactionDataError(ValidationError):
    """A non-approval step has no calldata to send."""


# --- External services ---
class ExternalServiceError(DefiError):
    """A quote, routing, or RPC dependency failed."""


class QuoteServiceError(ExternalServiceError):
    """The quote/routing service failed or returned no executable route."""


class ChainReadError(ExternalServiceError):
    """An on-chain read (e.g. allowance lookup) failed."""


# --- Wallet ---
class WalletError(DefiError):
    """Wallet signing interface error."""


class WalletRejectedError(WalletError):
    """The user rejected the signature request."""


# --- Backend ---
class BackendError(DefiError):
    """Backend policy/session/execution store error."""


class ExecutionNotFoundError(BackendError):
    """No execution record with the given ID."""


class InvalidExecutionStateError(BackendError):
    """The execution record is not in a state that permits the operation."""


class SessionNotFoundError(BackendError):
    """No session key with the given ID."""


class SessionBudgetExceededError(BackendError):
    """Applying usage would push a session past its total budget."""

    def __init__(self, session_id: str, requested_usd: float, remaining_usd: float):
        self.session_id = session_id
        self.requested_usd = requested_usd
        self.remaining_usd = remaining_usd
        super().__init__(
            f"Session {session_id}: ${requested_usd:,.2f} exceeds "
            f"remaining budget ${remaining_usd:,.2f}"
        )


# --- Execution ---
class ExecutionError(DefiError):
    """Step executor error."""


class InvalidTransitionError(ExecutionError):
    """The state machine was asked to make an illegal transition."""
