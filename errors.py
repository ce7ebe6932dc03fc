# app/errors.py
"""
Error taxonomy shared by the registry, the chain adapters and the client.

Every failure ends up as user-visible text, so each class carries a
message that can be shown as-is.
"""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class ClaimRegistryError(Exception):
    """Base class. `retryable` marks errors that can succeed later unchanged."""
    retryable = False


class ClaimValidationError(ClaimRegistryError):
    pass


class ClaimNotFoundError(ClaimRegistryError):
    def __init__(self, message: str = "Claim does not exist"):
        super().__init__(message)


class InsufficientRewardBalanceError(ClaimRegistryError):
    retryable = True

    def __init__(self, message: str = "Insufficient contract balance for reward"):
        super().__init__(message)


class ChallengePeriodNotElapsedError(ClaimRegistryError):
    retryable = True

    def __init__(self, message: str = (
        "This claim cannot be settled yet. The UMA challenge period may not "
        "have ended. Please wait a few more minutes and try again."
    )):
        super().__init__(message)


class AlreadyResolvedError(ClaimRegistryError):
    def __init__(self, message: str = (
        "This claim has already been resolved. "
        "Please refresh the status to see the latest information."
    )):
        super().__init__(message)


class ChainConnectionError(ClaimRegistryError):
    retryable = True


class SignerFundingError(ChainConnectionError):
    def __init__(self, message: str = "The service signer has insufficient funds for gas"):
        super().__init__(message)


class ClientBusyError(ClaimRegistryError):
    def __init__(self, message: str = "Another request is still in progress"):
        super().__init__(message)


class TransactionNotFoundError(ClaimRegistryError):
    def __init__(self, message: str = "Transaction not found or not confirmed yet"):
        super().__init__(message)


class AssertionIdNotFoundError(ClaimRegistryError):
    def __init__(self, message: str = "Could not find assertion ID in transaction logs"):
        super().__init__(message)


# Substrings seen in revert reasons from the registry contract and UMA OOv3.
_REVERT_PATTERNS = (
    ("claim does not exist", ClaimNotFoundError),
    # node-side wallet failure, checked before the registry's balance revert
    ("insufficient funds for gas", SignerFundingError),
    ("insufficient contract balance", InsufficientRewardBalanceError),
    ("balance for reward", InsufficientRewardBalanceError),
    ("challenge period", ChallengePeriodNotElapsedError),
    ("assertion not expired", ChallengePeriodNotElapsedError),
    ("already resolved", AlreadyResolvedError),
    ("already settled", AlreadyResolvedError),
)

_CONNECTION_PATTERNS = (
    "connection refused",
    "max retries exceeded",
    "not connected",
    "timed out",
)


def classify_chain_error(exc: Exception) -> ClaimRegistryError:
    """Map a raw web3/RPC exception onto the taxonomy above."""
    if isinstance(exc, ClaimRegistryError):
        return exc

    message = str(exc)
    lowered = message.lower()

    for needle, cls in _REVERT_PATTERNS:
        if needle in lowered:
            return cls()

    if isinstance(exc, (ConnectionError, TimeoutError)) or any(
        needle in lowered for needle in _CONNECTION_PATTERNS
    ):
        return ChainConnectionError(f"Chain connection failed: {message}")

    logger.debug("Unclassified chain error: %r", exc)
    return ClaimRegistryError(message)
