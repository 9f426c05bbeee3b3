"""Exception taxonomy for the payment handshake.

Every class carries a protocol ``code``. The gate and the interceptor turn
these into structured outcomes. Configuration and signer capability
errors raised while wiring things up surface to the caller.
"""

from __future__ import annotations

from typing import Any

from x402_mcp.constants import (
    CONFIGURATION_ERROR,
    INVALID_PAYMENT,
    NO_COMPATIBLE_REQUIREMENTS,
    PAYMENT_EXCEEDS_CAP,
    PRICE_COMPUTE_FAILED,
    SETTLEMENT_FAILED,
    USER_DECLINED,
)


class X402Error(Exception):
    """Base exception for payment protocol conditions."""

    code: str = "X402_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


# -- server side -------------------------------------------------------------


class ConfigurationError(X402Error):
    """Deployment mismatch. Fatal, never retried."""

    code = CONFIGURATION_ERROR


class UnsupportedNetworkError(ConfigurationError):
    """The configured network belongs to no known family."""

    def __init__(self, network: str) -> None:
        super().__init__(f"Unsupported network: {network}")
        self.network = network


class FeePayerNotFoundError(ConfigurationError):
    """The facilitator advertises no fee payer for a fee-delegated network."""

    def __init__(self, network: str) -> None:
        super().__init__(
            f"The facilitator did not provide a fee payer for network: {network}."
        )
        self.network = network


class PriceComputationError(X402Error):
    """Price cannot be expressed in the network's asset."""

    code = PRICE_COMPUTE_FAILED


class DecodingError(X402Error):
    """Malformed payment token."""

    code = INVALID_PAYMENT


class VerificationFailure(X402Error):
    """Facilitator rejected the payment."""

    code = INVALID_PAYMENT

    def __init__(self, reason: str | None, payer: str | None = None) -> None:
        super().__init__(reason or INVALID_PAYMENT, code=reason or INVALID_PAYMENT)
        self.payer = payer


class ExecutionFailure(X402Error):
    """The priced operation failed; no settlement is attempted.

    ``result`` is the outcome handed back to the caller in place of a
    settled one.
    """

    code = "EXECUTION_FAILED"

    def __init__(self, message: str, result: dict[str, Any]) -> None:
        super().__init__(message)
        self.result = result


class SettlementFailure(X402Error):
    """Settlement failed after the operation already ran."""

    code = SETTLEMENT_FAILED

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or SETTLEMENT_FAILED, code=reason or SETTLEMENT_FAILED)


# -- client side -------------------------------------------------------------


class ClientDeclineError(X402Error):
    code = USER_DECLINED


class ClientCapExceededError(X402Error):
    code = PAYMENT_EXCEEDS_CAP

    def __init__(self, required: int, cap: int) -> None:
        super().__init__(f"Payment exceeds client cap: {required} > {cap}")
        self.required = required
        self.cap = cap


class ClientSelectionError(X402Error):
    code = NO_COMPATIBLE_REQUIREMENTS


class SignerCapabilityError(X402Error):
    """Signer is unusable; raised before any remote call is made."""

    code = "SIGNER_MISCONFIGURED"
