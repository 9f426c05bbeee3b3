"""x402 MCP — pay-per-call settlement for MCP tool calls.

Servers price tools and settle through an x402 facilitator; clients pay
with a wallet signer and retry once.
"""

__version__ = "0.1.0"

from x402_mcp.client import PaymentInterceptor, X402Client, decorate_tools, with_x402_client
from x402_mcp.codec import decode_payment, encode_payment
from x402_mcp.config import FacilitatorConfig, X402ClientConfig, X402Config
from x402_mcp.constants import (
    INVALID_PAYMENT,
    PAYMENT_REQUIRED,
    PRICE_COMPUTE_FAILED,
    SETTLEMENT_FAILED,
    X402_VERSION,
)
from x402_mcp.errors import (
    ClientCapExceededError,
    ClientDeclineError,
    ClientSelectionError,
    ConfigurationError,
    DecodingError,
    ExecutionFailure,
    FeePayerNotFoundError,
    PriceComputationError,
    SettlementFailure,
    SignerCapabilityError,
    UnsupportedNetworkError,
    VerificationFailure,
    X402Error,
)
from x402_mcp.facilitator import FacilitatorClient, FacilitatorError
from x402_mcp.pricing import process_price_to_atomic_amount
from x402_mcp.requirements import RequirementsBuilder
from x402_mcp.server import PaymentGate, RequestExtra, X402Server, with_x402
from x402_mcp.signers import EvmAccountSigner, build_exact_evm_payment, compatible_networks
from x402_mcp.types import (
    PaymentPayload,
    PaymentRequirements,
    SettlementResult,
    SupportedResponse,
    VerificationResult,
)

__all__ = [
    "ClientCapExceededError",
    "ClientDeclineError",
    "ClientSelectionError",
    "ConfigurationError",
    "DecodingError",
    "EvmAccountSigner",
    "ExecutionFailure",
    "FacilitatorClient",
    "FacilitatorConfig",
    "FacilitatorError",
    "FeePayerNotFoundError",
    "INVALID_PAYMENT",
    "PAYMENT_REQUIRED",
    "PRICE_COMPUTE_FAILED",
    "PaymentGate",
    "PaymentInterceptor",
    "PaymentPayload",
    "PaymentRequirements",
    "PriceComputationError",
    "RequestExtra",
    "RequirementsBuilder",
    "SETTLEMENT_FAILED",
    "SettlementFailure",
    "SettlementResult",
    "SignerCapabilityError",
    "SupportedResponse",
    "UnsupportedNetworkError",
    "VerificationFailure",
    "VerificationResult",
    "X402Client",
    "X402ClientConfig",
    "X402Config",
    "X402Error",
    "X402Server",
    "X402_VERSION",
    "build_exact_evm_payment",
    "compatible_networks",
    "decode_payment",
    "decorate_tools",
    "encode_payment",
    "process_price_to_atomic_amount",
    "with_x402",
    "with_x402_client",
]
