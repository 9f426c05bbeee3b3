"""Constants for x402 payment gating over MCP tool calls."""

X402_VERSION = 1
SCHEME_EXACT = "exact"

# Request/response _meta keys and the fallback HTTP header.
META_PAYMENT = "x402/payment"
META_ERROR = "x402/error"
META_PAYMENT_RESPONSE = "x402/payment-response"
META_CLIENT_ERROR = "x402/client-error"
PAYMENT_HEADER = "X-PAYMENT"

# Protocol error codes. Facilitators add their own reasons, so treat this
# as an open set of strings, never an enum.
PRICE_COMPUTE_FAILED = "PRICE_COMPUTE_FAILED"
PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
INVALID_PAYMENT = "INVALID_PAYMENT"
SETTLEMENT_FAILED = "SETTLEMENT_FAILED"
CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

# Client-side outcome codes.
USER_DECLINED = "USER_DECLINED"
NO_COMPATIBLE_REQUIREMENTS = "NO_COMPATIBLE_REQUIREMENTS"
PAYMENT_EXCEEDS_CAP = "PAYMENT_EXCEEDS_CAP"

DEFAULT_MAX_TIMEOUT_SECONDS = 300
DEFAULT_MIME_TYPE = "application/json"
DEFAULT_FACILITATOR_URL = "https://x402.org/facilitator"
DEFAULT_MAX_PAYMENT_VALUE = 100_000  # 0.10 USDC at 6 decimals

RESOURCE_PREFIX = "x402://"
