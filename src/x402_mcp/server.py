"""Server side: gate priced tools behind an x402 payment.

Per call the gate walks

    priced -> (no token) payment required
           -> decoding -> (bad token) INVALID_PAYMENT
           -> verifying -> (rejected) facilitator reason + payer
           -> executing -> (handler failed) failed result, no settlement
           -> settling -> (failed) SETTLEMENT_FAILED
           -> done, result annotated with the settlement receipt

Every protocol condition comes back as an outcome dict; nothing is raised
into the transport.

A settlement failure after a successful run discards the result although
the tool's side effect has already happened. Priced tools should be
idempotent or retry-safe.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from x402_mcp.codec import decode_payment
from x402_mcp.config import X402Config
from x402_mcp.constants import (
    META_PAYMENT,
    PAYMENT_HEADER,
    PAYMENT_REQUIRED,
    PRICE_COMPUTE_FAILED,
)
from x402_mcp.errors import (
    ConfigurationError,
    DecodingError,
    ExecutionFailure,
    PriceComputationError,
    SettlementFailure,
    VerificationFailure,
)
from x402_mcp.facilitator import Facilitator, FacilitatorClient, FacilitatorError
from x402_mcp.pricing import AtomicAmount, Price, process_price_to_atomic_amount
from x402_mcp.requirements import RequirementsBuilder, SupportedKindsCache
from x402_mcp.results import is_error, payment_error, text_result, with_receipt
from x402_mcp.types import PaymentPayload, PaymentRequirements

logger = logging.getLogger(__name__)


@dataclass
class RequestExtra:
    """Per-call request context handed to tool handlers."""

    meta: dict[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)


ToolHandler = Callable[[dict[str, Any], RequestExtra], Awaitable[dict[str, Any]]]
PriceResolver = Callable[[Price, str], AtomicAmount]
PaymentDecoder = Callable[[str], PaymentPayload]


class ToolServer(Protocol):
    """The base tool-registration surface being extended."""

    def tool(
        self,
        name: str,
        description: str,
        params_schema: dict[str, Any],
        annotations: dict[str, Any],
        handler: ToolHandler,
    ) -> Any: ...


def extract_payment_token(extra: RequestExtra | None) -> str | None:
    """``_meta["x402/payment"]`` first, then the ``X-PAYMENT`` header.

    The header is only consulted when the metadata slot is absent.
    """
    if extra is None:
        return None
    if extra.meta and META_PAYMENT in extra.meta:
        token = extra.meta[META_PAYMENT]
        return token if isinstance(token, str) and token else None
    wanted = PAYMENT_HEADER.lower()
    for name, value in (extra.headers or {}).items():
        if name.lower() == wanted and isinstance(value, str) and value:
            return value
    return None


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class PaymentGate:
    """Runs the verify → execute → settle handshake for priced tools."""

    def __init__(
        self,
        config: X402Config,
        facilitator: Facilitator,
        *,
        price_resolver: PriceResolver = process_price_to_atomic_amount,
        decoder: PaymentDecoder = decode_payment,
        requirements_builder: RequirementsBuilder | None = None,
    ) -> None:
        self._config = config
        self._facilitator = facilitator
        self._resolve_price = price_resolver
        self._decode = decoder
        if requirements_builder is None:
            cache = SupportedKindsCache(
                facilitator.supported, config.supported_cache_ttl_seconds
            )
            requirements_builder = RequirementsBuilder(
                cache.get,
                max_timeout_seconds=config.max_timeout_seconds,
                mime_type=config.mime_type,
            )
        self._builder = requirements_builder

    @property
    def version(self) -> int:
        return self._config.version

    async def requirements_for(
        self, name: str, description: str, price: Price
    ) -> PaymentRequirements:
        amount = self._resolve_price(price, self._config.network)
        return await self._builder.build(
            name, description, amount, self._config.network, self._config.recipient
        )

    async def handle(
        self,
        name: str,
        description: str,
        price: Price,
        handler: ToolHandler,
        args: dict[str, Any],
        extra: RequestExtra | None,
    ) -> dict[str, Any]:
        try:
            requirements = await self.requirements_for(name, description, price)
        except PriceComputationError as e:
            logger.warning("Price for %s could not be computed: %s", name, e)
            return payment_error(self.version, PRICE_COMPUTE_FAILED)
        except ConfigurationError as e:
            logger.error("Cannot price %s on %s: %s", name, self._config.network, e)
            return payment_error(self.version, str(e))
        except FacilitatorError as e:
            logger.error("Facilitator /supported failed for %s: %s", name, e)
            return payment_error(self.version, f"Facilitator request failed: {e}")

        token = extract_payment_token(extra)
        if token is None:
            return payment_error(self.version, PAYMENT_REQUIRED, accepts=[requirements])

        try:
            return await self._run_paid(token, requirements, handler, args, extra)
        except ExecutionFailure as e:
            return e.result
        except VerificationFailure as e:
            return payment_error(self.version, e.code, accepts=[requirements], payer=e.payer)
        except (DecodingError, SettlementFailure) as e:
            return payment_error(self.version, e.code, accepts=[requirements])

    async def _run_paid(
        self,
        token: str,
        requirements: PaymentRequirements,
        handler: ToolHandler,
        args: dict[str, Any],
        extra: RequestExtra | None,
    ) -> dict[str, Any]:
        payload = self._decode(token)
        payload.x402_version = self.version

        try:
            verification = await self._facilitator.verify(payload, requirements)
        except Exception as e:  # noqa: BLE001
            logger.warning("Verification request failed for %s: %s", requirements.resource, e)
            raise VerificationFailure(None) from e
        if not verification.is_valid:
            logger.warning(
                "Payment for %s rejected: %s (payer %s)",
                requirements.resource, verification.invalid_reason, verification.payer,
            )
            raise VerificationFailure(verification.invalid_reason, verification.payer)

        result = await self._execute(handler, args, extra)

        try:
            settlement = await self._facilitator.settle(payload, requirements)
        except Exception as e:  # noqa: BLE001
            logger.warning("Settlement request failed for %s: %s", requirements.resource, e)
            raise SettlementFailure() from e
        if not settlement.success:
            logger.warning(
                "Settlement for %s failed after execution: %s",
                requirements.resource, settlement.error_reason,
            )
            raise SettlementFailure(settlement.error_reason)

        logger.info(
            "Settled %s on %s: tx %s from %s",
            requirements.resource, settlement.network, settlement.transaction, settlement.payer,
        )
        return with_receipt(result, settlement)

    @staticmethod
    async def _execute(
        handler: ToolHandler, args: dict[str, Any], extra: RequestExtra | None
    ) -> dict[str, Any]:
        try:
            result = await handler(args, extra or RequestExtra())
        except Exception as e:  # noqa: BLE001
            logger.warning("Paid tool raised: %s", e)
            raise ExecutionFailure(
                str(e), text_result(f"Tool execution failed: {e}", is_error=True)
            ) from e
        if is_error(result):
            raise ExecutionFailure("Tool reported an error", result)
        return result

    def wrap(
        self, name: str, description: str, price: Price, handler: ToolHandler
    ) -> ToolHandler:
        async def _paid(args: dict[str, Any], extra: RequestExtra) -> dict[str, Any]:
            return await self.handle(name, description, price, handler, args, extra)

        return _paid


# ---------------------------------------------------------------------------
# Server composition
# ---------------------------------------------------------------------------


class X402Server:
    """A tool server plus ``paid_tool``.

    Wraps the base server instead of patching it; every other attribute
    is forwarded to the wrapped server.
    """

    def __init__(self, server: ToolServer, gate: PaymentGate) -> None:
        self._server = server
        self.gate = gate

    def __getattr__(self, name: str) -> Any:
        return getattr(self._server, name)

    def tool(
        self,
        name: str,
        description: str,
        params_schema: dict[str, Any],
        annotations: dict[str, Any],
        handler: ToolHandler,
    ) -> Any:
        return self._server.tool(name, description, params_schema, annotations, handler)

    def paid_tool(
        self,
        name: str,
        description: str,
        price_usd: Price,
        params_schema: dict[str, Any],
        annotations: dict[str, Any] | None,
        handler: ToolHandler,
    ) -> Any:
        """Register ``handler`` behind the payment gate at ``price_usd`` per call."""
        priced_annotations = {
            **(annotations or {}),
            "paymentHint": True,
            "paymentPriceUSD": price_usd,
        }
        return self._server.tool(
            name,
            description,
            params_schema,
            priced_annotations,
            self.gate.wrap(name, description, price_usd, handler),
        )


def with_x402(
    server: ToolServer,
    config: X402Config,
    *,
    facilitator: Facilitator | None = None,
) -> X402Server:
    """Wrap ``server`` so it can register priced tools."""
    if facilitator is None:
        facilitator = FacilitatorClient.from_config(config.facilitator)
    return X402Server(server, PaymentGate(config, facilitator))
