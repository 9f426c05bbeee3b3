"""Client side: pay for priced tools and retry once.

The interceptor issues a call; on an ``x402/error`` outcome with a
non-empty ``accepts`` it asks for consent, picks the first requirement the
signer can pay, checks the spend cap, builds a credential and re-issues the
call exactly once. A second payment-required outcome is returned as is.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from x402_mcp.config import ConfirmationCallback, X402ClientConfig
from x402_mcp.constants import META_PAYMENT
from x402_mcp.errors import (
    ClientCapExceededError,
    ClientDeclineError,
    ClientSelectionError,
)
from x402_mcp.results import client_error, payment_error_payload
from x402_mcp.signers import (
    PaymentBuilder,
    SignerNetworks,
    build_exact_evm_payment,
    compatible_networks,
    select_requirements,
)
from x402_mcp.types import PaymentRequirements

logger = logging.getLogger(__name__)

ToolCall = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

# Atomic amounts are plain non-negative base-10 integers.
_ATOMIC_AMOUNT = re.compile(r"[0-9]+")


class ToolClient(Protocol):
    """The base tool-calling surface being extended."""

    async def call_tool(self, params: dict[str, Any], **options: Any) -> dict[str, Any]: ...

    async def list_tools(self, params: dict[str, Any] | None = None, **options: Any) -> dict[str, Any]: ...


def _parse_accepts(result: dict[str, Any]) -> list[PaymentRequirements]:
    payload = payment_error_payload(result)
    if payload is None:
        return []
    raw = payload.get("accepts")
    if not isinstance(raw, list):
        return []
    accepts: list[PaymentRequirements] = []
    for entry in raw:
        try:
            accepts.append(PaymentRequirements.from_dict(entry))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.debug("Skipping malformed payment requirement %r: %s", entry, e)
    return accepts


# ---------------------------------------------------------------------------
# Interceptor
# ---------------------------------------------------------------------------


class PaymentInterceptor:
    """Detect payment-required outcomes and satisfy them with ``signer``.

    ``build_payment`` and ``signer_networks`` are injected so other signer
    families can plug in. Signer capability is checked here, at
    construction, so a misconfigured signer fails before any call is made.
    """

    def __init__(
        self,
        signer: Any,
        config: X402ClientConfig | None = None,
        *,
        build_payment: PaymentBuilder = build_exact_evm_payment,
        signer_networks: SignerNetworks = compatible_networks,
        payment_config: dict[str, Any] | None = None,
    ) -> None:
        self._signer = signer
        self._config = config or X402ClientConfig()
        self._build_payment = build_payment
        self._payment_config = payment_config
        self._networks = signer_networks(signer)

    @property
    def networks(self) -> list[str] | None:
        return self._networks

    async def confirm(
        self,
        accepts: list[PaymentRequirements],
        confirmation: ConfirmationCallback | None = None,
    ) -> None:
        callback = confirmation or self._config.confirmation_callback
        if callback is None:
            logger.warning("No payment confirmation callback configured; declining")
            raise ClientDeclineError("User declined payment")
        if not await callback(accepts):
            raise ClientDeclineError("User declined payment")

    def select(self, accepts: list[PaymentRequirements]) -> PaymentRequirements:
        selected = select_requirements(accepts, self._networks)
        if selected is None:
            raise ClientSelectionError("No compatible payment requirements found for this wallet")
        return selected

    def check_cap(self, requirements: PaymentRequirements) -> int:
        value = requirements.max_amount_required
        if not isinstance(value, str) or not _ATOMIC_AMOUNT.fullmatch(value):
            raise ClientSelectionError(f"Invalid maxAmountRequired: {value!r}")
        required = int(value)
        if required > self._config.max_payment_value:
            raise ClientCapExceededError(required, self._config.max_payment_value)
        return required

    async def call(
        self,
        call: ToolCall,
        params: dict[str, Any],
        confirmation: ConfirmationCallback | None = None,
    ) -> dict[str, Any]:
        result = await call(params)
        accepts = _parse_accepts(result)
        if not accepts:
            return result

        try:
            await self.confirm(accepts, confirmation)
            requirements = self.select(accepts)
            amount = self.check_cap(requirements)
        except (ClientDeclineError, ClientSelectionError, ClientCapExceededError) as e:
            logger.warning("Not paying for %s: %s", params.get("name"), e)
            return client_error(e.code, str(e))

        token = await self._build_payment(
            self._signer, self._config.version, requirements, self._payment_config
        )
        logger.info(
            "Paying %d atomic units on %s for %s", amount, requirements.network, params.get("name")
        )
        retry_params = {
            **params,
            "_meta": {**(params.get("_meta") or {}), META_PAYMENT: token},
        }
        return await call(retry_params)


# ---------------------------------------------------------------------------
# Tool listing decoration
# ---------------------------------------------------------------------------


def describe_price(tool: dict[str, Any]) -> str:
    """Tool description with a price note appended for paid tools."""
    description = tool.get("description") or ""
    annotations = tool.get("annotations") or {}
    if not annotations.get("paymentHint"):
        return description
    price = annotations.get("paymentPriceUSD")
    cost = f"${price}" if price else "an unknown amount"
    return f"{description} (This is a paid tool, you will be charged {cost} for its execution)"


def decorate_tools(listing: dict[str, Any]) -> dict[str, Any]:
    tools = [{**tool, "description": describe_price(tool)} for tool in listing.get("tools", [])]
    return {**listing, "tools": tools}


# ---------------------------------------------------------------------------
# Client composition
# ---------------------------------------------------------------------------


class X402Client:
    """A tool client whose ``call_tool`` pays when asked to.

    Wraps the base client; other attributes are forwarded to it.
    """

    def __init__(self, client: ToolClient, interceptor: PaymentInterceptor) -> None:
        self._client = client
        self.interceptor = interceptor

    def __getattr__(self, name: str) -> Any:
        return getattr(self._client, name)

    async def call_tool(
        self,
        params: dict[str, Any],
        confirmation: ConfirmationCallback | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        async def _call(call_params: dict[str, Any]) -> dict[str, Any]:
            return await self._client.call_tool(call_params, **options)

        return await self.interceptor.call(_call, params, confirmation)

    async def list_tools(self, params: dict[str, Any] | None = None, **options: Any) -> dict[str, Any]:
        return decorate_tools(await self._client.list_tools(params, **options))


def with_x402_client(
    client: ToolClient,
    signer: Any,
    config: X402ClientConfig | None = None,
    **interceptor_options: Any,
) -> X402Client:
    """Wrap ``client`` so priced tool calls are paid with ``signer``."""
    return X402Client(client, PaymentInterceptor(signer, config, **interceptor_options))
