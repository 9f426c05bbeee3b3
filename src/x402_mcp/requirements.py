"""Build PaymentRequirements for a priced call, one strategy per network family.

Adding a family means adding a ``RequirementsStrategy`` to
``FAMILY_STRATEGIES``; the gate's control flow does not change.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from eth_utils import to_checksum_address

from x402_mcp.constants import (
    DEFAULT_MAX_TIMEOUT_SECONDS,
    DEFAULT_MIME_TYPE,
    RESOURCE_PREFIX,
    SCHEME_EXACT,
)
from x402_mcp.errors import ConfigurationError, FeePayerNotFoundError, UnsupportedNetworkError
from x402_mcp.networks import NetworkFamily, network_family
from x402_mcp.pricing import AtomicAmount
from x402_mcp.types import PaymentRequirements, SupportedResponse

logger = logging.getLogger(__name__)

SupportedFetcher = Callable[[], Awaitable[SupportedResponse]]


def resource_for(operation: str) -> str:
    return f"{RESOURCE_PREFIX}{operation}"


def canonical_evm_address(address: str, field_name: str) -> str:
    try:
        return to_checksum_address(address)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"{field_name} is not a valid EVM address: {address!r}") from exc


@dataclass(frozen=True)
class RequirementsRequest:
    """Inputs shared by every family strategy."""

    operation: str
    description: str
    network: str
    recipient: str
    amount: AtomicAmount
    max_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS
    mime_type: str = DEFAULT_MIME_TYPE

    def requirements(self, pay_to: str, asset: str, extra: dict | None) -> PaymentRequirements:
        return PaymentRequirements(
            scheme=SCHEME_EXACT,
            network=self.network,
            max_amount_required=self.amount.max_amount_required,
            pay_to=pay_to,
            asset=asset,
            max_timeout_seconds=self.max_timeout_seconds,
            resource=resource_for(self.operation),
            mime_type=self.mime_type,
            description=self.description,
            extra=extra,
        )


RequirementsStrategy = Callable[[RequirementsRequest, SupportedFetcher], Awaitable[PaymentRequirements]]


async def build_evm_requirements(
    request: RequirementsRequest, supported: SupportedFetcher
) -> PaymentRequirements:
    """Checksummed addresses; EIP-712 domain of the asset in ``extra``."""
    eip712 = request.amount.asset.eip712
    return request.requirements(
        pay_to=canonical_evm_address(request.recipient, "recipient"),
        asset=canonical_evm_address(request.amount.asset.address, "asset"),
        extra=dict(eip712) if eip712 else None,
    )


async def build_svm_requirements(
    request: RequirementsRequest, supported: SupportedFetcher
) -> PaymentRequirements:
    """Fee payer discovered from the facilitator; first matching kind wins."""
    kinds = await supported()
    kind = kinds.find(request.network, SCHEME_EXACT)
    fee_payer = kind.fee_payer if kind is not None else None
    if not fee_payer:
        raise FeePayerNotFoundError(request.network)
    return request.requirements(
        pay_to=request.recipient,
        asset=request.amount.asset.address,
        extra={"feePayer": fee_payer},
    )


FAMILY_STRATEGIES: dict[NetworkFamily, RequirementsStrategy] = {
    NetworkFamily.EVM: build_evm_requirements,
    NetworkFamily.SVM: build_svm_requirements,
}


# ---------------------------------------------------------------------------
# Optional /supported cache
# ---------------------------------------------------------------------------


class SupportedKindsCache:
    """TTL cache in front of a facilitator's ``supported()``.

    ``ttl_seconds <= 0`` disables caching: every call reaches the facilitator.
    """

    def __init__(self, fetch: SupportedFetcher, ttl_seconds: float = 0.0) -> None:
        self._fetch = fetch
        self._ttl = ttl_seconds
        self._value: SupportedResponse | None = None
        self._fetched_at = 0.0

    async def get(self) -> SupportedResponse:
        if self._ttl <= 0:
            return await self._fetch()
        now = time.monotonic()
        if self._value is None or now - self._fetched_at >= self._ttl:
            self._value = await self._fetch()
            self._fetched_at = now
        return self._value

    def invalidate(self) -> None:
        self._value = None


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class RequirementsBuilder:
    """Dispatch requirement building on the network's family."""

    def __init__(
        self,
        supported: SupportedFetcher,
        *,
        max_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS,
        mime_type: str = DEFAULT_MIME_TYPE,
        strategies: dict[NetworkFamily, RequirementsStrategy] | None = None,
    ) -> None:
        self._supported = supported
        self._max_timeout_seconds = max_timeout_seconds
        self._mime_type = mime_type
        self._strategies = dict(FAMILY_STRATEGIES if strategies is None else strategies)

    async def build(
        self,
        operation: str,
        description: str,
        amount: AtomicAmount,
        network: str,
        recipient: str,
    ) -> PaymentRequirements:
        """Raises UnsupportedNetworkError or FeePayerNotFoundError; never retries."""
        family = network_family(network)
        strategy = self._strategies.get(family) if family is not None else None
        if strategy is None:
            raise UnsupportedNetworkError(network)

        request = RequirementsRequest(
            operation=operation,
            description=description,
            network=network,
            recipient=recipient,
            amount=amount,
            max_timeout_seconds=self._max_timeout_seconds,
            mime_type=self._mime_type,
        )
        requirements = await strategy(request, self._supported)
        logger.debug(
            "Built %s requirements for %s: %s atomic units to %s",
            family.value, operation, requirements.max_amount_required, requirements.pay_to,
        )
        return requirements
