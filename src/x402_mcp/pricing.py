"""Fiat price → atomic token amount for a network's default asset."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from x402_mcp.errors import PriceComputationError
from x402_mcp.networks import AssetInfo, get_network

logger = logging.getLogger(__name__)

Price = Decimal | int | float | str


@dataclass(frozen=True)
class AtomicAmount:
    max_amount_required: str
    asset: AssetInfo


def parse_money(price: Price) -> Decimal:
    """Parse a USD price such as ``0.05``, ``"0.05"`` or ``"$0.05"``.

    Floats go through ``str`` so 0.05 stays 0.05 rather than its binary
    expansion.
    """
    if isinstance(price, bool):
        raise PriceComputationError(f"Invalid price: {price!r}")
    if isinstance(price, Decimal):
        value = price
    else:
        text = str(price).strip().replace(",", "")
        if text.startswith("$"):
            text = text[1:]
        try:
            value = Decimal(text)
        except InvalidOperation as exc:
            raise PriceComputationError(f"Invalid price: {price!r}") from exc

    if not value.is_finite():
        raise PriceComputationError(f"Invalid price: {price!r}")
    if value < 0:
        raise PriceComputationError(f"Price must be non-negative, got {price!r}")
    return value


def to_atomic_units(amount: Decimal, decimals: int) -> int:
    scaled = amount * (Decimal(10) ** decimals)
    integral = scaled.to_integral_value()
    if integral != scaled:
        raise PriceComputationError(
            f"Amount {amount} cannot be represented with {decimals} decimals"
        )
    return int(integral)


def process_price_to_atomic_amount(price: Price, network: str) -> AtomicAmount:
    """Resolve ``price`` to an atomic amount of the network's default asset."""
    info = get_network(network)
    if info is None:
        raise PriceComputationError(f"No default asset known for network: {network}")

    amount = to_atomic_units(parse_money(price), info.asset.decimals)
    logger.debug("Price %s on %s resolved to %d atomic units", price, network, amount)
    return AtomicAmount(max_amount_required=str(amount), asset=info.asset)
