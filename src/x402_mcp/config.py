"""x402 configuration — plain frozen dataclasses, no pydantic.

The host application constructs these from its own settings and passes
them to :class:`~x402_mcp.server.X402Server` or
:class:`~x402_mcp.client.X402Client`. ``X402Config.from_env`` is offered
for hosts that keep their settings in ``X402_*`` environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from x402_mcp.constants import (
    DEFAULT_FACILITATOR_URL,
    DEFAULT_MAX_PAYMENT_VALUE,
    DEFAULT_MAX_TIMEOUT_SECONDS,
    DEFAULT_MIME_TYPE,
    X402_VERSION,
)
from x402_mcp.errors import ConfigurationError

if TYPE_CHECKING:
    from x402_mcp.types import PaymentRequirements

ConfirmationCallback = Callable[[list["PaymentRequirements"]], Awaitable[bool]]


@dataclass(frozen=True)
class FacilitatorConfig:
    url: str = DEFAULT_FACILITATOR_URL
    cdp_api_key_id: str | None = None
    cdp_api_key_secret: str | None = None
    timeout_seconds: float = 30.0

    @property
    def has_cdp_credentials(self) -> bool:
        return bool(self.cdp_api_key_id and self.cdp_api_key_secret)


@dataclass(frozen=True)
class X402Config:
    """Server-side settings for priced tools.

    ``supported_cache_ttl_seconds`` > 0 caches the facilitator's
    ``/supported`` answer used for fee-payer discovery; 0 queries it on
    every call.
    """

    network: str
    recipient: str
    facilitator: FacilitatorConfig = field(default_factory=FacilitatorConfig)
    version: int = X402_VERSION
    max_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS
    mime_type: str = DEFAULT_MIME_TYPE
    supported_cache_ttl_seconds: float = 0.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> X402Config:
        env = os.environ if environ is None else environ

        network = env.get("X402_NETWORK", "").strip()
        if not network:
            raise ConfigurationError("X402_NETWORK must be provided")
        recipient = env.get("X402_RECIPIENT", "").strip()
        if not recipient:
            raise ConfigurationError("X402_RECIPIENT must be provided")

        try:
            version = int(env.get("X402_VERSION", X402_VERSION))
            cache_ttl = float(env.get("X402_SUPPORTED_CACHE_TTL", "0"))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid numeric X402 setting: {exc}") from exc

        facilitator = FacilitatorConfig(
            url=env.get("X402_FACILITATOR_URL", DEFAULT_FACILITATOR_URL),
            cdp_api_key_id=env.get("CDP_API_KEY_ID") or None,
            cdp_api_key_secret=env.get("CDP_API_KEY_SECRET") or None,
        )
        return cls(
            network=network,
            recipient=recipient,
            facilitator=facilitator,
            version=version,
            supported_cache_ttl_seconds=cache_ttl,
        )


@dataclass(frozen=True)
class X402ClientConfig:
    """Client-side settings.

    ``max_payment_value`` is the spend cap in atomic token units
    (default 100_000, i.e. 0.10 USDC). ``confirmation_callback`` is the
    default consent hook; without one every payment is declined.
    """

    max_payment_value: int = DEFAULT_MAX_PAYMENT_VALUE
    version: int = X402_VERSION
    confirmation_callback: ConfirmationCallback | None = None
