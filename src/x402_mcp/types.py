"""Wire records for the x402 handshake.

Pure data model — no I/O. Field names are snake_case in Python and
camelCase on the wire; ``to_dict``/``from_dict`` do the mapping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from x402_mcp.constants import SCHEME_EXACT, X402_VERSION


# ---------------------------------------------------------------------------
# PaymentRequirements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentRequirements:
    """What payment would satisfy one priced call."""

    scheme: str
    network: str
    max_amount_required: str  # atomic integer as a decimal string, never a float
    pay_to: str
    asset: str
    max_timeout_seconds: int
    resource: str
    mime_type: str
    description: str
    extra: dict[str, Any] | None = None
    output_schema: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "payTo": self.pay_to,
            "asset": self.asset,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "resource": self.resource,
            "mimeType": self.mime_type,
            "description": self.description,
        }
        if self.extra is not None:
            data["extra"] = dict(self.extra)
        if self.output_schema is not None:
            data["outputSchema"] = dict(self.output_schema)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentRequirements:
        return cls(
            scheme=str(data["scheme"]),
            network=str(data["network"]),
            max_amount_required=str(data["maxAmountRequired"]),
            pay_to=str(data["payTo"]),
            asset=str(data["asset"]),
            max_timeout_seconds=int(data.get("maxTimeoutSeconds", 0)),
            resource=str(data.get("resource", "")),
            mime_type=str(data.get("mimeType", "")),
            description=str(data.get("description", "")),
            extra=data.get("extra"),
            output_schema=data.get("outputSchema"),
        )


# ---------------------------------------------------------------------------
# PaymentPayload
# ---------------------------------------------------------------------------


@dataclass
class PaymentPayload:
    """Decoded client credential: protocol version plus signed scheme data."""

    scheme: str
    network: str
    payload: dict[str, Any]
    x402_version: int = X402_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "x402Version": self.x402_version,
            "scheme": self.scheme,
            "network": self.network,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentPayload:
        payload = data["payload"]
        if not isinstance(payload, dict):
            raise TypeError("payload must be an object")
        return cls(
            scheme=str(data["scheme"]),
            network=str(data["network"]),
            payload=payload,
            x402_version=int(data.get("x402Version", X402_VERSION)),
        )


# ---------------------------------------------------------------------------
# Facilitator responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    invalid_reason: str | None = None
    payer: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationResult:
        return cls(
            is_valid=bool(data.get("isValid")),
            invalid_reason=data.get("invalidReason"),
            payer=data.get("payer"),
        )


@dataclass(frozen=True)
class SettlementResult:
    success: bool
    transaction: str | None = None
    network: str | None = None
    payer: str | None = None
    error_reason: str | None = None

    def receipt(self) -> dict[str, Any]:
        """The ``x402/payment-response`` block attached to a settled result."""
        return {
            "success": True,
            "transaction": self.transaction,
            "network": self.network,
            "payer": self.payer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SettlementResult:
        return cls(
            success=bool(data.get("success")),
            # Older facilitators report "txHash"
            transaction=data.get("transaction", data.get("txHash")),
            network=data.get("network"),
            payer=data.get("payer"),
            error_reason=data.get("errorReason"),
        )


@dataclass(frozen=True)
class SupportedKind:
    scheme: str
    network: str
    x402_version: int = X402_VERSION
    extra: dict[str, Any] | None = None

    @property
    def fee_payer(self) -> str | None:
        if not self.extra:
            return None
        return self.extra.get("feePayer")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SupportedKind:
        extra = data.get("extra")
        return cls(
            scheme=str(data.get("scheme", "")),
            network=str(data.get("network", "")),
            x402_version=int(data.get("x402Version", X402_VERSION)),
            extra=extra if isinstance(extra, dict) else None,
        )


@dataclass(frozen=True)
class SupportedResponse:
    kinds: list[SupportedKind] = field(default_factory=list)

    def find(self, network: str, scheme: str = SCHEME_EXACT) -> SupportedKind | None:
        """First kind matching ``network`` and ``scheme``, in facilitator order."""
        for kind in self.kinds:
            if kind.network == network and kind.scheme == scheme:
                return kind
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SupportedResponse:
        return cls(kinds=[SupportedKind.from_dict(k) for k in data.get("kinds", [])])
