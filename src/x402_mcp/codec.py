"""Payment token encoding: base64 of the JSON payment payload."""

from __future__ import annotations

import base64
import binascii
import json

from x402_mcp.errors import DecodingError
from x402_mcp.types import PaymentPayload


def encode_payment(payload: PaymentPayload) -> str:
    raw = json.dumps(payload.to_dict(), separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_payment(token: str) -> PaymentPayload:
    """Decode a client-supplied token.

    Raises:
        DecodingError: On anything that is not base64 JSON of a payment payload.
    """
    if not isinstance(token, str) or not token.strip():
        raise DecodingError("Payment token is empty")
    try:
        raw = base64.b64decode(token.strip(), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodingError(f"Payment token could not be decoded: {exc}") from exc

    if not isinstance(data, dict):
        raise DecodingError("Payment token is not a JSON object")
    try:
        return PaymentPayload.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodingError(f"Payment token is missing fields: {exc}") from exc
