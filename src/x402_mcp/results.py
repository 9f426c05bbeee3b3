"""Invocation outcome envelopes (MCP ``CallToolResult``-shaped dicts).

Each helper returns a fresh dict; outcomes are never shared between calls.
"""

from __future__ import annotations

import json
from typing import Any

from x402_mcp.constants import META_CLIENT_ERROR, META_ERROR, META_PAYMENT_RESPONSE
from x402_mcp.types import PaymentRequirements, SettlementResult


def text_result(text: str, *, is_error: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


def payment_error(
    version: int,
    error: str,
    *,
    accepts: list[PaymentRequirements] | None = None,
    payer: str | None = None,
) -> dict[str, Any]:
    """Error outcome carrying ``{x402Version, error, accepts?, payer?}``."""
    payload: dict[str, Any] = {"x402Version": version, "error": error}
    if accepts is not None:
        payload["accepts"] = [r.to_dict() for r in accepts]
    if payer is not None:
        payload["payer"] = payer
    return {
        "isError": True,
        "_meta": {META_ERROR: payload},
        "content": [{"type": "text", "text": json.dumps(payload)}],
    }


def client_error(code: str, text: str) -> dict[str, Any]:
    result = text_result(text, is_error=True)
    result["_meta"] = {META_CLIENT_ERROR: {"error": code}}
    return result


def is_error(result: Any) -> bool:
    return isinstance(result, dict) and bool(result.get("isError"))


def payment_error_payload(result: Any) -> dict[str, Any] | None:
    """The ``x402/error`` block of an error outcome, if there is one."""
    if not is_error(result):
        return None
    meta = result.get("_meta")
    if not isinstance(meta, dict):
        return None
    payload = meta.get(META_ERROR)
    return payload if isinstance(payload, dict) else None


def with_receipt(result: dict[str, Any], settlement: SettlementResult) -> dict[str, Any]:
    """Copy of ``result`` annotated with the settlement receipt."""
    annotated = dict(result)
    meta = dict(annotated.get("_meta") or {})
    meta[META_PAYMENT_RESPONSE] = settlement.receipt()
    annotated["_meta"] = meta
    return annotated
