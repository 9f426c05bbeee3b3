"""Tests for the server-side payment gate and paid_tool registration."""

import json
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from eth_utils import to_checksum_address

from x402_mcp.codec import encode_payment
from x402_mcp.config import X402Config
from x402_mcp.facilitator import FacilitatorClient, FacilitatorServerError
from x402_mcp.networks import AssetInfo
from x402_mcp.pricing import AtomicAmount
from x402_mcp.server import PaymentGate, RequestExtra, X402Server, extract_payment_token, with_x402
from x402_mcp.types import (
    PaymentPayload,
    SettlementResult,
    SupportedResponse,
    VerificationResult,
)

RECIPIENT = "0x" + "ab" * 20


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _token(version: int = 1) -> str:
    return encode_payment(
        PaymentPayload(
            scheme="exact",
            network="base-sepolia",
            payload={"signature": "0xsig", "authorization": {"value": "50000"}},
            x402_version=version,
        )
    )


def _mock_facilitator(
    verification: VerificationResult | None = None,
    settlement: SettlementResult | None = None,
    supported: SupportedResponse | None = None,
    settle_error: Exception | None = None,
):
    """Create a mock facilitator with verify/settle/supported."""
    facilitator = AsyncMock()
    facilitator.verify = AsyncMock(
        return_value=verification or VerificationResult(is_valid=True, payer="0xpayer")
    )
    if settle_error:
        facilitator.settle = AsyncMock(side_effect=settle_error)
    else:
        facilitator.settle = AsyncMock(
            return_value=settlement
            or SettlementResult(
                success=True, transaction="0xtx", network="base-sepolia", payer="0xpayer"
            )
        )
    facilitator.supported = AsyncMock(return_value=supported or SupportedResponse())
    return facilitator


def _make_config(**overrides) -> X402Config:
    defaults: dict[str, Any] = {"network": "base-sepolia", "recipient": RECIPIENT}
    defaults.update(overrides)
    return X402Config(**defaults)


def _handler(result: dict | None = None, error: Exception | None = None) -> AsyncMock:
    if error:
        return AsyncMock(side_effect=error)
    return AsyncMock(return_value=result or {"content": [{"type": "text", "text": "sunny"}]})


async def _call(gate: PaymentGate, handler, extra: RequestExtra | None, price: Any = 0.05) -> dict:
    return await gate.handle("weather", "Weather lookup", price, handler, {"city": "Oslo"}, extra)


def _paid(token: str | None = None) -> RequestExtra:
    return RequestExtra(meta={"x402/payment": token or _token()})


def _x402_error(result: dict) -> dict:
    return result["_meta"]["x402/error"]


# ---------------------------------------------------------------------------
# Token extraction
# ---------------------------------------------------------------------------


class TestExtractPaymentToken:
    def test_meta_slot(self) -> None:
        assert extract_payment_token(RequestExtra(meta={"x402/payment": "tok"})) == "tok"

    def test_header_fallback(self) -> None:
        assert extract_payment_token(RequestExtra(headers={"X-PAYMENT": "hdr"})) == "hdr"

    def test_header_case_insensitive(self) -> None:
        assert extract_payment_token(RequestExtra(headers={"x-payment": "hdr"})) == "hdr"

    def test_meta_wins_over_header(self) -> None:
        extra = RequestExtra(meta={"x402/payment": "meta"}, headers={"X-PAYMENT": "hdr"})
        assert extract_payment_token(extra) == "meta"

    def test_absent(self) -> None:
        assert extract_payment_token(RequestExtra()) is None
        assert extract_payment_token(None) is None

    def test_non_string_ignored(self) -> None:
        assert extract_payment_token(RequestExtra(meta={"x402/payment": 42})) is None

    @pytest.mark.parametrize("slot", [42, "", None])
    def test_present_meta_slot_blocks_header(self, slot: Any) -> None:
        extra = RequestExtra(meta={"x402/payment": slot}, headers={"X-PAYMENT": "hdr"})
        assert extract_payment_token(extra) is None

    def test_unrelated_meta_allows_header(self) -> None:
        extra = RequestExtra(meta={"progressToken": 1}, headers={"X-PAYMENT": "hdr"})
        assert extract_payment_token(extra) == "hdr"


# ---------------------------------------------------------------------------
# No credential
# ---------------------------------------------------------------------------


class TestPaymentRequired:
    @pytest.mark.asyncio
    async def test_accepts_single_requirement(self) -> None:
        facilitator = _mock_facilitator()
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, handler, RequestExtra())

        assert result["isError"] is True
        payload = _x402_error(result)
        assert payload["x402Version"] == 1
        assert payload["error"] == "PAYMENT_REQUIRED"
        assert len(payload["accepts"]) == 1
        req = payload["accepts"][0]
        assert req["scheme"] == "exact"
        assert req["network"] == "base-sepolia"
        assert req["maxAmountRequired"] == "50000"
        assert req["payTo"] == to_checksum_address(RECIPIENT)
        assert req["resource"] == "x402://weather"
        assert req["maxTimeoutSeconds"] == 300
        handler.assert_not_awaited()
        facilitator.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_text_content_mirrors_meta(self) -> None:
        gate = PaymentGate(_make_config(), _mock_facilitator())
        result = await _call(gate, _handler(), None)
        assert json.loads(result["content"][0]["text"]) == _x402_error(result)

    @pytest.mark.asyncio
    async def test_configured_version(self) -> None:
        gate = PaymentGate(_make_config(version=2), _mock_facilitator())
        result = await _call(gate, _handler(), RequestExtra())
        assert _x402_error(result)["x402Version"] == 2


# ---------------------------------------------------------------------------
# Pricing / configuration failures
# ---------------------------------------------------------------------------


class TestConfigurationFailures:
    @pytest.mark.asyncio
    async def test_price_compute_failed(self) -> None:
        gate = PaymentGate(_make_config(), _mock_facilitator())
        result = await _call(gate, _handler(), _paid(), price="lots")
        assert _x402_error(result) == {"x402Version": 1, "error": "PRICE_COMPUTE_FAILED"}

    @pytest.mark.asyncio
    async def test_unsupported_network(self) -> None:
        facilitator = _mock_facilitator()
        gate = PaymentGate(
            _make_config(network="fakenet"),
            facilitator,
            price_resolver=lambda price, network: AtomicAmount("50000", AssetInfo("0x" + "cd" * 20)),
        )
        handler = _handler()
        result = await _call(gate, handler, _paid())
        assert _x402_error(result) == {"x402Version": 1, "error": "Unsupported network: fakenet"}
        handler.assert_not_awaited()
        facilitator.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_fee_payer(self) -> None:
        facilitator = _mock_facilitator(
            supported=SupportedResponse.from_dict(
                {"kinds": [{"scheme": "exact", "network": "solana", "extra": {"feePayer": "F"}}]}
            )
        )
        gate = PaymentGate(
            _make_config(network="solana-devnet", recipient="9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"),
            facilitator,
        )
        result = await _call(gate, _handler(), RequestExtra())
        payload = _x402_error(result)
        assert "solana-devnet" in payload["error"]
        assert "accepts" not in payload
        facilitator.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_supported_request_failure(self) -> None:
        facilitator = _mock_facilitator()
        facilitator.supported = AsyncMock(side_effect=FacilitatorServerError("down", 503))
        gate = PaymentGate(
            _make_config(network="solana", recipient="9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"),
            facilitator,
        )
        result = await _call(gate, _handler(), RequestExtra())
        assert result["isError"] is True
        assert "Facilitator request failed" in _x402_error(result)["error"]

    @pytest.mark.asyncio
    async def test_svm_requirements_carry_fee_payer(self) -> None:
        facilitator = _mock_facilitator(
            supported=SupportedResponse.from_dict(
                {"kinds": [{"scheme": "exact", "network": "solana", "extra": {"feePayer": "Fee1"}}]}
            )
        )
        gate = PaymentGate(
            _make_config(network="solana", recipient="9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"),
            facilitator,
        )
        result = await _call(gate, _handler(), RequestExtra())
        assert _x402_error(result)["accepts"][0]["extra"] == {"feePayer": "Fee1"}

    @pytest.mark.asyncio
    async def test_supported_cached_when_ttl_set(self) -> None:
        facilitator = _mock_facilitator(
            supported=SupportedResponse.from_dict(
                {"kinds": [{"scheme": "exact", "network": "solana", "extra": {"feePayer": "Fee1"}}]}
            )
        )
        gate = PaymentGate(
            _make_config(
                network="solana",
                recipient="9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
                supported_cache_ttl_seconds=300,
            ),
            facilitator,
        )
        await _call(gate, _handler(), RequestExtra())
        await _call(gate, _handler(), RequestExtra())
        assert facilitator.supported.await_count == 1


# ---------------------------------------------------------------------------
# Decode / verify
# ---------------------------------------------------------------------------


class TestDecodeAndVerify:
    @pytest.mark.asyncio
    async def test_malformed_token(self) -> None:
        facilitator = _mock_facilitator()
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, handler, _paid("%%%not-a-token%%%"))

        payload = _x402_error(result)
        assert payload["error"] == "INVALID_PAYMENT"
        assert len(payload["accepts"]) == 1
        handler.assert_not_awaited()
        facilitator.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_forwards_reason_and_payer(self) -> None:
        facilitator = _mock_facilitator(
            verification=VerificationResult(
                is_valid=False, invalid_reason="insufficient_funds", payer="0xpayer"
            )
        )
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, handler, _paid())

        payload = _x402_error(result)
        assert payload["error"] == "insufficient_funds"
        assert payload["payer"] == "0xpayer"
        assert len(payload["accepts"]) == 1
        handler.assert_not_awaited()
        facilitator.settle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_without_reason(self) -> None:
        facilitator = _mock_facilitator(verification=VerificationResult(is_valid=False))
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, _handler(), _paid())
        payload = _x402_error(result)
        assert payload["error"] == "INVALID_PAYMENT"
        assert "payer" not in payload

    @pytest.mark.asyncio
    async def test_verify_request_failure(self) -> None:
        facilitator = _mock_facilitator()
        facilitator.verify = AsyncMock(side_effect=FacilitatorServerError("down", 502))
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, handler, _paid())
        assert _x402_error(result)["error"] == "INVALID_PAYMENT"
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verify_unexpected_exception(self) -> None:
        facilitator = _mock_facilitator()
        facilitator.verify = AsyncMock(side_effect=RuntimeError("bad facilitator"))
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, handler, _paid())
        assert _x402_error(result)["error"] == "INVALID_PAYMENT"
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_meta_slot_with_header_requires_payment(self) -> None:
        facilitator = _mock_facilitator()
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        extra = RequestExtra(meta={"x402/payment": ""}, headers={"X-PAYMENT": _token()})
        result = await _call(gate, handler, extra)
        assert _x402_error(result)["error"] == "PAYMENT_REQUIRED"
        facilitator.verify.assert_not_awaited()
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_header_token_accepted(self) -> None:
        facilitator = _mock_facilitator()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, _handler(), RequestExtra(headers={"X-PAYMENT": _token()}))
        assert "isError" not in result
        facilitator.verify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_version_overwritten(self) -> None:
        facilitator = _mock_facilitator()
        gate = PaymentGate(_make_config(), facilitator)
        await _call(gate, _handler(), _paid(_token(version=7)))
        payload, requirements = facilitator.verify.call_args[0]
        assert payload.x402_version == 1
        assert requirements.max_amount_required == "50000"


# ---------------------------------------------------------------------------
# Execute / settle
# ---------------------------------------------------------------------------


class TestExecuteAndSettle:
    @pytest.mark.asyncio
    async def test_success_annotated_with_receipt(self) -> None:
        facilitator = _mock_facilitator()
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, handler, _paid())

        assert "isError" not in result
        assert result["content"] == [{"type": "text", "text": "sunny"}]
        assert result["_meta"]["x402/payment-response"] == {
            "success": True,
            "transaction": "0xtx",
            "network": "base-sepolia",
            "payer": "0xpayer",
        }
        handler.assert_awaited_once()
        assert handler.call_args[0][0] == {"city": "Oslo"}
        facilitator.settle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_meta_preserved(self) -> None:
        handler = _handler({"content": [], "_meta": {"trace": "abc"}})
        gate = PaymentGate(_make_config(), _mock_facilitator())
        result = await _call(gate, handler, _paid())
        assert result["_meta"]["trace"] == "abc"
        assert result["_meta"]["x402/payment-response"]["success"] is True

    @pytest.mark.asyncio
    async def test_handler_raises_no_settlement(self) -> None:
        facilitator = _mock_facilitator()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, _handler(error=RuntimeError("boom")), _paid())

        assert result["isError"] is True
        assert result["content"][0]["text"] == "Tool execution failed: boom"
        facilitator.settle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_error_result_no_settlement(self) -> None:
        failed = {"isError": True, "content": [{"type": "text", "text": "city unknown"}]}
        facilitator = _mock_facilitator()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, _handler(failed), _paid())

        assert result == failed
        facilitator.settle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_settlement_failure_discards_result(self) -> None:
        facilitator = _mock_facilitator(
            settlement=SettlementResult(success=False, error_reason="tx_reverted")
        )
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, handler, _paid())

        assert result["isError"] is True
        payload = _x402_error(result)
        assert payload["error"] == "tx_reverted"
        assert len(payload["accepts"]) == 1
        handler.assert_awaited_once()
        facilitator.settle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_settlement_failure_default_reason(self) -> None:
        facilitator = _mock_facilitator(settlement=SettlementResult(success=False))
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, _handler(), _paid())
        assert _x402_error(result)["error"] == "SETTLEMENT_FAILED"

    @pytest.mark.asyncio
    async def test_settlement_request_failure(self) -> None:
        facilitator = _mock_facilitator(settle_error=FacilitatorServerError("down", 500))
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, handler, _paid())
        assert _x402_error(result)["error"] == "SETTLEMENT_FAILED"
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_settlement_unexpected_exception(self) -> None:
        facilitator = _mock_facilitator(settle_error=KeyError("success"))
        handler = _handler()
        gate = PaymentGate(_make_config(), facilitator)
        result = await _call(gate, handler, _paid())
        assert _x402_error(result)["error"] == "SETTLEMENT_FAILED"
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_requirements_deterministic(self) -> None:
        gate = PaymentGate(_make_config(), _mock_facilitator())
        first = await gate.requirements_for("weather", "Weather lookup", 0.05)
        second = await gate.requirements_for("weather", "Weather lookup", 0.05)
        assert first == second


# ---------------------------------------------------------------------------
# Facilitator transport failures (real client, mocked transport)
# ---------------------------------------------------------------------------


def _facilitator_over(route) -> FacilitatorClient:
    client = FacilitatorClient("https://facilitator.test")
    client._client = httpx.AsyncClient(
        base_url="https://facilitator.test", transport=httpx.MockTransport(route)
    )
    return client


def _verified_then(settle_route):
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/verify":
            return httpx.Response(200, json={"isValid": True, "payer": "0xpayer"})
        return settle_route(request)

    return route


class TestFacilitatorTransportFailures:
    @pytest.mark.asyncio
    async def test_settle_read_error(self) -> None:
        def settle(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadError("connection reset", request=request)

        handler = _handler()
        gate = PaymentGate(_make_config(), _facilitator_over(_verified_then(settle)))
        result = await _call(gate, handler, _paid())

        assert result["isError"] is True
        assert _x402_error(result)["error"] == "SETTLEMENT_FAILED"
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_settle_protocol_error(self) -> None:
        def settle(request: httpx.Request) -> httpx.Response:
            raise httpx.RemoteProtocolError("peer closed", request=request)

        gate = PaymentGate(_make_config(), _facilitator_over(_verified_then(settle)))
        result = await _call(gate, _handler(), _paid())
        assert _x402_error(result)["error"] == "SETTLEMENT_FAILED"

    @pytest.mark.asyncio
    async def test_settle_non_object_body(self) -> None:
        def settle(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=["unexpected"])

        handler = _handler()
        gate = PaymentGate(_make_config(), _facilitator_over(_verified_then(settle)))
        result = await _call(gate, handler, _paid())

        assert _x402_error(result)["error"] == "SETTLEMENT_FAILED"
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_verify_write_error(self) -> None:
        def route(request: httpx.Request) -> httpx.Response:
            raise httpx.WriteError("broken pipe", request=request)

        handler = _handler()
        gate = PaymentGate(_make_config(), _facilitator_over(route))
        result = await _call(gate, handler, _paid())

        assert _x402_error(result)["error"] == "INVALID_PAYMENT"
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_supported_null_kinds(self) -> None:
        def route(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"kinds": None})

        gate = PaymentGate(
            _make_config(network="solana-devnet", recipient="SoLRecipient"),
            _facilitator_over(route),
        )
        result = await _call(gate, _handler(), None)
        assert _x402_error(result)["error"].startswith("Facilitator request failed")


# ---------------------------------------------------------------------------
# X402Server composition
# ---------------------------------------------------------------------------


class _FakeServer:
    """Records tool registrations the way a tool server would."""

    name = "fake-server"

    def __init__(self) -> None:
        self.tools: dict[str, dict[str, Any]] = {}

    def tool(self, name, description, params_schema, annotations, handler):
        self.tools[name] = {
            "description": description,
            "params_schema": params_schema,
            "annotations": annotations,
            "handler": handler,
        }
        return name


class TestX402Server:
    def _server(self, facilitator=None) -> tuple[X402Server, _FakeServer]:
        base = _FakeServer()
        server = with_x402(base, _make_config(), facilitator=facilitator or _mock_facilitator())
        return server, base

    def test_paid_tool_annotations(self) -> None:
        server, base = self._server()
        server.paid_tool("weather", "Weather lookup", 0.05, {"city": "string"}, {"readOnlyHint": True}, _handler())

        annotations = base.tools["weather"]["annotations"]
        assert annotations == {"readOnlyHint": True, "paymentHint": True, "paymentPriceUSD": 0.05}

    def test_plain_tool_passthrough(self) -> None:
        server, base = self._server()
        handler = _handler()
        server.tool("free", "Free tool", {}, {}, handler)
        assert base.tools["free"]["handler"] is handler
        assert base.tools["free"]["annotations"] == {}

    def test_forwards_other_attributes(self) -> None:
        server, _ = self._server()
        assert server.name == "fake-server"

    @pytest.mark.asyncio
    async def test_registered_handler_is_gated(self) -> None:
        facilitator = _mock_facilitator()
        server, base = self._server(facilitator)
        handler = _handler()
        server.paid_tool("weather", "Weather lookup", 0.05, {}, None, handler)
        gated = base.tools["weather"]["handler"]

        unpaid = await gated({"city": "Oslo"}, RequestExtra())
        assert _x402_error(unpaid)["error"] == "PAYMENT_REQUIRED"
        handler.assert_not_awaited()

        paid = await gated({"city": "Oslo"}, _paid())
        assert paid["_meta"]["x402/payment-response"]["transaction"] == "0xtx"
        handler.assert_awaited_once()
