"""Async HTTP client for an x402 facilitator: /verify, /settle, /supported."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import httpx

from x402_mcp.config import FacilitatorConfig
from x402_mcp.types import (
    PaymentPayload,
    PaymentRequirements,
    SettlementResult,
    SupportedResponse,
    VerificationResult,
)

logger = logging.getLogger(__name__)

# (method, path) -> extra request headers
AuthHeaderFactory = Callable[[str, str], dict[str, str]]


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class FacilitatorError(Exception):
    """Base exception for facilitator requests."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FacilitatorAuthError(FacilitatorError):
    """401/403 — bad or missing facilitator credentials."""


class FacilitatorValidationError(FacilitatorError):
    """400/422 — the facilitator rejected the request body."""


class FacilitatorServerError(FacilitatorError):
    """5xx — server-side error (retryable)."""


class FacilitatorConnectionError(FacilitatorError):
    """Network/DNS failure (retryable)."""


class FacilitatorTimeoutError(FacilitatorError):
    """Request timeout (retryable)."""


_STATUS_MAP: dict[int, type[FacilitatorError]] = {
    400: FacilitatorValidationError,
    401: FacilitatorAuthError,
    403: FacilitatorAuthError,
    422: FacilitatorValidationError,
}


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


@runtime_checkable
class Facilitator(Protocol):
    """What the server gate needs from a facilitator."""

    async def verify(
        self, payload: PaymentPayload, requirements: PaymentRequirements
    ) -> VerificationResult: ...

    async def settle(
        self, payload: PaymentPayload, requirements: PaymentRequirements
    ) -> SettlementResult: ...

    async def supported(self) -> SupportedResponse: ...


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class FacilitatorClient:
    """Async client for the facilitator REST API.

    Constructor accepts explicit params — no env-var loading.
    ``auth_headers`` is called per request so signed, short-lived
    credentials (CDP JWTs) can bind to the method and path.
    """

    def __init__(
        self,
        url: str,
        *,
        auth_headers: AuthHeaderFactory | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._url = url.rstrip("/")
        self._auth_headers = auth_headers
        self._client = httpx.AsyncClient(
            base_url=self._url,
            timeout=httpx.Timeout(timeout, connect=5.0),
        )

    @classmethod
    def from_config(cls, config: FacilitatorConfig) -> FacilitatorClient:
        auth_headers: AuthHeaderFactory | None = None
        if config.has_cdp_credentials:
            from x402_mcp.auth import create_cdp_auth_headers

            auth_headers = create_cdp_auth_headers(
                config.cdp_api_key_id or "",
                config.cdp_api_key_secret or "",
                config.url,
            )
        return cls(config.url, auth_headers=auth_headers, timeout=config.timeout_seconds)

    @property
    def url(self) -> str:
        return self._url

    # -- internal request dispatcher -----------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and map errors to the facilitator exception hierarchy."""
        headers = self._auth_headers(method, endpoint) if self._auth_headers else None
        logger.debug("Facilitator %s %s%s", method, self._url, endpoint)
        try:
            response = await self._client.request(
                method, endpoint, json=json_data, headers=headers
            )
        except httpx.ConnectError as exc:
            raise FacilitatorConnectionError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise FacilitatorTimeoutError(str(exc)) from exc
        except httpx.TransportError as exc:
            raise FacilitatorConnectionError(str(exc)) from exc

        if response.status_code >= 400:
            body = response.text
            exc_cls = _STATUS_MAP.get(response.status_code)
            if exc_cls is not None:
                raise exc_cls(body, status_code=response.status_code)
            if response.status_code >= 500:
                raise FacilitatorServerError(body, status_code=response.status_code)
            raise FacilitatorError(body, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise FacilitatorError(
                f"Facilitator returned non-JSON body: {response.text}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise FacilitatorError(
                f"Facilitator returned unexpected body: {response.text}",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _body(payload: PaymentPayload, requirements: PaymentRequirements) -> dict[str, Any]:
        return {
            "x402Version": payload.x402_version,
            "paymentPayload": payload.to_dict(),
            "paymentRequirements": requirements.to_dict(),
        }

    # -- public API methods ---------------------------------------------------

    async def verify(
        self, payload: PaymentPayload, requirements: PaymentRequirements
    ) -> VerificationResult:
        """POST /verify — check a payment without moving funds."""
        data = await self._request("POST", "/verify", json_data=self._body(payload, requirements))
        return VerificationResult.from_dict(data)

    async def settle(
        self, payload: PaymentPayload, requirements: PaymentRequirements
    ) -> SettlementResult:
        """POST /settle — finalize a verified payment on-chain."""
        data = await self._request("POST", "/settle", json_data=self._body(payload, requirements))
        return SettlementResult.from_dict(data)

    async def supported(self) -> SupportedResponse:
        """GET /supported — payment kinds (scheme, network, extra) on offer."""
        data = await self._request("GET", "/supported")
        kinds = data.get("kinds", [])
        if not isinstance(kinds, list) or not all(isinstance(k, dict) for k in kinds):
            raise FacilitatorError(f"Facilitator returned unexpected kinds: {kinds!r}")
        return SupportedResponse.from_dict(data)

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> FacilitatorClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
