"""CDP-style facilitator authentication — short-lived signed JWT bearer tokens.

The API key secret is either a bare base64 Ed25519 key (64 bytes:
seed followed by public key) or a PEM-encoded EC private key.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
import time
from typing import Any
from urllib.parse import urlparse

import jwt
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from x402_mcp.errors import ConfigurationError
from x402_mcp.facilitator import AuthHeaderFactory

logger = logging.getLogger(__name__)

JWT_ISSUER = "cdp"
JWT_LIFETIME_SECONDS = 120


def load_signing_key(key_secret: str) -> tuple[Any, str]:
    """Return ``(private_key, jwt_algorithm)`` for a CDP API key secret."""
    stripped = key_secret.strip()
    if stripped.startswith("-----"):
        try:
            key = load_pem_private_key(stripped.encode(), password=None)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid CDP API key secret: {e}") from e
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ConfigurationError("PEM CDP API key secret must be an EC private key")
        return key, "ES256"

    try:
        raw = base64.b64decode(stripped, validate=True)
    except binascii.Error as e:
        raise ConfigurationError(f"Invalid CDP API key secret: {e}") from e
    if len(raw) != 64:
        raise ConfigurationError(
            f"Ed25519 CDP API key secret must decode to 64 bytes, got {len(raw)}"
        )
    return Ed25519PrivateKey.from_private_bytes(raw[:32]), "EdDSA"


def generate_jwt(
    key_id: str,
    key_secret: str,
    method: str,
    host: str,
    path: str,
    *,
    expires_in: int = JWT_LIFETIME_SECONDS,
) -> str:
    """Sign a JWT bound to one ``METHOD host/path`` request."""
    private_key, algorithm = load_signing_key(key_secret)
    now = int(time.time())
    claims = {
        "sub": key_id,
        "iss": JWT_ISSUER,
        "nbf": now,
        "exp": now + expires_in,
        "uris": [f"{method.upper()} {host}{path}"],
    }
    headers = {"kid": key_id, "nonce": secrets.token_hex(16), "typ": "JWT"}
    return jwt.encode(claims, private_key, algorithm=algorithm, headers=headers)


def create_cdp_auth_headers(
    key_id: str, key_secret: str, facilitator_url: str
) -> AuthHeaderFactory:
    """Build the per-request header factory for :class:`FacilitatorClient`.

    The secret is parsed once up front so a bad key fails at startup
    instead of on the first paid call.
    """
    load_signing_key(key_secret)
    parsed = urlparse(facilitator_url)
    host = parsed.netloc
    base_path = parsed.path.rstrip("/")

    def _headers(method: str, endpoint: str) -> dict[str, str]:
        token = generate_jwt(key_id, key_secret, method, host, base_path + endpoint)
        return {"Authorization": f"Bearer {token}"}

    logger.debug("CDP facilitator auth enabled for %s", host)
    return _headers
