"""Wallet signer capabilities and credential construction.

Signers are introspected structurally:

- ``MultiNetworkSigner``: exposes both ``evm`` and ``svm`` signers; any network.
- ``EvmSigner``: bound to one chain via ``chain_id``; that network only.
- ``SvmSigner``: any network of the SVM family.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_typed_data
from hexbytes import HexBytes

from x402_mcp.codec import encode_payment
from x402_mcp.constants import SCHEME_EXACT
from x402_mcp.errors import SignerCapabilityError
from x402_mcp.networks import NetworkFamily, get_network, network_for_chain_id, networks_in_family
from x402_mcp.requirements import canonical_evm_address
from x402_mcp.types import PaymentPayload, PaymentRequirements

logger = logging.getLogger(__name__)

# Authorizations are valid from slightly in the past to absorb clock skew.
VALID_AFTER_BACKDATE_SECONDS = 600


@runtime_checkable
class EvmSigner(Protocol):
    address: str
    chain_id: int

    def sign_typed_data(self, typed_data: dict[str, Any]) -> str: ...


@runtime_checkable
class SvmSigner(Protocol):
    address: str

    def sign_transaction(self, transaction: bytes) -> bytes: ...


@runtime_checkable
class MultiNetworkSigner(Protocol):
    evm: EvmSigner
    svm: SvmSigner


# (signer, x402 version, requirements, config) -> payment token
PaymentBuilder = Callable[[Any, int, PaymentRequirements, dict[str, Any] | None], Awaitable[str]]
# signer -> compatible networks, None meaning unconstrained
SignerNetworks = Callable[[Any], list[str] | None]


class EvmAccountSigner:
    """``EvmSigner`` backed by an ``eth_account`` private key."""

    def __init__(self, private_key: str, chain_id: int) -> None:
        self._account = Account.from_key(private_key)
        self.chain_id = chain_id

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(self, typed_data: dict[str, Any]) -> str:
        signable = encode_typed_data(full_message=typed_data)
        signature = self._account.sign_message(signable).signature.hex()
        return signature if signature.startswith("0x") else "0x" + signature


def compatible_networks(signer: Any) -> list[str] | None:
    """Networks ``signer`` can pay on; ``None`` when it can pay on any."""
    if isinstance(signer, MultiNetworkSigner):
        return None
    if isinstance(signer, EvmSigner):
        network = network_for_chain_id(signer.chain_id)
        if network is None:
            raise SignerCapabilityError(f"Signer chain id {signer.chain_id} maps to no known network")
        return [network]
    if isinstance(signer, SvmSigner):
        return networks_in_family(NetworkFamily.SVM)
    raise SignerCapabilityError(f"Unrecognized wallet signer: {type(signer).__name__}")


def select_requirements(
    accepts: list[PaymentRequirements],
    networks: list[str] | None,
    scheme: str = SCHEME_EXACT,
) -> PaymentRequirements | None:
    """First entry, in server order, with ``scheme`` on a compatible network."""
    for requirements in accepts:
        if requirements.scheme != scheme:
            continue
        if networks is None or requirements.network in networks:
            return requirements
    return None


# ---------------------------------------------------------------------------
# EVM "exact" credential (EIP-3009 TransferWithAuthorization)
# ---------------------------------------------------------------------------


def _transfer_typed_data(
    requirements: PaymentRequirements,
    chain_id: int,
    message: dict[str, Any],
) -> dict[str, Any]:
    extra = requirements.extra or {}
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "TransferWithAuthorization": [
                {"name": "from", "type": "address"},
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "validAfter", "type": "uint256"},
                {"name": "validBefore", "type": "uint256"},
                {"name": "nonce", "type": "bytes32"},
            ],
        },
        "primaryType": "TransferWithAuthorization",
        "domain": {
            "name": extra.get("name", ""),
            "version": extra.get("version", ""),
            "chainId": chain_id,
            "verifyingContract": canonical_evm_address(requirements.asset, "asset"),
        },
        "message": message,
    }


async def build_exact_evm_payment(
    signer: Any,
    version: int,
    requirements: PaymentRequirements,
    config: dict[str, Any] | None = None,
) -> str:
    """Sign an EIP-3009 authorization for ``requirements`` and encode it as a token.

    ``config`` may carry ``now`` (unix seconds) and ``nonce`` (32 bytes),
    mainly so tests can pin them.
    """
    evm = signer.evm if isinstance(signer, MultiNetworkSigner) else signer
    if not isinstance(evm, EvmSigner):
        raise SignerCapabilityError("An EVM signer is required for the exact EVM scheme")

    info = get_network(requirements.network)
    if info is None or info.family is not NetworkFamily.EVM:
        raise SignerCapabilityError(
            f"No EVM credential builder for network: {requirements.network}"
        )

    options = config or {}
    now = int(options.get("now", time.time()))
    nonce = options.get("nonce") or secrets.token_bytes(32)
    valid_after = now - VALID_AFTER_BACKDATE_SECONDS
    valid_before = now + requirements.max_timeout_seconds
    pay_to = canonical_evm_address(requirements.pay_to, "payTo")

    message = {
        "from": evm.address,
        "to": pay_to,
        "value": int(requirements.max_amount_required),
        "validAfter": valid_after,
        "validBefore": valid_before,
        "nonce": HexBytes(nonce),
    }
    signature = evm.sign_typed_data(_transfer_typed_data(requirements, info.chain_id, message))

    payload = PaymentPayload(
        scheme=SCHEME_EXACT,
        network=requirements.network,
        x402_version=version,
        payload={
            "signature": signature,
            "authorization": {
                "from": evm.address,
                "to": pay_to,
                "value": requirements.max_amount_required,
                "validAfter": str(valid_after),
                "validBefore": str(valid_before),
                "nonce": "0x" + bytes(nonce).hex(),
            },
        },
    )
    logger.debug("Signed %s payment on %s for %s", SCHEME_EXACT, requirements.network, requirements.resource)
    return encode_payment(payload)
