"""Static network table: families, chain ids and the default USDC asset."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class NetworkFamily(str, Enum):
    """Networks sharing one payment-requirement shape."""

    EVM = "evm"  # EIP-712 account signatures
    SVM = "svm"  # fee payer supplied by the facilitator


@dataclass(frozen=True)
class AssetInfo:
    address: str
    decimals: int = 6
    eip712: dict[str, Any] | None = None


@dataclass(frozen=True)
class NetworkInfo:
    name: str
    family: NetworkFamily
    chain_id: int
    asset: AssetInfo


def _evm(name: str, chain_id: int, usdc: str, usdc_name: str) -> NetworkInfo:
    return NetworkInfo(
        name=name,
        family=NetworkFamily.EVM,
        chain_id=chain_id,
        asset=AssetInfo(address=usdc, eip712={"name": usdc_name, "version": "2"}),
    )


def _svm(name: str, chain_id: int, mint: str) -> NetworkInfo:
    return NetworkInfo(
        name=name,
        family=NetworkFamily.SVM,
        chain_id=chain_id,
        asset=AssetInfo(address=mint),
    )


NETWORKS: dict[str, NetworkInfo] = {
    info.name: info
    for info in (
        _evm("base-sepolia", 84532, "0x036CbD53842c5426634e7929541eC2318f3dCF7e", "USDC"),
        _evm("base", 8453, "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "USD Coin"),
        _evm("avalanche-fuji", 43113, "0x5425890298aed601595a70AB815c96711a31Bc65", "USD Coin"),
        _evm("avalanche", 43114, "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", "USD Coin"),
        _evm("iotex", 4689, "0xcdf79194c6c285077a58da47641d4dbe51f63542", "Bridged USDC"),
        _evm("sei-testnet", 1328, "0x4fcf1784b31630811181f670aea7a7bef803eaed", "USDC"),
        _evm("sei", 1329, "0xe15fc38f6d8c56af07bbcbe3baf5708a2bf42392", "USDC"),
        _evm("polygon", 137, "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359", "USD Coin"),
        _evm("polygon-amoy", 80002, "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582", "USDC"),
        _evm("peaq", 3338, "0xbbA60da06c2c5424f03f7434542280FCAd453d10", "USDC"),
        _evm("abstract", 2741, "0x84a71ccd554cc1b02749b35d22f684cc8ec987e1", "Bridged USDC"),
        _evm("abstract-testnet", 11124, "0xe4C7fBB0a626ed208021ccabA6Be1566905E2dFc", "Bridged USDC"),
        _svm("solana-devnet", 103, "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"),
        _svm("solana", 101, "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"),
    )
}

_CHAIN_ID_TO_NETWORK: dict[int, str] = {
    info.chain_id: info.name for info in NETWORKS.values() if info.family is NetworkFamily.EVM
}


def get_network(network: str) -> NetworkInfo | None:
    return NETWORKS.get(network)


def network_family(network: str) -> NetworkFamily | None:
    info = NETWORKS.get(network)
    return info.family if info else None


def networks_in_family(family: NetworkFamily) -> list[str]:
    return [name for name, info in NETWORKS.items() if info.family is family]


def network_for_chain_id(chain_id: int) -> str | None:
    """Map an EVM chain id to its symbolic network name."""
    return _CHAIN_ID_TO_NETWORK.get(chain_id)
