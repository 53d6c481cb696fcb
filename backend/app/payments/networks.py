"""Per-chain network constants and their resolution from settings."""

from dataclasses import dataclass

from ..config import Settings
from .errors import UnsupportedChainError
from .models import PaymentChain

# Solana clusters
SOLANA_NETWORKS = {
    "mainnet-beta": {
        "rpc_url": "https://api.mainnet-beta.solana.com",  # public, rate-limited
        "usdc_mint": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        "explorer": "https://explorer.solana.com",
    },
    "devnet": {
        "rpc_url": "https://api.devnet.solana.com",
        "usdc_mint": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",  # Circle's devnet USDC
        "explorer": "https://explorer.solana.com/?cluster=devnet",
    },
}

# EVM networks for the Base contract-chain
EVM_NETWORKS = {
    "base": {
        "rpc_url": "https://mainnet.base.org",
        "usdc_address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "chain_id": 8453,
        "explorer": "https://basescan.org",
    },
    "base_sepolia": {
        "rpc_url": "https://sepolia.base.org",
        "usdc_address": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",  # Circle's testnet USDC
        "chain_id": 84532,
        "explorer": "https://sepolia.basescan.org",
    },
}


@dataclass(frozen=True)
class ChainNetwork:
    """Everything needed to build options for, and verify payments on, one chain."""

    chain: PaymentChain
    network: str
    chain_id: str
    rpc_urls: tuple[str, ...]
    usdc_token: str  # mint (Solana) or contract address (Base)
    treasury_address: str | None
    required_confirmations: int = 1


def _endpoints(primary: str | None, fallback: str | None, public: str) -> tuple[str, ...]:
    urls = [url for url in (primary, fallback) if url]
    if not urls:
        urls = [public]
    return tuple(dict.fromkeys(urls))


def resolve_network(chain: PaymentChain, settings: Settings) -> ChainNetwork:
    """Build the ``ChainNetwork`` for ``chain`` from settings.

    Raises:
        UnsupportedChainError: if the configured network name is unknown.
    """
    if chain == PaymentChain.solana:
        config = SOLANA_NETWORKS.get(settings.solana_network)
        if config is None:
            raise UnsupportedChainError(f"Unknown Solana network: {settings.solana_network}")
        return ChainNetwork(
            chain=chain,
            network=settings.solana_network,
            chain_id=settings.solana_network,
            rpc_urls=_endpoints(
                settings.solana_rpc_url, settings.solana_rpc_fallback_url, config["rpc_url"]
            ),
            usdc_token=settings.usdc_mint_solana or config["usdc_mint"],
            treasury_address=settings.solana_treasury_pubkey,
        )

    if chain == PaymentChain.base:
        config = EVM_NETWORKS.get(settings.base_network)
        if config is None:
            raise UnsupportedChainError(f"Unknown EVM network: {settings.base_network}")
        return ChainNetwork(
            chain=chain,
            network=settings.base_network,
            chain_id=str(config["chain_id"]),
            rpc_urls=_endpoints(
                settings.base_rpc_url, settings.base_rpc_fallback_url, config["rpc_url"]
            ),
            usdc_token=(settings.usdc_contract_base or config["usdc_address"]).lower(),
            treasury_address=settings.base_treasury_address,
            required_confirmations=settings.base_required_confirmations,
        )

    raise UnsupportedChainError(f"Unsupported payment chain: {chain}")
