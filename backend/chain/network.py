"""Network and token descriptor for the chain the ledger settles on."""

import os

import schemas


NETWORK_NAME = os.getenv("NETWORK_NAME", "Base Sepolia")
CHAIN_ID = int(os.getenv("CHAIN_ID", "84532"))
RPC_URL = os.getenv("RPC_URL", "https://sepolia.base.org")
EXPLORER_URL = os.getenv("EXPLORER_URL", "https://sepolia.basescan.org").rstrip("/")
TOKEN_SYMBOL = os.getenv("TOKEN_SYMBOL", "USDC")
# Base Sepolia USDC
TOKEN_ADDRESS = os.getenv("TOKEN_ADDRESS", "0x036CbD53842c5426634e7929541eC2318f3dCF7e")
DEFAULT_TOKEN_DECIMALS = 6


def get_explorer_url(tx_hash: str) -> str:
    """Block explorer page for a transaction."""
    return f"{EXPLORER_URL}/tx/{tx_hash}"


def default_network_info() -> schemas.NetworkInfo:
    return schemas.NetworkInfo(
        chain_id=hex(CHAIN_ID),
        network=NETWORK_NAME,
        token_symbol=TOKEN_SYMBOL,
        token_address=TOKEN_ADDRESS,
    )
