"""Wallet connection backed by a JSON-RPC endpoint that manages accounts."""

import logging
from typing import Optional, Protocol

from starlette.concurrency import run_in_threadpool

import schemas
from chain.network import default_network_info
from chain.rpc import RpcClient, RpcError
from ledger.errors import WalletError

logger = logging.getLogger(__name__)


class WalletConnection(Protocol):
    async def connect(self) -> str:
        ...

    async def disconnect(self) -> None:
        ...

    async def current_account(self) -> Optional[str]:
        ...

    async def is_connected(self) -> bool:
        ...

    async def chain_info(self) -> schemas.NetworkInfo:
        ...


class RpcWalletConnection:
    def __init__(self, rpc: RpcClient):
        self.rpc = rpc
        self._disconnected = False

    async def connect(self) -> str:
        try:
            accounts = await run_in_threadpool(self.rpc.call, "eth_requestAccounts")
        except RpcError as e:
            logger.error(f"Error connecting wallet: {e}")
            raise WalletError("Failed to connect wallet")
        if not accounts:
            raise WalletError("Wallet did not return an account")
        self._disconnected = False
        return accounts[0]

    async def disconnect(self) -> None:
        self._disconnected = True

    async def current_account(self) -> Optional[str]:
        if self._disconnected:
            return None
        try:
            accounts = await run_in_threadpool(self.rpc.call, "eth_accounts")
        except RpcError as e:
            logger.error(f"Error getting current account: {e}")
            return None
        return accounts[0] if accounts else None

    async def is_connected(self) -> bool:
        return bool(await self.current_account())

    async def chain_info(self) -> schemas.NetworkInfo:
        """Configured network descriptor with the chain ID the endpoint reports."""
        info = default_network_info()
        try:
            chain_id = await run_in_threadpool(self.rpc.call, "eth_chainId")
        except RpcError as e:
            logger.error(f"Error getting network info: {e}")
            return info
        return info.model_copy(update={"chain_id": chain_id})
