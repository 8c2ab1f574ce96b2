"""ERC-20 transfers sent through the connected wallet."""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

from starlette.concurrency import run_in_threadpool

from chain.network import DEFAULT_TOKEN_DECIMALS
from chain.rpc import (
    DECIMALS_SELECTOR,
    RpcClient,
    RpcError,
    decode_uint,
    encode_balance_of,
    encode_transfer,
)
from chain.wallet import WalletConnection
from ledger.errors import ConfirmationTimeout, TransferError
from utils.amounts import to_token_units

logger = logging.getLogger(__name__)

RECEIPT_POLL_INTERVAL = float(os.getenv("RECEIPT_POLL_INTERVAL", "2"))
TRANSFER_GAS_LIMIT = 100000


@dataclass
class TransferReceipt:
    tx_hash: str
    status: bool
    block_number: Optional[int] = None


class TransferExecutor(Protocol):
    async def preview(self, to_address: str, amount: str, token_address: str) -> Optional[int]:
        ...

    async def transfer(self, to_address: str, amount: str, token_address: str) -> str:
        ...

    async def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TransferReceipt:
        ...


def describe_send_error(message: str) -> str:
    """Turn a wallet/node error message into something a payer can act on."""
    lowered = message.lower()
    if "user rejected" in lowered or "user denied" in lowered:
        return "Transaction was rejected by the user."
    if "insufficient funds" in lowered:
        return "Insufficient ETH to cover gas fees. Please add more ETH to your wallet."
    if "gas required exceeds allowance" in lowered:
        return "Gas required exceeds allowance. Please increase the gas limit or try again later."
    return f"Failed to send transaction: {message}"


class RpcTransferExecutor:
    def __init__(
        self,
        rpc: RpcClient,
        wallet: WalletConnection,
        poll_interval: float = RECEIPT_POLL_INTERVAL,
    ):
        self.rpc = rpc
        self.wallet = wallet
        self.poll_interval = poll_interval

    async def _call(self, method: str, params: Optional[list] = None):
        return await run_in_threadpool(self.rpc.call, method, params)

    async def _sender(self) -> str:
        account = await self.wallet.current_account()
        if not account:
            raise TransferError("Please connect your wallet first")
        return account

    async def _decimals(self, token_address: str) -> int:
        try:
            result = await self._call("eth_call", [{"to": token_address, "data": DECIMALS_SELECTOR}, "latest"])
            return decode_uint(result)
        except (RpcError, ValueError) as e:
            logger.warning(f"Failed to get token decimals, using default value of {DEFAULT_TOKEN_DECIMALS}: {e}")
            return DEFAULT_TOKEN_DECIMALS

    async def _units(self, amount: str, token_address: str) -> int:
        decimals = await self._decimals(token_address)
        try:
            return to_token_units(amount, decimals)
        except ValueError as e:
            raise TransferError(str(e))

    async def _check_balance(self, sender: str, token_address: str, units: int, amount: str) -> None:
        try:
            result = await self._call("eth_call", [{"to": token_address, "data": encode_balance_of(sender)}, "latest"])
        except RpcError as e:
            logger.error(f"Failed to check token balance: {e}")
            raise TransferError("Failed to check token balance. Please make sure you have enough tokens.")
        if decode_uint(result) < units:
            raise TransferError(f"Insufficient token balance to send {amount}")

    async def estimate_fee(self, to_address: str, amount: str, token_address: str) -> int:
        """Gas estimate times current gas price, in wei."""
        sender = await self._sender()
        units = await self._units(amount, token_address)
        tx = {"from": sender, "to": token_address, "data": encode_transfer(to_address, units)}
        try:
            gas = decode_uint(await self._call("eth_estimateGas", [tx]))
            gas_price = decode_uint(await self._call("eth_gasPrice"))
        except RpcError as e:
            raise TransferError(f"Failed to estimate fee: {e.message}")
        return gas * gas_price

    async def preview(self, to_address: str, amount: str, token_address: str) -> Optional[int]:
        return await self.estimate_fee(to_address, amount, token_address)

    async def transfer(self, to_address: str, amount: str, token_address: str) -> str:
        """
        Send the tokens and return the transaction hash.

        Raises:
            TransferError: If the wallet is not connected, the balance is too
                low, or the wallet refuses to send
        """
        sender = await self._sender()
        units = await self._units(amount, token_address)
        await self._check_balance(sender, token_address, units, amount)

        tx = {
            "from": sender,
            "to": token_address,
            "data": encode_transfer(to_address, units),
            "gas": hex(TRANSFER_GAS_LIMIT),
        }
        logger.info(f"Sending {amount} from {sender} to {to_address}")
        try:
            tx_hash = await self._call("eth_sendTransaction", [tx])
        except RpcError as e:
            logger.error(f"Error sending transaction: {e}")
            raise TransferError(describe_send_error(e.message))
        return tx_hash

    async def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TransferReceipt:
        """
        Poll for the receipt until it appears or the timeout passes.

        Raises:
            ConfirmationTimeout: If no receipt arrives in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                receipt = await self._call("eth_getTransactionReceipt", [tx_hash])
            except RpcError as e:
                logger.warning(f"Error checking transaction receipt for {tx_hash}: {e}")
                receipt = None

            if receipt:
                return TransferReceipt(
                    tx_hash=receipt.get("transactionHash", tx_hash),
                    status=decode_uint(receipt.get("status")) == 1,
                    block_number=decode_uint(receipt.get("blockNumber")) if receipt.get("blockNumber") else None,
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConfirmationTimeout(tx_hash, timeout)
            await asyncio.sleep(min(self.poll_interval, remaining))
