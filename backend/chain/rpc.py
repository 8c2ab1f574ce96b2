"""Minimal JSON-RPC client and ERC-20 call encoding."""

import itertools
import logging
from typing import Any, Optional

import requests

from chain.network import RPC_URL

logger = logging.getLogger(__name__)

TRANSFER_SELECTOR = "0xa9059cbb"  # transfer(address,uint256)
BALANCE_OF_SELECTOR = "0x70a08231"  # balanceOf(address)
DECIMALS_SELECTOR = "0x313ce567"  # decimals()


class RpcError(Exception):
    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class RpcClient:
    def __init__(self, url: str = RPC_URL, timeout: float = 10):
        self.url = url
        self.timeout = timeout
        self._ids = itertools.count(1)

    def call(self, method: str, params: Optional[list] = None) -> Any:
        """
        Send one JSON-RPC request and return its result.

        Raises:
            RpcError: On transport failure or an error object in the response
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout:
            logger.error(f"RPC request timed out: {method}")
            raise RpcError(f"RPC request timed out: {method}")
        except requests.exceptions.RequestException as e:
            logger.error(f"RPC request failed: {method}: {e}")
            raise RpcError(f"RPC request failed: {e}")
        except ValueError:
            raise RpcError(f"Invalid JSON-RPC response for {method}")

        error = data.get("error")
        if error:
            raise RpcError(error.get("message", "Unknown RPC error"), code=error.get("code"))
        return data.get("result")


def encode_address(address: str) -> str:
    return address[2:].lower().rjust(64, "0")


def encode_uint(value: int) -> str:
    return format(value, "x").rjust(64, "0")


def decode_uint(value: Optional[str]) -> int:
    if not value or value == "0x":
        return 0
    return int(value, 16)


def encode_transfer(to_address: str, units: int) -> str:
    return TRANSFER_SELECTOR + encode_address(to_address) + encode_uint(units)


def encode_balance_of(address: str) -> str:
    return BALANCE_OF_SELECTOR + encode_address(address)
