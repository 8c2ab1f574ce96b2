"""Errors raised by the ledger and the payment reconciler."""

from typing import Optional


class LedgerError(Exception):
    """Base class for ledger errors."""


class ValidationError(LedgerError):
    """Input rejected before any store mutation."""


class GroupNotFoundError(LedgerError):
    def __init__(self, group_id: str):
        super().__init__("Group not found")
        self.group_id = group_id


class TransferError(LedgerError):
    """
    A transfer was refused, failed on-chain, or could not be confirmed.

    tx_hash is set when the transfer was submitted before failing, so the
    payer can still look it up.
    """

    def __init__(self, reason: str, tx_hash: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.tx_hash = tx_hash


class ConfirmationTimeout(TransferError):
    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"Transaction confirmation timeout after {timeout:g}s", tx_hash=tx_hash)
        self.timeout = timeout


class WalletError(LedgerError):
    """The wallet connection could not provide an account."""
