"""
Payment reconciler: takes one payment from a shared link to a recorded payment.

An attempt moves through

    uninitialized -> located | fabricated -> previewed -> submitting -> confirmed | failed

Locating falls back to fabricating minimal records when this context's
storage has never seen the payment, so a payer can always pay a link.
A payment is only marked paid once its transfer is confirmed; a timed out
or reverted transfer leaves it unpaid and hands the hash back to the caller.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import schemas
from chain.executor import TransferExecutor
from chain.network import get_explorer_url
from ledger.errors import GroupNotFoundError, TransferError, ValidationError, WalletError
from ledger.events import PaymentEventBus
from ledger.store import LedgerStore
from schemas import AttemptState, OutcomeStatus
from utils.amounts import format_amount, is_positive
from utils.validation import is_valid_address

logger = logging.getLogger(__name__)

CONFIRMATION_TIMEOUT_SECONDS = float(os.getenv("CONFIRMATION_TIMEOUT_SECONDS", "60"))

SUBMITTABLE_STATES = {
    AttemptState.LOCATED,
    AttemptState.FABRICATED,
    AttemptState.PREVIEWED,
    AttemptState.FAILED,
}


@dataclass
class PaymentAttempt:
    payment_id: str
    amount: str  # Amount from the shared link
    group_name: Optional[str] = None
    state: AttemptState = AttemptState.UNINITIALIZED
    payment: Optional[schemas.Payment] = None
    group: Optional[schemas.Group] = None
    preview: Optional[schemas.TransferPreview] = None
    outcome: Optional[schemas.PaymentResult] = None

    def view(self) -> schemas.PaymentAttemptView:
        return schemas.PaymentAttemptView(
            payment_id=self.payment_id,
            state=self.state,
            payment=self.payment,
            group=self.group,
        )


class PaymentReconciler:
    def __init__(
        self,
        ledger: LedgerStore,
        executor: TransferExecutor,
        events: Optional[PaymentEventBus] = None,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT_SECONDS,
    ):
        self.ledger = ledger
        self.executor = executor
        self.events = events
        self.confirmation_timeout = confirmation_timeout

    def locate(
        self,
        payment_id: str,
        amount: str,
        group_name: Optional[str] = None,
        payer_address: Optional[str] = None,
    ) -> PaymentAttempt:
        """
        Find the payment and its group, fabricating them if they are unknown here.

        Args:
            payment_id: Payment ID from the link path
            amount: Amount from the link query, used only when fabricating
            group_name: Group name from the link query, used only when fabricating
            payer_address: Recorded as creator of a fabricated group
        """
        attempt = PaymentAttempt(payment_id=payment_id, amount=amount, group_name=group_name)

        lookup = self.ledger.get_payment(payment_id)
        if lookup:
            attempt.payment = lookup.payment
            attempt.group = lookup.group
            attempt.state = AttemptState.LOCATED
            return attempt

        attempt.payment, attempt.group = self.ledger.fabricate(
            payment_id, amount, group_name=group_name, creator_address=payer_address
        )
        attempt.state = AttemptState.FABRICATED
        return attempt

    async def preview(self, attempt: PaymentAttempt, amount: Optional[str] = None) -> schemas.TransferPreview:
        """Resolve destination, amount and token. Failures are reported, not raised."""
        if attempt.state == AttemptState.UNINITIALIZED:
            raise ValidationError("Payment has not been located")

        amount = amount or attempt.amount
        group = attempt.group
        network = group or self.ledger.network
        preview = schemas.TransferPreview(
            to=group.wallet_address if group else None,
            amount=amount,
            token_symbol=network.token_symbol,
            token_address=network.token_address,
        )

        if group is None:
            preview.error = "Payment is not linked to a group"
        else:
            try:
                preview.fee_estimate = await self.executor.preview(group.wallet_address, amount, group.token_address)
            except (TransferError, WalletError) as e:
                logger.warning(f"Failed to preview transfer for payment {attempt.payment_id}: {e}")
                preview.error = str(e)

        attempt.preview = preview
        if attempt.state != AttemptState.CONFIRMED:
            attempt.state = AttemptState.PREVIEWED
        return preview

    async def submit(
        self,
        attempt: PaymentAttempt,
        payer_address: str,
        amount: Optional[str] = None,
    ) -> schemas.PaymentResult:
        """
        Send the transfer and record the outcome.

        The amount given here is what gets sent and what counts toward the
        group's collected amount; the payment's recorded amount is left as is.

        Raises:
            ValidationError: If the attempt, amount or payer address is unusable
        """
        if attempt.state not in SUBMITTABLE_STATES:
            if attempt.state == AttemptState.CONFIRMED:
                return self._finish(attempt, OutcomeStatus.REJECTED, reason="Payment has already been paid")
            raise ValidationError(f"Payment cannot be submitted while {attempt.state.value}")

        amount = amount or attempt.amount
        if not is_positive(amount):
            raise ValidationError(f"Invalid payment amount: {amount}")
        if not is_valid_address(payer_address):
            raise ValidationError(f"Invalid payer address: {payer_address}")

        # Another context may have paid or attached this payment since it was located
        lookup = self.ledger.get_payment(attempt.payment_id)
        if lookup:
            attempt.payment, attempt.group = lookup.payment, lookup.group

        if attempt.payment and attempt.payment.paid:
            return self._finish(attempt, OutcomeStatus.REJECTED, reason="Payment has already been paid")
        if attempt.group is None:
            # The creator's group never reached this store; pay into a group of its own
            logger.warning(f"Payment {attempt.payment_id} has no group here, wrapping it in a temporary group")
            attempt.payment, attempt.group = self.ledger.fabricate(
                attempt.payment_id,
                amount,
                group_name=attempt.group_name,
                creator_address=payer_address,
                standalone=True,
            )
        group = attempt.group
        if group is None:
            return self._finish(attempt, OutcomeStatus.REJECTED, reason="Payment is not linked to a group")
        if not is_valid_address(group.wallet_address):
            return self._finish(attempt, OutcomeStatus.REJECTED, reason=f"Invalid wallet address: {group.wallet_address}")

        attempt.state = AttemptState.SUBMITTING
        logger.info(f"Submitting payment {attempt.payment_id}: {format_amount(amount, group.token_symbol)} to {group.wallet_address}")

        try:
            tx_hash = await self.executor.transfer(group.wallet_address, amount, group.token_address)
        except (TransferError, WalletError) as e:
            logger.error(f"Transfer for payment {attempt.payment_id} was not submitted: {e}")
            return self._finish(attempt, OutcomeStatus.REJECTED, reason=str(e), tx_hash=getattr(e, "tx_hash", None))

        try:
            receipt = await self.executor.wait_for_confirmation(tx_hash, self.confirmation_timeout)
        except TransferError as e:
            logger.warning(f"Payment {attempt.payment_id} submitted as {tx_hash} but not confirmed: {e}")
            self.ledger.record_pending_transaction(attempt.payment_id, tx_hash)
            return self._finish(attempt, OutcomeStatus.SUBMITTED_UNCONFIRMED, reason=e.reason, tx_hash=tx_hash)

        if not receipt.status:
            logger.error(f"Transaction {receipt.tx_hash} for payment {attempt.payment_id} failed on-chain")
            return self._finish(attempt, OutcomeStatus.REVERTED, reason="Transaction failed on-chain", tx_hash=receipt.tx_hash)

        return self._record_confirmed(attempt, group, payer_address, amount, receipt.tx_hash)

    async def pay(
        self,
        payment_id: str,
        amount: str,
        payer_address: str,
        group_name: Optional[str] = None,
    ) -> schemas.PaymentResult:
        """Locate, preview and submit in one call."""
        attempt = self.locate(payment_id, amount, group_name=group_name, payer_address=payer_address)
        await self.preview(attempt)
        return await self.submit(attempt, payer_address, amount)

    async def claim(self, group_id: str, to_address: str) -> schemas.ClaimResult:
        """
        Transfer a group's collected amount to an address and zero the aggregate.

        Payments keep their paid flags, so a later recompute brings the
        collected amount back.

        Raises:
            GroupNotFoundError: If the group does not exist
            ValidationError: If there is nothing to claim or the address is invalid
            TransferError: If the transfer fails or is not confirmed
        """
        group = self.ledger.get_group(group_id)
        if not group:
            raise GroupNotFoundError(group_id)
        if not is_positive(group.amount_collected):
            raise ValidationError("No funds to claim")
        if not is_valid_address(to_address):
            raise ValidationError(f"Invalid destination address: {to_address}")

        amount = group.amount_collected
        logger.info(f"Claiming {format_amount(amount, group.token_symbol)} from group {group_id} to {to_address}")

        tx_hash = await self.executor.transfer(to_address, amount, group.token_address)
        receipt = await self.executor.wait_for_confirmation(tx_hash, self.confirmation_timeout)
        if not receipt.status:
            raise TransferError("Claim transaction failed on-chain", tx_hash=receipt.tx_hash)

        self.ledger.reset_collected(group_id)
        return schemas.ClaimResult(
            success=True,
            amount=amount,
            to_address=to_address,
            tx_hash=receipt.tx_hash,
            explorer_url=get_explorer_url(receipt.tx_hash),
        )

    def _record_confirmed(
        self,
        attempt: PaymentAttempt,
        group: schemas.Group,
        payer_address: str,
        amount: str,
        tx_hash: str,
    ) -> schemas.PaymentResult:
        explorer_url = get_explorer_url(tx_hash)

        payment = self.ledger.mark_paid(attempt.payment_id, payer_address, tx_hash, explorer_url, paid_amount=amount)
        if payment is None:
            # The record was lost to a concurrent save; the transfer still happened
            logger.warning(f"Payment {attempt.payment_id} vanished before it could be recorded, recreating it")
            self.ledger.fabricate(
                attempt.payment_id, amount, group_name=group.name, creator_address=payer_address, standalone=True
            )
            payment = self.ledger.mark_paid(attempt.payment_id, payer_address, tx_hash, explorer_url, paid_amount=amount)

        if payment is not None and payment.tx_hash != tx_hash:
            # Paid elsewhere while this transfer was confirming; it is not counted
            logger.error(
                f"Payment {attempt.payment_id} was already paid in {payment.tx_hash}, "
                f"duplicate transfer {tx_hash} was not recorded"
            )
            attempt.payment = payment
            return self._finish(
                attempt,
                OutcomeStatus.REJECTED,
                reason=f"Payment was already paid in {payment.tx_hash}; transfer {tx_hash} was not recorded",
                tx_hash=tx_hash,
            )

        lookup = self.ledger.get_payment(attempt.payment_id)
        group_id = lookup.group.id if lookup else group.id
        self.ledger.recompute_collected(group_id)

        if self.events:
            self.events.publish_completed(attempt.payment_id, group_id, amount)

        attempt.payment = payment
        attempt.group = self.ledger.get_group(group_id)
        attempt.state = AttemptState.CONFIRMED
        attempt.outcome = schemas.PaymentResult(
            status=OutcomeStatus.CONFIRMED,
            success=True,
            tx_hash=tx_hash,
            explorer_url=explorer_url,
            payment=payment,
        )
        return attempt.outcome

    def _finish(
        self,
        attempt: PaymentAttempt,
        status: OutcomeStatus,
        reason: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> schemas.PaymentResult:
        if attempt.state != AttemptState.CONFIRMED:
            attempt.state = AttemptState.FAILED
        attempt.outcome = schemas.PaymentResult(
            status=status,
            success=False,
            tx_hash=tx_hash,
            explorer_url=get_explorer_url(tx_hash) if tx_hash else None,
            reason=reason,
            payment=attempt.payment,
        )
        return attempt.outcome
