"""
Ledger store: groups, payments, and the collected-funds aggregate.

State lives in a key-value store under two keys, one JSON object of groups
and one JSON object of payments, each keyed by id. The payments object is
the only copy of a payment; a group refers to its payments by id.

Every public operation reloads from storage before reading, and every
mutation is a full load -> mutate -> save cycle. There is no locking: two
contexts mutating at the same time race, and the later save wins.
"""

import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

import schemas
from chain.network import default_network_info
from ledger.errors import ValidationError
from storage import KeyValueStore
from utils.amounts import is_positive, split_amount, sum_amounts
from utils.validation import is_valid_address, ZERO_ADDRESS

logger = logging.getLogger(__name__)

GROUPS_KEY = "settle_groups"
PAYMENTS_KEY = "settle_payments"
TEMPORARY_GROUP_NAME = "Temporary Group"


def generate_id() -> str:
    """Opaque 13-character identifier."""
    return secrets.token_hex(7)[:13]


def generate_placeholder_address() -> str:
    """Random address-shaped destination for a group without a wallet."""
    return "0x" + secrets.token_hex(20)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LedgerState:
    groups: dict[str, schemas.GroupRecord] = field(default_factory=dict)
    payments: dict[str, schemas.Payment] = field(default_factory=dict)

    def group_for_payment(self, payment_id: str) -> Optional[schemas.GroupRecord]:
        """Scan all groups for the one that owns a payment."""
        for group in self.groups.values():
            if payment_id in group.payment_ids:
                return group
        return None

    def new_id(self, prefix: str = "") -> str:
        while True:
            candidate = prefix + generate_id()
            if candidate not in self.groups and candidate not in self.payments:
                return candidate


class LedgerStore:
    """Groups and payments over a KeyValueStore. Holds no cached state."""

    def __init__(
        self,
        kv: KeyValueStore,
        network: Optional[schemas.NetworkInfo] = None,
        groups_key: str = GROUPS_KEY,
        payments_key: str = PAYMENTS_KEY,
    ):
        self.kv = kv
        self.network = network or default_network_info()
        self.groups_key = groups_key
        self.payments_key = payments_key

    # Persistence

    def load(self) -> LedgerState:
        """
        Read both collections from storage.

        Unreadable or malformed data is logged and treated as an empty ledger.
        """
        try:
            raw_groups = self._read(self.groups_key)
            raw_payments = self._read(self.payments_key)

            payments = {
                payment_id: schemas.Payment.model_validate(data)
                for payment_id, data in raw_payments.items()
            }
            groups = {
                group_id: self._parse_group(data, payments)
                for group_id, data in raw_groups.items()
            }
        except (ValueError, TypeError, AttributeError, SQLAlchemyError) as e:
            logger.error(f"Error loading ledger from storage: {e}")
            return LedgerState()

        return LedgerState(groups=groups, payments=payments)

    def save(self, state: LedgerState) -> None:
        """Write both collections. The two writes are not atomic together."""
        try:
            groups_json = json.dumps({
                group_id: group.model_dump(mode="json", by_alias=True)
                for group_id, group in state.groups.items()
            })
            payments_json = json.dumps({
                payment_id: payment.model_dump(mode="json", by_alias=True, exclude_none=True)
                for payment_id, payment in state.payments.items()
            })
            self.kv.set(self.groups_key, groups_json)
            self.kv.set(self.payments_key, payments_json)
        except (ValueError, TypeError, SQLAlchemyError) as e:
            logger.error(f"Error saving ledger to storage: {e}")

    def _read(self, key: str) -> dict:
        raw = self.kv.get(key)
        if not raw:
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object under {key!r}")
        return data

    @staticmethod
    def _parse_group(data: dict, payments: dict[str, schemas.Payment]) -> schemas.GroupRecord:
        data = dict(data)
        embedded = data.pop("payments", None) or []
        if "paymentIds" not in data and "payment_ids" not in data:
            # Older records embed full payment copies; the payments map wins
            payment_ids = []
            for item in embedded:
                payment = schemas.Payment.model_validate(item)
                payment_ids.append(payment.id)
                payments.setdefault(payment.id, payment)
            data["paymentIds"] = payment_ids
        return schemas.GroupRecord.model_validate(data)

    @staticmethod
    def _hydrate(record: schemas.GroupRecord, state: LedgerState) -> schemas.Group:
        payments = []
        for payment_id in record.payment_ids:
            payment = state.payments.get(payment_id)
            if payment is None:
                logger.warning(f"Group {record.id} references missing payment {payment_id}")
                continue
            payments.append(payment.model_copy())
        return schemas.Group(**record.model_dump(exclude={"payment_ids"}), payments=payments)

    # Groups

    def create_group(
        self,
        name: str,
        total_amount: str,
        splitter_count: int,
        creator_address: str,
        wallet_address: Optional[str] = None,
    ) -> schemas.Group:
        """
        Create a group and one unpaid payment per member except the creator.

        Raises:
            ValidationError: If any input is invalid. Nothing is written.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Group name is required")
        if not is_positive(total_amount):
            raise ValidationError("Total amount must be greater than 0")
        if isinstance(splitter_count, bool) or not isinstance(splitter_count, int) or splitter_count < 2:
            raise ValidationError("A group needs at least 2 splitters")
        if not is_valid_address(creator_address):
            raise ValidationError(f"Invalid creator address: {creator_address}")
        if wallet_address is not None and not is_valid_address(wallet_address):
            raise ValidationError(f"Invalid wallet address: {wallet_address}")

        amount_per_person = split_amount(total_amount, splitter_count)

        state = self.load()

        payment_ids = []
        for _ in range(splitter_count - 1):
            payment_id = state.new_id()
            state.payments[payment_id] = schemas.Payment(id=payment_id, amount=amount_per_person)
            payment_ids.append(payment_id)

        group = schemas.GroupRecord(
            id=state.new_id(),
            name=name.strip(),
            total_amount=str(total_amount).strip(),
            wallet_address=wallet_address or generate_placeholder_address(),
            creator_address=creator_address,
            number_of_splitters=splitter_count,
            amount_per_person=amount_per_person,
            payment_ids=payment_ids,
            amount_collected="0",
            created_at=_utcnow(),
            network=self.network.network,
            token_symbol=self.network.token_symbol,
            token_address=self.network.token_address,
        )
        state.groups[group.id] = group
        self.save(state)

        logger.info(f"Created group {group.id} with {len(payment_ids)} payments of {amount_per_person}")
        return self._hydrate(group, state)

    def get_group(self, group_id: str) -> Optional[schemas.Group]:
        state = self.load()
        record = state.groups.get(group_id)
        return self._hydrate(record, state) if record else None

    def get_user_groups(self, creator_address: str) -> list[schemas.Group]:
        """Groups created by an address, compared case-insensitively."""
        state = self.load()
        wanted = (creator_address or "").lower()
        return [
            self._hydrate(record, state)
            for record in state.groups.values()
            if record.creator_address.lower() == wanted
        ]

    def update_member_name(self, group_id: str, payment_id: str, member_name: str) -> bool:
        state = self.load()

        group = state.groups.get(group_id)
        if not group:
            logger.error(f"Group not found: {group_id}")
            return False

        payment = state.payments.get(payment_id)
        if payment_id not in group.payment_ids or payment is None:
            logger.error(f"Payment not found in group {group_id}: {payment_id}")
            return False

        payment.member_name = member_name
        self.save(state)
        return True

    def recompute_collected(self, group_id: str) -> bool:
        """
        Re-derive amount_collected from the paid flags of the group's payments.

        Each paid payment contributes the amount actually sent, falling back
        to its recorded amount.
        """
        state = self.load()

        group = state.groups.get(group_id)
        if not group:
            logger.error(f"Group not found: {group_id}")
            return False

        contributions = []
        for payment_id in group.payment_ids:
            payment = state.payments.get(payment_id)
            if payment and payment.paid:
                contributions.append(payment.paid_amount or payment.amount)

        previous = group.amount_collected
        group.amount_collected = sum_amounts(contributions)
        self.save(state)

        logger.info(f"Group {group_id} amount_collected {previous} -> {group.amount_collected}")
        return True

    def reset_collected(self, group_id: str) -> bool:
        """Zero the aggregate after a claim. Payments are left untouched."""
        state = self.load()
        group = state.groups.get(group_id)
        if not group:
            logger.error(f"Group not found: {group_id}")
            return False
        group.amount_collected = "0"
        self.save(state)
        return True

    # Payments

    def get_payment(self, payment_id: str) -> Optional[schemas.PaymentLookup]:
        state = self.load()
        payment = state.payments.get(payment_id)
        if not payment:
            return None
        group = state.group_for_payment(payment_id)
        if not group:
            return None
        return schemas.PaymentLookup(payment=payment, group=self._hydrate(group, state))

    def fabricate(
        self,
        payment_id: str,
        amount: str,
        group_name: Optional[str] = None,
        creator_address: Optional[str] = None,
        standalone: bool = False,
    ) -> tuple[schemas.Payment, Optional[schemas.Group]]:
        """
        Create the minimal records needed to pay a link this store has never seen.

        The payment is created if missing. A single-use group wrapping it is
        created when the store holds no groups at all, or whenever the payment
        has no group and standalone is set. Existing records are reused, so
        repeated calls do not duplicate anything.

        Returns:
            The payment and its group, or None for the group when the payment
            could not be attached to one.
        """
        if not payment_id:
            raise ValidationError("Payment ID is required")
        if not is_positive(amount):
            raise ValidationError(f"Invalid payment amount: {amount}")

        state = self.load()
        changed = False

        payment = state.payments.get(payment_id)
        if payment is None:
            logger.warning(f"Payment not found: {payment_id}. Creating a new payment entry.")
            payment = schemas.Payment(id=payment_id, amount=str(amount).strip())
            state.payments[payment_id] = payment
            changed = True

        group = state.group_for_payment(payment_id)
        if group is None and (standalone or not state.groups):
            logger.warning(f"No group found for payment: {payment_id}. Creating a temporary group.")
            group = schemas.GroupRecord(
                id=state.new_id(prefix="temp-"),
                name=(group_name or "").strip() or TEMPORARY_GROUP_NAME,
                total_amount=payment.amount,
                wallet_address=generate_placeholder_address(),
                creator_address=creator_address if is_valid_address(creator_address) else ZERO_ADDRESS,
                number_of_splitters=2,
                amount_per_person=payment.amount,
                payment_ids=[payment_id],
                amount_collected="0",
                created_at=_utcnow(),
                network=self.network.network,
                token_symbol=self.network.token_symbol,
                token_address=self.network.token_address,
            )
            state.groups[group.id] = group
            changed = True
        elif group is None:
            logger.warning(f"Payment {payment_id} is not attached to any of {len(state.groups)} groups")

        if changed:
            self.save(state)

        return payment, (self._hydrate(group, state) if group else None)

    def mark_paid(
        self,
        payment_id: str,
        paid_by: str,
        tx_hash: str,
        explorer_url: str,
        paid_amount: Optional[str] = None,
    ) -> Optional[schemas.Payment]:
        """
        Record a confirmed transfer. All paid fields are set together, once.

        A payment that is already paid is returned unchanged.
        """
        state = self.load()
        payment = state.payments.get(payment_id)
        if payment is None:
            logger.error(f"Cannot mark unknown payment as paid: {payment_id}")
            return None
        if payment.paid:
            logger.warning(f"Payment {payment_id} is already paid ({payment.tx_hash})")
            return payment

        payment.paid = True
        payment.paid_at = _utcnow()
        payment.paid_by = paid_by
        payment.transaction_hash = tx_hash
        payment.tx_hash = tx_hash
        payment.explorer_url = explorer_url
        payment.paid_amount = paid_amount
        payment.pending_tx_hash = None
        self.save(state)

        logger.info(f"Payment {payment_id} paid by {paid_by} in {tx_hash}")
        return payment

    def record_pending_transaction(self, payment_id: str, tx_hash: str) -> bool:
        """Keep the hash of a submitted transfer that has not confirmed yet."""
        state = self.load()
        payment = state.payments.get(payment_id)
        if payment is None or payment.paid:
            return False
        payment.pending_tx_hash = tx_hash
        self.save(state)
        return True
