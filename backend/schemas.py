from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel

from utils.amounts import is_positive
from utils.validation import is_valid_address


class CamelModel(BaseModel):
    """Serialized with camelCase keys, accepted with either spelling."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


def _amount_to_str(v):
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


class Payment(CamelModel):
    id: str
    amount: str
    paid: bool = False
    paid_at: Optional[datetime] = None
    paid_by: Optional[str] = None
    transaction_hash: Optional[str] = None
    tx_hash: Optional[str] = None
    explorer_url: Optional[str] = None
    member_name: Optional[str] = None
    paid_amount: Optional[str] = None  # Amount actually sent at confirmation
    pending_tx_hash: Optional[str] = None  # Submitted but not confirmed


class GroupBase(CamelModel):
    id: str
    name: str
    total_amount: str
    wallet_address: str
    creator_address: str
    number_of_splitters: int
    amount_per_person: str
    amount_collected: str = "0"
    created_at: datetime
    network: str
    token_symbol: str
    token_address: str


class GroupRecord(GroupBase):
    """Group as persisted: payments are referenced by id."""
    payment_ids: list[str] = []


class Group(GroupBase):
    """Group as returned to callers, with its payments in creation order."""
    payments: list[Payment] = []


class PaymentLookup(BaseModel):
    payment: Payment
    group: Group


class GroupCreate(CamelModel):
    name: str
    total_amount: str
    number_of_splitters: int
    creator_address: str
    wallet_address: Optional[str] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Group name is required')
        return v.strip()

    @field_validator('total_amount', mode='before')
    @classmethod
    def validate_total_amount(cls, v):
        v = _amount_to_str(v)
        if not isinstance(v, str) or not is_positive(v):
            raise ValueError('Total amount must be greater than 0')
        return v.strip()

    @field_validator('number_of_splitters')
    @classmethod
    def validate_number_of_splitters(cls, v):
        if v < 2:
            raise ValueError('A group needs at least 2 splitters')
        return v

    @field_validator('creator_address', 'wallet_address')
    @classmethod
    def validate_address(cls, v):
        if v is not None and not is_valid_address(v):
            raise ValueError(f'Invalid address: {v}')
        return v


class MemberNameUpdate(CamelModel):
    member_name: str


class PreviewRequest(CamelModel):
    amount: str
    group_name: Optional[str] = None

    @field_validator('amount', mode='before')
    @classmethod
    def coerce_amount(cls, v):
        return _amount_to_str(v)


class PaymentRequest(PreviewRequest):
    payer_address: str


class ClaimRequest(CamelModel):
    to_address: str


class NetworkInfo(CamelModel):
    chain_id: Optional[str] = None
    network: str
    token_symbol: str
    token_address: str


class AttemptState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOCATED = "located"
    FABRICATED = "fabricated"
    PREVIEWED = "previewed"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    CONFIRMED = "confirmed"
    SUBMITTED_UNCONFIRMED = "submitted_unconfirmed"
    REVERTED = "reverted"
    REJECTED = "rejected"


class TransferPreview(CamelModel):
    to: Optional[str] = None
    amount: str
    token_symbol: str
    token_address: str
    fee_estimate: Optional[int] = None  # In wei
    error: Optional[str] = None


class PaymentAttemptView(CamelModel):
    payment_id: str
    state: AttemptState
    payment: Optional[Payment] = None
    group: Optional[Group] = None


class PaymentResult(CamelModel):
    status: OutcomeStatus
    success: bool
    tx_hash: Optional[str] = None
    explorer_url: Optional[str] = None
    reason: Optional[str] = None
    payment: Optional[Payment] = None


class ClaimResult(CamelModel):
    success: bool
    amount: str
    to_address: str
    tx_hash: str
    explorer_url: str


class PaymentCompleted(BaseModel):
    """Broadcast after a payment is recorded as paid."""
    payment_id: str
    group_id: str
    amount: str
    delayed: bool = False
