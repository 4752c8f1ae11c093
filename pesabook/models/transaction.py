"""
Core Transaction Models for pesabook

These models define the strict schemas for all data flowing through the
parsing and reconciliation core. They are designed to:
1. Enforce type safety at runtime
2. Keep money exact (Decimal, never float)
3. Carry kind-specific fields only on the kinds that can have them
4. Be serializable for the persistence collaborator and the audit trail

DESIGN DECISION: A parsed transaction is a tagged union on `kind`.
A pay bill payment has a paybill number, a send does not. Instead of one
loose bag of optional fields, each kind is its own frozen model and the
union is discriminated by `kind`.
"""

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)


UNKNOWN_COUNTERPARTY = "Unknown"
MAX_COUNTERPARTY_LENGTH = 200


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """
    Transaction kinds recognised in M-PESA messages and statements.

    UNKNOWN is only ever assigned by the statement tokenizer when a row's
    money direction contradicts its description. The message parser never
    guesses a kind.
    """
    SEND = "send"
    RECEIVE = "receive"
    PAY_BILL = "pay_bill"
    BUY_GOODS = "buy_goods"
    WITHDRAW = "withdraw"
    DEPOSIT = "deposit"
    REVERSAL = "reversal"
    AIRTIME_OR_DATA = "airtime_or_data"
    UNKNOWN = "unknown"


INFLOW_KINDS = frozenset({
    TransactionKind.RECEIVE,
    TransactionKind.DEPOSIT,
    TransactionKind.REVERSAL,
})

OUTFLOW_KINDS = frozenset({
    TransactionKind.SEND,
    TransactionKind.PAY_BILL,
    TransactionKind.BUY_GOODS,
    TransactionKind.WITHDRAW,
    TransactionKind.AIRTIME_OR_DATA,
})


class TransactionSource(str, Enum):
    """Where a canonical transaction came from."""
    MESSAGE = "message"
    STATEMENT = "statement"


class RecurringFrequency(str, Enum):
    """How often a recurring payment is expected."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# =============================================================================
# CANONICAL TRANSACTION (parse output, immutable)
# =============================================================================

class TransactionBase(BaseModel):
    """
    Fields shared by every transaction kind.

    CRITICAL: Instances are frozen. A parsed transaction is never mutated;
    it is added, merged into an existing record, or discarded.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        gt=0,
        description="Transaction amount, always positive"
    )
    counterparty: str = Field(
        default=UNKNOWN_COUNTERPARTY,
        max_length=MAX_COUNTERPARTY_LENGTH,
        description="Name or label of the other party"
    )
    timestamp: datetime = Field(
        ...,
        description="When the transaction occurred"
    )
    reference: Optional[str] = Field(
        default=None,
        max_length=20,
        description="M-PESA confirmation code (strongest de-duplication key)"
    )
    fee: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Transaction cost charged"
    )
    balance_after: Optional[Decimal] = Field(
        default=None,
        description="Account balance after the transaction"
    )
    raw_message: str = Field(
        ...,
        description="Original text, kept for audit and hand-correction"
    )
    source: TransactionSource = Field(
        default=TransactionSource.MESSAGE,
        description="Message or statement origin"
    )

    @field_validator('counterparty')
    @classmethod
    def default_empty_counterparty(cls, v: str) -> str:
        """An empty name becomes the Unknown label."""
        return v or UNKNOWN_COUNTERPARTY

    @field_validator('reference')
    @classmethod
    def normalize_reference(cls, v: Optional[str]) -> Optional[str]:
        """References are compared case-insensitively; store upper-case."""
        if v is None:
            return None
        v = v.strip().upper()
        return v or None


class SendTransaction(TransactionBase):
    kind: Literal[TransactionKind.SEND] = TransactionKind.SEND
    phone_number: Optional[str] = None


class ReceiveTransaction(TransactionBase):
    kind: Literal[TransactionKind.RECEIVE] = TransactionKind.RECEIVE
    phone_number: Optional[str] = None


class PayBillTransaction(TransactionBase):
    """Payment to a business number, optionally for a customer account."""
    kind: Literal[TransactionKind.PAY_BILL] = TransactionKind.PAY_BILL
    paybill_number: Optional[str] = Field(default=None, max_length=20)
    account_number: Optional[str] = Field(default=None, max_length=50)


class BuyGoodsTransaction(TransactionBase):
    """Merchant (till) payment."""
    kind: Literal[TransactionKind.BUY_GOODS] = TransactionKind.BUY_GOODS
    till_number: Optional[str] = Field(default=None, max_length=20)


class WithdrawTransaction(TransactionBase):
    kind: Literal[TransactionKind.WITHDRAW] = TransactionKind.WITHDRAW
    agent_number: Optional[str] = Field(default=None, max_length=20)


class DepositTransaction(TransactionBase):
    kind: Literal[TransactionKind.DEPOSIT] = TransactionKind.DEPOSIT
    agent_number: Optional[str] = Field(default=None, max_length=20)


class ReversalTransaction(TransactionBase):
    kind: Literal[TransactionKind.REVERSAL] = TransactionKind.REVERSAL
    reversed_reference: Optional[str] = Field(
        default=None,
        max_length=20,
        description="Confirmation code of the transaction being reversed"
    )


class AirtimeTransaction(TransactionBase):
    kind: Literal[TransactionKind.AIRTIME_OR_DATA] = TransactionKind.AIRTIME_OR_DATA
    phone_number: Optional[str] = None


class UnknownTransaction(TransactionBase):
    kind: Literal[TransactionKind.UNKNOWN] = TransactionKind.UNKNOWN


CanonicalTransaction = Annotated[
    Union[
        SendTransaction,
        ReceiveTransaction,
        PayBillTransaction,
        BuyGoodsTransaction,
        WithdrawTransaction,
        DepositTransaction,
        ReversalTransaction,
        AirtimeTransaction,
        UnknownTransaction,
    ],
    Field(discriminator="kind"),
]

TRANSACTION_TYPES: dict[TransactionKind, type[TransactionBase]] = {
    TransactionKind.SEND: SendTransaction,
    TransactionKind.RECEIVE: ReceiveTransaction,
    TransactionKind.PAY_BILL: PayBillTransaction,
    TransactionKind.BUY_GOODS: BuyGoodsTransaction,
    TransactionKind.WITHDRAW: WithdrawTransaction,
    TransactionKind.DEPOSIT: DepositTransaction,
    TransactionKind.REVERSAL: ReversalTransaction,
    TransactionKind.AIRTIME_OR_DATA: AirtimeTransaction,
    TransactionKind.UNKNOWN: UnknownTransaction,
}

_transaction_adapter = TypeAdapter(CanonicalTransaction)


def build_transaction(kind: TransactionKind, **fields) -> TransactionBase:
    """
    Build the variant for `kind`.

    Fields that the variant does not declare are dropped, so extractors can
    hand over everything they found without probing which kind owns what.
    """
    model = TRANSACTION_TYPES[kind]
    accepted = {k: v for k, v in fields.items() if k in model.model_fields and v is not None}
    return model(**accepted)


def transaction_from_dict(data: dict) -> TransactionBase:
    """Validate a serialized transaction back into its variant."""
    return _transaction_adapter.validate_python(data)


# =============================================================================
# PERSISTED COUNTERPARTS (read models owned by the external store)
# =============================================================================

class ExistingRecord(BaseModel):
    """
    A transaction already held by the persistence collaborator.

    Unlike parsed transactions these are mutable: users edit them after
    creation. The reference is whatever the user typed, if anything.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Store-assigned identifier"
    )
    amount: Decimal = Field(..., ge=0)
    counterparty: str = Field(default="")
    timestamp: datetime
    kind: Optional[TransactionKind] = None
    reference: Optional[str] = Field(
        default=None,
        description="User-entered or imported confirmation code"
    )
    category: Optional[str] = None
    fee: Optional[Decimal] = None
    balance_after: Optional[Decimal] = None
    raw_message: Optional[str] = None


class RecipientAlias(BaseModel):
    """
    Maps a name as it appears in messages to a user-chosen display name.

    Purely cosmetic. Aliases never influence matching.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    original_name: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)


class RecurringDefinition(BaseModel):
    """
    A user-declared recurring payment (rent, utilities, subscriptions).

    Identified structurally by paybill/till/account numbers where the user
    supplied them, otherwise by counterparty and expected amount.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)
    counterparty: str = Field(default="")
    frequency: RecurringFrequency = RecurringFrequency.MONTHLY
    paybill_number: Optional[str] = None
    till_number: Optional[str] = None
    account_number: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True

    @property
    def has_structural_identifier(self) -> bool:
        return bool(self.paybill_number or self.till_number or self.account_number)


def normalize_identifier(value: Optional[str]) -> str:
    """Paybill, till and account numbers compare without spaces or case."""
    if not value:
        return ""
    return re.sub(r"\s+", "", value).lower()
