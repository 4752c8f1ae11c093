"""
Data Models Package

This package contains all Pydantic models used in pesabook.
All data flowing through the parsing and reconciliation core must
conform to these schemas.
"""

from pesabook.models.transaction import (
    AirtimeTransaction,
    BuyGoodsTransaction,
    CanonicalTransaction,
    DepositTransaction,
    ExistingRecord,
    PayBillTransaction,
    ReceiveTransaction,
    RecipientAlias,
    RecurringDefinition,
    RecurringFrequency,
    ReversalTransaction,
    SendTransaction,
    TransactionBase,
    TransactionKind,
    TransactionSource,
    UnknownTransaction,
    WithdrawTransaction,
    build_transaction,
    transaction_from_dict,
)
from pesabook.models.batch import (
    MessageBatch,
    ParseErrorKind,
    ParseFailure,
    SkippedRow,
    SkipReason,
    StatementBatch,
)
from pesabook.models.reconciliation import (
    CandidateMatch,
    CommitPlan,
    DuplicateFlag,
    MatchTier,
    MergeInstruction,
    RecurringLink,
    Resolution,
)
from pesabook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Transaction models
    "AirtimeTransaction",
    "BuyGoodsTransaction",
    "CanonicalTransaction",
    "DepositTransaction",
    "ExistingRecord",
    "PayBillTransaction",
    "ReceiveTransaction",
    "RecipientAlias",
    "RecurringDefinition",
    "RecurringFrequency",
    "ReversalTransaction",
    "SendTransaction",
    "TransactionBase",
    "TransactionKind",
    "TransactionSource",
    "UnknownTransaction",
    "WithdrawTransaction",
    "build_transaction",
    "transaction_from_dict",
    # Batch models
    "MessageBatch",
    "ParseErrorKind",
    "ParseFailure",
    "SkippedRow",
    "SkipReason",
    "StatementBatch",
    # Reconciliation models
    "CandidateMatch",
    "CommitPlan",
    "DuplicateFlag",
    "MatchTier",
    "MergeInstruction",
    "RecurringLink",
    "Resolution",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
