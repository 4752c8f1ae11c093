"""
Batch Result Models

DESIGN DECISION: Partial failure is a return value, not a side effect.
A batch parse returns what succeeded AND what failed. One unreadable
message never aborts the rest, and the caller decides how to present
the failure count.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from pesabook.models.transaction import CanonicalTransaction


class ParseErrorKind(str, Enum):
    """Why a single message could not be parsed."""
    UNRECOGNIZED_FORMAT = "unrecognized_format"
    MALFORMED_AMOUNT = "malformed_amount"


class SkipReason(str, Enum):
    """Why a statement row did not produce a transaction."""
    NO_AMOUNT_COLUMNS = "no_amount_columns"
    ZERO_AMOUNT = "zero_amount"
    BAD_TIMESTAMP = "bad_timestamp"
    NOT_COMPLETED = "not_completed"
    ORPHAN_CHARGE = "orphan_charge"
    DUPLICATE_RECEIPT = "duplicate_receipt"
    AMBIGUOUS_DIRECTION = "ambiguous_direction"
    MALFORMED_AMOUNT = "malformed_amount"
    INVALID_ROW = "invalid_row"


class ParseFailure(BaseModel):
    """A message line that failed to parse."""

    index: int = Field(..., ge=0, description="Position in the input batch")
    raw_message: str
    error_kind: ParseErrorKind
    message: str = Field(..., description="Human-readable reason")


class MessageBatch(BaseModel):
    """
    Result of parsing many messages.

    `transactions` keeps input order. Messages whose reference was already
    seen earlier in the same batch are re-pastes; they are dropped and
    their references listed in `repeated_references`.
    """

    transactions: list[CanonicalTransaction] = Field(default_factory=list)
    failures: list[ParseFailure] = Field(default_factory=list)
    repeated_references: list[str] = Field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def total_count(self) -> int:
        return len(self.transactions) + len(self.failures) + len(self.repeated_references)


class SkippedRow(BaseModel):
    """A statement row that was skipped (designed non-error)."""

    line_number: int = Field(..., ge=1, description="1-based physical line number")
    text: str
    reason: SkipReason
    detail: Optional[str] = None


class StatementBatch(BaseModel):
    """Result of tokenizing a statement."""

    transactions: list[CanonicalTransaction] = Field(default_factory=list)
    skipped_rows: list[SkippedRow] = Field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_rows)
