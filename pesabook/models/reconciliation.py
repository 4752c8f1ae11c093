"""
Reconciliation Models

Duplicate flags, the user's decision on each flag, and the commit plan
handed to the persistence collaborator.

CRITICAL: The reconciler only FLAGS. It never decides.
Every flag needs an explicit resolution from the caller before a commit
plan can be built.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from pesabook.models.transaction import (
    CanonicalTransaction,
    ExistingRecord,
    RecurringDefinition,
)


class MatchTier(str, Enum):
    """Which rule produced a duplicate candidate."""
    REFERENCE = "reference"  # same confirmation code, decisive
    FUZZY = "fuzzy"          # amount + date + name all close


class Resolution(str, Enum):
    """The caller's decision for a flagged transaction."""
    ADD = "add"
    MERGE = "merge"
    IGNORE = "ignore"


class CandidateMatch(BaseModel):
    """One existing record that may duplicate a parsed transaction."""

    record: ExistingRecord
    tier: MatchTier
    reasons: list[str] = Field(default_factory=list)


class DuplicateFlag(BaseModel):
    """
    A parsed transaction with at least one probable duplicate.

    Created by the reconciler with `resolution` unset. The caller sets
    `resolution` (and `merge_target_id` when several candidates exist)
    before committing.
    """

    parsed: CanonicalTransaction
    matches: list[CandidateMatch] = Field(..., min_length=1)
    resolution: Optional[Resolution] = None
    merge_target_id: Optional[str] = None

    @property
    def candidates(self) -> list[ExistingRecord]:
        return [m.record for m in self.matches]

    @property
    def has_reference_match(self) -> bool:
        return any(m.tier == MatchTier.REFERENCE for m in self.matches)

    def resolve(
        self,
        resolution: Resolution,
        merge_target_id: Optional[str] = None,
    ) -> "DuplicateFlag":
        """Return a copy of this flag carrying the caller's decision."""
        return self.model_copy(update={
            "resolution": resolution,
            "merge_target_id": merge_target_id,
        })


class MergeInstruction(BaseModel):
    """Overwrite fields of an existing record with parsed values."""

    record_id: str
    updates: dict[str, Any] = Field(default_factory=dict)
    source: CanonicalTransaction


class RecurringLink(BaseModel):
    """A committed transaction that pays a recurring definition."""

    transaction: CanonicalTransaction
    definition: RecurringDefinition
    structural: bool = Field(
        default=False,
        description="Linked by paybill/till/account number rather than by name"
    )
    reasons: list[str] = Field(
        default_factory=list,
        description="Why the link was made, for display"
    )


class CommitPlan(BaseModel):
    """
    What the persistence collaborator should do with a reviewed batch.

    This core never writes. The plan is the whole contract.
    """

    to_add: list[CanonicalTransaction] = Field(default_factory=list)
    to_merge: list[MergeInstruction] = Field(default_factory=list)
    ignored: list[CanonicalTransaction] = Field(default_factory=list)
    recurring_links: list[RecurringLink] = Field(default_factory=list)

    @property
    def total_amount_added(self) -> Decimal:
        return sum((t.amount for t in self.to_add), Decimal("0"))
