"""
Duplicate Reconciler

Flags parsed transactions that probably already exist in the ledger.

Two tiers, checked per (parsed, existing) pair:

1. REFERENCE: both sides carry a confirmation code. The codes alone
   decide; equal codes flag the pair even if the amount was corrected
   or the date is far off, and different codes never match.
2. FUZZY: at least one side has no code. The pair matches only when the
   amount differs by less than the tolerance, the timestamps are within
   the date window, and one counterparty name contains the other.

CRITICAL: The reconciler never decides. It lists every qualifying
candidate and leaves Add / Merge / Ignore to the caller.
"""

from datetime import timedelta
from typing import Iterable, Optional

import structlog

from pesabook.config import ReconcileSettings, get_settings
from pesabook.models.reconciliation import (
    CandidateMatch,
    CommitPlan,
    DuplicateFlag,
    MatchTier,
    MergeInstruction,
    Resolution,
)
from pesabook.models.transaction import ExistingRecord, TransactionBase
from pesabook.parsing.normalize import PHONE_NUMBER, comparable_times, normalize_name
from pesabook.reconciliation.exceptions import (
    InvalidResolutionError,
    UnresolvedDuplicateError,
)


logger = structlog.get_logger(__name__)


REFERENCE_REASON = "M-PESA reference code matches"

# Parsed fields copied onto the existing record on a merge.
MERGE_FIELDS = (
    "amount",
    "counterparty",
    "timestamp",
    "reference",
    "fee",
    "balance_after",
    "raw_message",
    "kind",
)


def _normalize_reference(reference: Optional[str]) -> str:
    return reference.strip().upper() if reference else ""


def _comparable_name(name: Optional[str]) -> str:
    """Lower-cased name with phone numbers removed."""
    return normalize_name(PHONE_NUMBER.sub(" ", name or ""))


def names_overlap(a: Optional[str], b: Optional[str], min_length: int = 3) -> bool:
    """
    True when one name contains the other, ignoring case and phone numbers.

    Containment is only trusted for names of at least `min_length`
    characters; shorter names must be equal.
    """
    first, second = _comparable_name(a), _comparable_name(b)
    if not first or not second:
        return False
    if first == second:
        return True
    if len(first) < min_length or len(second) < min_length:
        return False
    return first in second or second in first


class DuplicateReconciler:
    """
    Two-tier duplicate matcher.

    Pure: reads the batch and the existing records, returns flags.
    """

    def __init__(self, settings: Optional[ReconcileSettings] = None):
        self._settings = settings or get_settings().reconcile
        self._window = timedelta(days=self._settings.date_window_days)

    def match(self, parsed: TransactionBase, record: ExistingRecord) -> Optional[CandidateMatch]:
        """Compare one pair. Returns the match, or None."""
        parsed_ref = _normalize_reference(parsed.reference)
        record_ref = _normalize_reference(record.reference)

        if parsed_ref and record_ref:
            if parsed_ref != record_ref:
                return None
            return CandidateMatch(
                record=record,
                tier=MatchTier.REFERENCE,
                reasons=[REFERENCE_REASON],
            )

        if abs(parsed.amount - record.amount) >= self._settings.amount_tolerance:
            return None

        first, second = comparable_times(parsed.timestamp, record.timestamp)
        if abs(first - second) > self._window:
            return None

        if not names_overlap(parsed.counterparty, record.counterparty, self._settings.min_name_length):
            return None

        return CandidateMatch(
            record=record,
            tier=MatchTier.FUZZY,
            reasons=[
                "Same amount",
                f"Within {self._settings.date_window_days} days",
                "Same recipient",
            ],
        )

    def reconcile(
        self,
        parsed_batch: Iterable[TransactionBase],
        existing: Iterable[ExistingRecord],
    ) -> list[DuplicateFlag]:
        existing = list(existing)
        flags = []

        for parsed in parsed_batch:
            # Reference matches first so the strongest candidate leads.
            matches = [m for m in (self.match(parsed, r) for r in existing) if m is not None]
            if not matches:
                continue
            matches.sort(key=lambda m: m.tier != MatchTier.REFERENCE)
            flags.append(DuplicateFlag(parsed=parsed, matches=matches))

        logger.info(
            "duplicates_flagged",
            flagged=len(flags),
            reference_matches=sum(1 for f in flags if f.has_reference_match),
            existing=len(existing),
        )
        return flags


def reconcile(
    parsed_batch: Iterable[TransactionBase],
    existing: Iterable[ExistingRecord],
    *,
    settings: Optional[ReconcileSettings] = None,
) -> list[DuplicateFlag]:
    """
    Flag probable duplicates of a parsed batch against existing records.

    Returns one DuplicateFlag per parsed transaction with at least one
    candidate, in batch order. Transactions without a flag are clean.
    """
    return DuplicateReconciler(settings).reconcile(parsed_batch, existing)


def _merge_instruction(flag: DuplicateFlag) -> MergeInstruction:
    candidate_ids = [c.id for c in flag.candidates]
    target_id = flag.merge_target_id

    if target_id is None:
        if len(candidate_ids) != 1:
            raise InvalidResolutionError(
                f"Merge needs a target: {len(candidate_ids)} candidates for "
                f"{flag.parsed.reference or flag.parsed.counterparty}"
            )
        target_id = candidate_ids[0]
    elif target_id not in candidate_ids:
        raise InvalidResolutionError(
            f"Merge target {target_id} is not one of the candidates {candidate_ids}"
        )

    updates = {
        field: getattr(flag.parsed, field)
        for field in MERGE_FIELDS
        if getattr(flag.parsed, field, None) is not None
    }
    return MergeInstruction(record_id=target_id, updates=updates, source=flag.parsed)


def apply_resolutions(
    parsed_batch: Iterable[TransactionBase],
    flags: Iterable[DuplicateFlag],
) -> CommitPlan:
    """
    Turn a reviewed batch into a commit plan.

    Unflagged transactions are added. Each flagged transaction follows its
    resolution: ADD keeps it as a new record, MERGE overwrites the chosen
    candidate, IGNORE drops it.

    Raises:
        UnresolvedDuplicateError: A flag has no resolution
        InvalidResolutionError: A merge target is missing or not a
            candidate, or a flag does not belong to the batch
    """
    pending = list(flags)
    plan = CommitPlan()

    for parsed in parsed_batch:
        flag = next((f for f in pending if f.parsed == parsed), None)
        if flag is None:
            plan.to_add.append(parsed)
            continue
        pending.remove(flag)

        if flag.resolution is None:
            raise UnresolvedDuplicateError(parsed.reference)
        if flag.resolution == Resolution.ADD:
            plan.to_add.append(parsed)
        elif flag.resolution == Resolution.MERGE:
            plan.to_merge.append(_merge_instruction(flag))
        else:
            plan.ignored.append(parsed)

    if pending:
        raise InvalidResolutionError(
            f"{len(pending)} flags do not belong to the batch being committed"
        )

    logger.info(
        "commit_plan_built",
        added=len(plan.to_add),
        merged=len(plan.to_merge),
        ignored=len(plan.ignored),
    )
    return plan
