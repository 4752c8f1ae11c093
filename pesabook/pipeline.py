"""
Import Pipeline for pesabook

This module ties the parsing and reconciliation components together and
defines the end-to-end import flow:

    raw text → parse → infer category → flag duplicates
             → (caller decides Add / Merge / Ignore)
             → link recurring payments → commit plan

DESIGN DECISION: The pipeline enforces the boundaries:
- Nothing is committed while a duplicate flag is undecided
- Nothing is written here; the CommitPlan goes to the persistence collaborator
- Every step is audited under one correlation ID

The review step and the commit step are separate calls because the
user's decisions happen in between.
"""

from datetime import datetime
from typing import Iterable, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from pesabook.audit import AuditLogger, create_correlation_id
from pesabook.config import Settings, get_settings
from pesabook.models.audit import AuditEventBuilder
from pesabook.models.batch import ParseFailure, SkippedRow
from pesabook.models.reconciliation import CommitPlan, DuplicateFlag, RecurringLink
from pesabook.models.transaction import (
    CanonicalTransaction,
    ExistingRecord,
    RecipientAlias,
    RecurringDefinition,
    TransactionBase,
)
from pesabook.parsing import parse_messages, parse_statement
from pesabook.reconciliation import (
    ReconciliationError,
    apply_resolutions,
    display_name,
    find_structural_conflicts,
    infer_category,
    match_recurring,
    reconcile,
    recurring_match_reasons,
    structural_match,
    suggest_category_from_keywords,
)
from pesabook.services.storage import LedgerReadModel


class ReviewEntry(BaseModel):
    """One parsed transaction as presented for review."""

    transaction: CanonicalTransaction
    suggested_category: Optional[str] = None
    display_name: str


class ImportReview(BaseModel):
    """
    Everything the user needs to review an import.

    Flags start unresolved. The caller resolves them (DuplicateFlag.resolve)
    and passes them back to ImportPipeline.build_commit_plan.
    """

    correlation_id: UUID
    entries: list[ReviewEntry] = Field(default_factory=list)
    flags: list[DuplicateFlag] = Field(default_factory=list)
    failures: list[ParseFailure] = Field(default_factory=list)
    skipped_rows: list[SkippedRow] = Field(default_factory=list)

    @property
    def transactions(self) -> list[TransactionBase]:
        return [e.transaction for e in self.entries]

    @property
    def needs_decisions(self) -> bool:
        return any(f.resolution is None for f in self.flags)


class ImportPipeline:
    """
    Orchestrates one import against a snapshot of the ledger.

    Flow:
    1. Parse → messages or statement text into canonical transactions
    2. Enrich → suggested category and display name per transaction
    3. Flag → probable duplicates of existing records
    4. Review → caller resolves every flag (PAUSE - require decisions)
    5. Plan → apply decisions, link recurring payments, build CommitPlan

    History, definitions and aliases are snapshots taken at construction
    and are never modified.
    """

    def __init__(
        self,
        history: Iterable[ExistingRecord] = (),
        definitions: Iterable[RecurringDefinition] = (),
        aliases: Iterable[RecipientAlias] = (),
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        self._history = list(history)
        self._definitions = list(definitions)
        self._aliases = list(aliases)
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings()

    @classmethod
    def from_read_model(
        cls,
        store: LedgerReadModel,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ) -> "ImportPipeline":
        """Build a pipeline from the current state of a ledger store."""
        return cls(
            history=store.list_records(),
            definitions=store.list_recurring_definitions(),
            aliases=store.list_aliases(),
            audit_logger=audit_logger,
            settings=settings,
        )

    def review_messages(
        self,
        messages: Union[str, Iterable[str]],
        received_at: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ImportReview:
        """
        Parse pasted confirmation messages and prepare them for review.

        Unparseable messages are reported in `failures`, never raised.
        """
        correlation_id = correlation_id or create_correlation_id()

        batch = parse_messages(
            messages,
            received_at=received_at,
            settings=self._settings.parser,
            max_workers=self._settings.app.parse_workers,
        )

        for failure in batch.failures:
            self._audit_logger.log(AuditEventBuilder.message_rejected(
                index=failure.index,
                error_kind=failure.error_kind.value,
                reason=failure.message,
                correlation_id=correlation_id,
            ))
        self._audit_logger.log(AuditEventBuilder.messages_parsed(
            parsed=len(batch.transactions),
            failed=batch.failure_count,
            repeated=len(batch.repeated_references),
            correlation_id=correlation_id,
        ))

        review = self._review(batch.transactions, correlation_id)
        review.failures = list(batch.failures)
        return review

    def review_statement(
        self,
        text: str,
        received_at: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ImportReview:
        """
        Tokenize statement text and prepare it for review.

        Rows that do not yield a transaction are reported in `skipped_rows`.
        """
        correlation_id = correlation_id or create_correlation_id()

        batch = parse_statement(text, received_at=received_at, settings=self._settings.parser)

        self._audit_logger.log(AuditEventBuilder.statement_parsed(
            parsed=len(batch.transactions),
            skipped=batch.skipped_count,
            correlation_id=correlation_id,
        ))

        review = self._review(batch.transactions, correlation_id)
        review.skipped_rows = list(batch.skipped_rows)
        return review

    def _review(self, transactions: list[TransactionBase], correlation_id: UUID) -> ImportReview:
        entries = [self._entry(txn, correlation_id) for txn in transactions]

        flags = reconcile(transactions, self._history, settings=self._settings.reconcile)
        self._audit_logger.log(AuditEventBuilder.duplicates_flagged(
            flagged=len(flags),
            reference_matches=sum(1 for f in flags if f.has_reference_match),
            correlation_id=correlation_id,
        ))

        return ImportReview(correlation_id=correlation_id, entries=entries, flags=flags)

    def _entry(self, txn: TransactionBase, correlation_id: UUID) -> ReviewEntry:
        category = infer_category(txn.counterparty, self._history)
        if category is None and self._settings.reconcile.keyword_fallback:
            category = suggest_category_from_keywords(f"{txn.counterparty} {txn.raw_message}")

        if category:
            self._audit_logger.log(AuditEventBuilder.category_inferred(
                counterparty=txn.counterparty,
                category=category,
                correlation_id=correlation_id,
            ))

        return ReviewEntry(
            transaction=txn,
            suggested_category=category,
            display_name=display_name(txn.counterparty, self._aliases),
        )

    def build_commit_plan(
        self,
        review: ImportReview,
        flags: Optional[list[DuplicateFlag]] = None,
    ) -> CommitPlan:
        """
        Apply the caller's decisions and build the commit plan.

        Args:
            review: The review returned by review_messages/review_statement
            flags: The resolved flags; defaults to review.flags

        Raises:
            UnresolvedDuplicateError: A flag has no resolution
            InvalidResolutionError: A decision cannot be applied
        """
        correlation_id = review.correlation_id
        flags = review.flags if flags is None else flags

        try:
            plan = apply_resolutions(review.transactions, flags)
        except ReconciliationError as e:
            self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

        for flag in flags:
            self._audit_logger.log(AuditEventBuilder.resolution_applied(
                reference=flag.parsed.reference,
                resolution=flag.resolution.value,
                correlation_id=correlation_id,
                target_id=flag.merge_target_id,
            ))

        committed = plan.to_add + [m.source for m in plan.to_merge]
        for txn in committed:
            link = self._link_recurring(txn, correlation_id)
            if link is not None:
                plan.recurring_links.append(link)

        self._audit_logger.log(AuditEventBuilder.commit_plan_built(
            added=len(plan.to_add),
            merged=len(plan.to_merge),
            ignored=len(plan.ignored),
            correlation_id=correlation_id,
        ))
        return plan

    def _link_recurring(self, txn: TransactionBase, correlation_id: UUID) -> Optional[RecurringLink]:
        conflicts = find_structural_conflicts(txn, self._definitions)
        if len(conflicts) > 1:
            self._audit_logger.log(AuditEventBuilder.recurring_conflict(
                reference=txn.reference,
                definition_names=[d.name for d in conflicts],
                correlation_id=correlation_id,
            ))

        definition = match_recurring(txn, self._definitions, settings=self._settings.recurring)
        if definition is None:
            return None

        self._audit_logger.log(AuditEventBuilder.recurring_linked(
            reference=txn.reference,
            definition_name=definition.name,
            correlation_id=correlation_id,
        ))
        return RecurringLink(
            transaction=txn,
            definition=definition,
            structural=bool(structural_match(txn, definition)),
            reasons=recurring_match_reasons(txn, definition, settings=self._settings.recurring),
        )
