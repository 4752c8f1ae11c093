"""
Integration tests for the import pipeline.

The in-memory ledger stands in for the persistence collaborator and
doubles as the audit sink.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from pesabook.audit import AuditLogger
from pesabook.config import Settings
from pesabook.models.audit import AuditEventType
from pesabook.models.reconciliation import Resolution
from pesabook.models.transaction import (
    ExistingRecord,
    RecipientAlias,
    RecurringDefinition,
    TransactionKind,
)
from pesabook.pipeline import ImportPipeline
from pesabook.reconciliation import UnresolvedDuplicateError
from pesabook.services.storage import InMemoryLedger, NotFoundError


RECEIVED_AT = datetime(2025, 2, 1, 9, 0)

SEND = (
    "QGH7X9KLM0 Confirmed. Ksh500.00 sent to JANE DOE 0712345678 on 15/1/25 "
    "at 10:30 AM New M-PESA balance is Ksh4,500.00"
)
RECEIVE = (
    "SAB1CD2EF3 Confirmed.You have received Ksh2,000.00 from JOHN KAMAU 0722000111 "
    "on 16/1/25 at 9:00 AM New M-PESA balance is Ksh6,500.00."
)
STATEMENT = (
    "RKC3D4E5F6 2025-01-17 12:15:00 Pay Bill Online to 888880 - KPLC PREPAID "
    "Acc. 54405070 COMPLETED 0.00 1,000.00 5,493.00\n"
    "RKD4E5F6G7 2025-01-18 09:45:00 Merchant Payment to 5123456 - NAIVAS "
    "COMPLETED 0.00 650.00 4,843.00\n"
    "RKF6G7H8I9 2025-01-20 16:30:00 Customer Transfer to 0733***222 - PETER "
    "FAILED 0.00 100.00 3,843.00\n"
)


@pytest.fixture
def ledger():
    return InMemoryLedger(
        records=[
            ExistingRecord(
                id="r1",
                amount=Decimal("500"),
                counterparty="JANE DOE 0712345678",
                timestamp=datetime(2025, 1, 15, 10, 30),
                reference="QGH7X9KLM0",
                category="Family",
            ),
            ExistingRecord(
                id="r2",
                amount=Decimal("800"),
                counterparty="NAIVAS",
                timestamp=datetime(2024, 12, 1),
                category="Groceries",
            ),
        ],
        definitions=[
            RecurringDefinition(name="Power", amount=Decimal("1200"), paybill_number="888880"),
            RecurringDefinition(name="Old power", amount=Decimal("1000"), paybill_number="888880", is_active=False),
        ],
        aliases=[RecipientAlias(original_name="JOHN KAMAU 0722000111", display_name="Brother")],
    )


@pytest.fixture
def pipeline(ledger):
    return ImportPipeline.from_read_model(ledger, audit_logger=AuditLogger(sink=ledger))


def _event_types(ledger, review):
    return [e.event_type for e in ledger.events_for(review.correlation_id)]


class TestMessageReview:
    """Tests for reviewing pasted messages."""

    def test_review_enriches_and_flags(self, pipeline):
        """Test categories, display names and duplicate flags in one review."""
        review = pipeline.review_messages([SEND, RECEIVE], received_at=RECEIVED_AT)

        send, receive = review.entries
        assert send.suggested_category == "Family"
        assert send.display_name == "JANE DOE 0712345678"
        assert receive.suggested_category is None
        assert receive.display_name == "Brother"

        assert len(review.flags) == 1
        assert review.flags[0].parsed.reference == "QGH7X9KLM0"
        assert review.needs_decisions is True

    def test_failures_are_reported_not_raised(self, pipeline, ledger):
        """Test that bad lines become failures and audit events."""
        review = pipeline.review_messages([RECEIVE, "hello there"], received_at=RECEIVED_AT)

        assert len(review.entries) == 1
        assert len(review.failures) == 1
        types = _event_types(ledger, review)
        assert AuditEventType.MESSAGE_REJECTED in types
        assert AuditEventType.MESSAGES_PARSED in types
        assert AuditEventType.DUPLICATES_FLAGGED in types

    def test_commit_requires_decisions(self, pipeline):
        """Test that an unresolved flag blocks the commit plan."""
        review = pipeline.review_messages([SEND], received_at=RECEIVED_AT)
        with pytest.raises(UnresolvedDuplicateError):
            pipeline.build_commit_plan(review)

    def test_merge_decision_updates_ledger(self, pipeline, ledger):
        """Test the full review, decide, plan, apply cycle."""
        review = pipeline.review_messages([SEND, RECEIVE], received_at=RECEIVED_AT)
        resolved = [f.resolve(Resolution.MERGE) for f in review.flags]

        plan = pipeline.build_commit_plan(review, resolved)
        assert [t.reference for t in plan.to_add] == ["SAB1CD2EF3"]
        assert plan.to_merge[0].record_id == "r1"

        added = ledger.apply(plan)
        assert [r.reference for r in added] == ["SAB1CD2EF3"]
        assert ledger.get_record("r1").balance_after == Decimal("4500.00")

        types = _event_types(ledger, review)
        assert AuditEventType.RESOLUTION_APPLIED in types
        assert types[-1] == AuditEventType.COMMIT_PLAN_BUILT

    def test_resolution_events_are_user_actions(self, pipeline, ledger):
        """Test that decisions are audited as user actions."""
        review = pipeline.review_messages([SEND], received_at=RECEIVED_AT)
        pipeline.build_commit_plan(review, [review.flags[0].resolve(Resolution.IGNORE)])

        events = [
            e for e in ledger.events_for(review.correlation_id)
            if e.event_type == AuditEventType.RESOLUTION_APPLIED
        ]
        assert len(events) == 1
        assert events[0].is_user_action is True
        assert events[0].details["resolution"] == "ignore"


class TestStatementReview:
    """Tests for reviewing statement imports."""

    def test_statement_review(self, pipeline, ledger):
        """Test skipped rows, history categories and recurring links."""
        review = pipeline.review_statement(STATEMENT, received_at=RECEIVED_AT)

        assert [t.kind for t in review.transactions] == [TransactionKind.PAY_BILL, TransactionKind.BUY_GOODS]
        assert len(review.skipped_rows) == 1
        assert review.entries[1].suggested_category == "Groceries"
        assert review.flags == []

        plan = pipeline.build_commit_plan(review)
        assert len(plan.to_add) == 2
        assert [link.definition.name for link in plan.recurring_links] == ["Power"]
        assert plan.recurring_links[0].transaction.reference == "RKC3D4E5F6"
        assert plan.recurring_links[0].structural is True
        assert plan.recurring_links[0].reasons == ["Paybill number matches"]
        assert AuditEventType.RECURRING_LINKED in _event_types(ledger, review)

    def test_keyword_fallback_is_opt_in(self, ledger, monkeypatch):
        """Test that keyword suggestions only appear when enabled."""
        plain = ImportPipeline(settings=Settings())
        review = plain.review_statement(STATEMENT, received_at=RECEIVED_AT)
        assert review.entries[0].suggested_category is None

        monkeypatch.setenv("PESABOOK_RECONCILE_KEYWORD_FALLBACK", "true")
        enabled = ImportPipeline(settings=Settings())
        review = enabled.review_statement(STATEMENT, received_at=RECEIVED_AT)
        assert review.entries[0].suggested_category == "Utilities"


class TestInMemoryLedger:
    """Tests for the in-memory collaborator."""

    def test_inactive_definitions_are_hidden(self, ledger):
        """Test list_recurring_definitions filtering."""
        assert [d.name for d in ledger.list_recurring_definitions()] == ["Power"]
        assert len(ledger.list_recurring_definitions(include_inactive=True)) == 2

    def test_records_are_newest_first(self, ledger):
        """Test list_records ordering and limits."""
        assert [r.id for r in ledger.list_records()] == ["r1", "r2"]
        assert [r.id for r in ledger.list_records(limit=1)] == ["r1"]
        assert ledger.list_records(since=datetime(2025, 1, 1))[0].id == "r1"

    def test_snapshots_are_copies(self, ledger):
        """Test that editing a listed record leaves the ledger untouched."""
        ledger.list_records()[0].category = "Changed"
        assert ledger.get_record("r1").category == "Family"

    def test_unknown_record(self, ledger):
        """Test NotFoundError for a missing id."""
        with pytest.raises(NotFoundError):
            ledger.get_record("missing")
