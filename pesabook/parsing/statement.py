"""
M-PESA Statement Tokenizer

Turns statement text (from the external PDF-to-text service or a
copy-paste) into canonical transactions. Columns, in order:

    Receipt No | Completion Time | Details | Transaction Status |
    Paid In | Withdrawn | Balance

Statement exports are fixed-width or tab-aligned, so columns are split on
whitespace runs and anchored from the right: the status word followed by
the money columns ends every transaction row. Whatever sits between the
completion time and the status is the description.

DESIGN DECISION: Tokenizing never fails.
Statements are full of page markers, headers, summaries and footers. A
row that cannot be turned into a transaction is recorded as a SkippedRow
with a reason and the rest of the statement carries on.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog

from pesabook.config import ParserSettings, get_settings
from pesabook.models.batch import SkippedRow, SkipReason, StatementBatch
from pesabook.models.transaction import (
    INFLOW_KINDS,
    OUTFLOW_KINDS,
    TransactionBase,
    TransactionKind,
    TransactionSource,
    build_transaction,
)
from pesabook.parsing.anchors import classify
from pesabook.parsing.exceptions import MalformedAmountError
from pesabook.parsing.messages import extract_counterparty_fields
from pesabook.parsing.normalize import clean_text, parse_money


logger = structlog.get_logger(__name__)


# Removed before splitting; replaced by the same number of line breaks so
# reported line numbers still point at the original text.
_NOISE_BLOCKS = (
    re.compile(r"Disclaimer:.*?conditions\s+apply\.?", re.IGNORECASE | re.DOTALL),
    re.compile(r"\bPage\s+\d+\s+of\s+\d+\b", re.IGNORECASE),
    re.compile(
        r"Receipt\s+No\.?\s+Completion\s+Time\s+Details\s+(?:Transaction\s+)?Status"
        r"\s+Paid\s+In\s+Withdrawn\s+Balance",
        re.IGNORECASE,
    ),
)

_STATUSES = {"COMPLETED", "FAILED", "PENDING", "CANCELLED", "DECLINED"}

_RECEIPT = re.compile(r"^(?=[A-Z0-9]*\d)(?=[A-Z0-9]*[A-Z])[A-Z0-9]{8,12}$")
_DATE_TOKEN = re.compile(r"^\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4}(?:T\d{1,2}:\d{2}(?::\d{2})?)?$")
_TIME_TOKEN = re.compile(r"^\d{1,2}:\d{2}(?::\d{2})?$")
_MERIDIEM = re.compile(r"^[AaPp][Mm]$")
_MONEY_TOKEN = re.compile(r"^[-+]?[\d,]*\.?\d+$")

# A receipt followed by a date opens a transaction row.
_ROW_START = re.compile(r"^(?=[A-Z0-9]*\d)[A-Z0-9]{8,12}\s+\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4}")

_CHARGE = re.compile(r"\bcharge\b", re.IGNORECASE)

# A wrapped row may span this many physical lines before we give up on it.
_MAX_ROW_LINES = 4

_DAY_FIRST_DATES = ("%Y-%m-%d", "%d/%m/%Y", "%d/%m/%y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d")
_MONTH_FIRST_DATES = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%m-%d-%Y", "%m.%d.%Y", "%Y/%m/%d")
_TIMES = ("%H:%M:%S", "%H:%M", "%I:%M:%S %p", "%I:%M %p")


class _RowRejected(Exception):
    """Internal signal: this row becomes a SkippedRow."""

    def __init__(self, reason: SkipReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(detail or reason.value)


class StatementTokenizer:
    """
    Tokenizes statement text into canonical transactions.

    The output is structurally identical to MessageParser output, so
    everything downstream is blind to where a transaction came from.
    """

    def __init__(self, settings: Optional[ParserSettings] = None):
        self._settings = settings or get_settings().parser
        self._date_formats = (
            _DAY_FIRST_DATES if self._settings.day_first else _MONTH_FIRST_DATES
        )

    def tokenize(
        self,
        text: str,
        received_at: Optional[datetime] = None,
    ) -> StatementBatch:
        """
        Tokenize a whole statement.

        Args:
            text: Raw statement text, possibly several pasted pages
            received_at: Timestamp used for rows without a completion time
        """
        received_at = received_at or datetime.now()
        batch = StatementBatch()
        transactions: list[TransactionBase] = []
        by_receipt: dict[str, int] = {}
        charges: list[tuple[int, str, str, Decimal]] = []

        for line_number, row in self._logical_rows(self._strip_noise(text), batch):
            try:
                parsed = self._parse_row(row, received_at)
            except _RowRejected as e:
                self._skip(batch, line_number, row, e.reason, e.detail)
                continue

            receipt, is_charge, value = parsed
            if is_charge:
                charges.append((line_number, row, receipt, value))
                continue

            if receipt and receipt in by_receipt:
                self._skip(batch, line_number, row, SkipReason.DUPLICATE_RECEIPT, receipt)
                continue

            if receipt:
                by_receipt[receipt] = len(transactions)
            transactions.append(value)

        for line_number, row, receipt, fee in charges:
            index = by_receipt.get(receipt) if receipt else None
            if index is None:
                self._skip(batch, line_number, row, SkipReason.ORPHAN_CHARGE, receipt)
                continue
            current = transactions[index]
            transactions[index] = current.model_copy(
                update={"fee": (current.fee or Decimal("0")) + fee}
            )

        batch.transactions.extend(transactions)
        logger.info(
            "statement_tokenized",
            parsed=len(batch.transactions),
            skipped=batch.skipped_count,
        )
        return batch

    @staticmethod
    def _skip(
        batch: StatementBatch,
        line_number: int,
        text: str,
        reason: SkipReason,
        detail: str = "",
    ) -> None:
        batch.skipped_rows.append(SkippedRow(
            line_number=line_number,
            text=text,
            reason=reason,
            detail=detail or None,
        ))
        logger.debug("statement_row_skipped", line_number=line_number, reason=reason.value)

    @staticmethod
    def _strip_noise(text: str) -> str:
        text = clean_text(text)
        for pattern in _NOISE_BLOCKS:
            text = pattern.sub(lambda m: "\n" * m.group(0).count("\n"), text)
        return text

    def _logical_rows(self, text: str, batch: StatementBatch):
        """
        Yield (first_line_number, row_text) for each logical row.

        PDF extraction wraps long descriptions onto following lines. A
        line that opens a transaction but lacks the status and money
        columns is held and joined with the lines after it.
        """
        pending: Optional[tuple[int, list[str]]] = None

        for line_number, line in enumerate(text.split("\n"), start=1):
            line = " ".join(line.split())
            if not line:
                continue

            if pending and _ROW_START.match(line):
                start, parts = pending
                self._skip(batch, start, " ".join(parts), SkipReason.NO_AMOUNT_COLUMNS)
                pending = None

            if pending:
                start, parts = pending
                parts.append(line)
            else:
                start, parts = line_number, [line]

            row = " ".join(parts)
            if self._has_tail(row.split()):
                pending = None
                yield start, row
            elif (_ROW_START.match(parts[0]) or pending) and len(parts) < _MAX_ROW_LINES:
                pending = (start, parts)
            else:
                pending = None
                yield start, row

        if pending:
            start, parts = pending
            self._skip(batch, start, " ".join(parts), SkipReason.NO_AMOUNT_COLUMNS)

    @staticmethod
    def _status_index(tokens: list[str]) -> Optional[int]:
        """Index of the status column, scanning from the right."""
        for offset in (3, 4):
            index = len(tokens) - offset
            if index >= 1 and tokens[index].upper() in _STATUSES:
                return index
        return None

    def _has_tail(self, tokens: list[str]) -> bool:
        return self._status_index(tokens) is not None

    def _parse_row(self, row: str, received_at: datetime):
        """
        Parse one logical row.

        Returns (receipt, is_charge, transaction_or_fee_amount).

        Raises:
            _RowRejected: The row does not describe a usable transaction
        """
        tokens = row.split()
        status_index = self._status_index(tokens)
        if status_index is None:
            raise _RowRejected(SkipReason.NO_AMOUNT_COLUMNS)

        status = tokens[status_index].upper()
        money = tokens[status_index + 1:]
        left = tokens[:status_index]

        receipt = None
        if left and _RECEIPT.match(left[0]):
            receipt = left.pop(0)

        timestamp = self._take_timestamp(left) or received_at
        description = " ".join(left)
        if not description:
            raise _RowRejected(SkipReason.INVALID_ROW, "empty description")

        if status != "COMPLETED":
            raise _RowRejected(SkipReason.NOT_COMPLETED, status)

        paid_in, withdrawn, balance = self._money_columns(money)

        if _CHARGE.search(description):
            return receipt, True, paid_in or withdrawn

        if paid_in and withdrawn:
            raise _RowRejected(SkipReason.AMBIGUOUS_DIRECTION)
        if not paid_in and not withdrawn:
            raise _RowRejected(SkipReason.ZERO_AMOUNT)

        kind = self._kind_for(description, inflow=bool(paid_in))
        fields = extract_counterparty_fields(kind, description)
        fields.update(
            amount=paid_in or withdrawn,
            reference=receipt,
            timestamp=timestamp,
            balance_after=balance,
            raw_message=row,
            source=TransactionSource.STATEMENT,
        )
        try:
            return receipt, False, build_transaction(kind, **fields)
        except ValueError as e:
            raise _RowRejected(SkipReason.INVALID_ROW, str(e))

    @staticmethod
    def _money_columns(tokens: list[str]) -> tuple[Decimal, Decimal, Decimal]:
        """
        Read (paid_in, withdrawn, balance) as non-negative amounts.

        Three columns are read positionally. When text extraction dropped
        the empty column, the sign of the single amount gives the direction.
        """
        values = []
        for token in tokens:
            if token == "-":
                values.append(Decimal("0"))
                continue
            if not _MONEY_TOKEN.match(token):
                raise _RowRejected(SkipReason.MALFORMED_AMOUNT, token)
            try:
                values.append(parse_money(token))
            except MalformedAmountError:
                raise _RowRejected(SkipReason.MALFORMED_AMOUNT, token)

        if len(values) == 3:
            paid_in, withdrawn, balance = values
            return abs(paid_in), abs(withdrawn), balance

        amount, balance = values
        if amount < 0:
            return Decimal("0"), -amount, balance
        return amount, Decimal("0"), balance

    def _take_timestamp(self, left: list[str]) -> Optional[datetime]:
        """
        Pop the completion time tokens off the front of the row.

        Returns None when the row has no completion time column.

        Raises:
            _RowRejected: A date is present but cannot be read
        """
        if not left or not _DATE_TOKEN.match(left[0]):
            return None

        date_token = left.pop(0)
        time_token = None
        if left and _TIME_TOKEN.match(left[0]):
            time_token = left.pop(0)
            if left and _MERIDIEM.match(left[0]):
                time_token = f"{time_token} {left.pop(0).upper()}"

        parsed = self._parse_datetime(date_token, time_token)
        if parsed is None:
            raise _RowRejected(SkipReason.BAD_TIMESTAMP, f"{date_token} {time_token or ''}".strip())
        return parsed

    def _parse_datetime(self, date_token: str, time_token: Optional[str]) -> Optional[datetime]:
        if "T" in date_token:
            try:
                return datetime.fromisoformat(date_token)
            except ValueError:
                return None

        for date_format in self._date_formats:
            if time_token is None:
                try:
                    return datetime.strptime(date_token, date_format)
                except ValueError:
                    continue
            for time_format in _TIMES:
                try:
                    return datetime.strptime(f"{date_token} {time_token}", f"{date_format} {time_format}")
                except ValueError:
                    continue
        return None

    @staticmethod
    def _kind_for(description: str, inflow: bool) -> TransactionKind:
        """
        Pick the kind from money direction and description.

        Paid-in rows are receipts unless the description names a more
        specific inflow; withdrawn rows take the description's outflow
        kind, defaulting to a send. A description that contradicts the
        direction yields UNKNOWN rather than a guess.
        """
        described = classify(description)
        if described == TransactionKind.REVERSAL:
            return described

        if inflow:
            if described is None:
                return TransactionKind.RECEIVE
            return described if described in INFLOW_KINDS else TransactionKind.UNKNOWN

        if described is None:
            return TransactionKind.SEND
        return described if described in OUTFLOW_KINDS else TransactionKind.UNKNOWN


def parse_statement(
    text: str,
    *,
    received_at: Optional[datetime] = None,
    settings: Optional[ParserSettings] = None,
) -> StatementBatch:
    """Tokenize statement text. See StatementTokenizer.tokenize."""
    return StatementTokenizer(settings).tokenize(text, received_at)
