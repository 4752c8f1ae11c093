"""
M-PESA Confirmation Message Parser

Turns one pasted confirmation SMS into a canonical transaction:

    QGH7X9KLM0 Confirmed. Ksh500.00 sent to JANE DOE 0712345678 on 15/1/25
    at 10:30 AM New M-PESA balance is Ksh4,500.00. Transaction cost, Ksh7.00.

Steps:
1. Normalize Unicode artifacts
2. Classify the kind from the anchor table (first match wins)
3. Extract amount, counterparty, reference, timestamp, balance and fee
4. Extract the kind-specific identifiers (paybill, till, account, agent)

CRITICAL: A message that matches no anchor phrase is a hard failure.
We never emit a record with a guessed kind, and we never fall back to
"just grab the first amount".
"""

import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from functools import lru_cache
from typing import Iterable, Optional, Union

import structlog
from pydantic import ValidationError

from pesabook.config import ParserSettings, get_settings
from pesabook.models.batch import MessageBatch, ParseFailure
from pesabook.models.transaction import (
    MAX_COUNTERPARTY_LENGTH,
    UNKNOWN_COUNTERPARTY,
    TransactionBase,
    TransactionKind,
    TransactionSource,
    build_transaction,
)
from pesabook.parsing.anchors import classify
from pesabook.parsing.exceptions import (
    MalformedAmountError,
    ParseError,
    UnrecognizedFormatError,
)
from pesabook.parsing.normalize import (
    clean_text,
    collapse_whitespace,
    currency_pattern,
    extract_phone_number,
    parse_money,
    parse_positive_money,
)


logger = structlog.get_logger(__name__)


_REFERENCE = re.compile(r"\b([A-Z0-9]{6,12})\s*(?i:confirmed)\b")

_REVERSED_REFERENCE = re.compile(r"(?i:transaction)\s+(?=[A-Z0-9]*\d)([A-Z0-9]{6,12})\b")

_DATE = re.compile(
    r"\bon\s*(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?"
    r"(?:\s*at\s*(\d{1,2}):(\d{2})\s*([ap]m)?)?",
    re.IGNORECASE,
)

# Where a counterparty segment ends.
_DELIMITER = re.compile(
    r"\s*(?:"
    r"\bon\s*\d{1,2}/\d{1,2}"
    r"|\bfor\s+account\b"
    r"|\bacc\.\s*"
    r"|\bnew\s+m-?pesa\s+balance\b"
    r"|\btransaction\s+cost\b"
    r"|\b(?:has\s+been|was|is)\s+reversed\b"
    # A period only ends the name before a known trailer, so initials
    # ("JOHN K. DOE") and abbreviations ("CO. LTD") stay in the name.
    r"|\.(?=\s*$|\s+(?:new\s+m-?pesa|transaction\s+cost|on\s*\d"
    r"|for\s+account|acc\.|balance\b|amount\s+you\s+can|pay\s+with|download|separate))"
    r"|$)",
    re.IGNORECASE,
)

_ACCOUNT = re.compile(r"\b(?:for\s+account|acc\.)\s*:?\s*([A-Za-z0-9][A-Za-z0-9-]*)", re.IGNORECASE)

# "888880 - KPLC PREPAID" or "2547****678 - JANE DOE"
_NUMBERED_NAME = re.compile(r"^([\d*+]{3,15})\s*-\s*(.+)$")

# Where the counterparty starts, tried in order per kind.
_COUNTERPARTY_START: dict[TransactionKind, tuple[re.Pattern, ...]] = {
    kind: tuple(re.compile(p, re.IGNORECASE) for p in patterns)
    for kind, patterns in {
        TransactionKind.SEND: (r"\bsent\s+to\s+", r"\btransfer\s+to\s+", r"\bto\s+"),
        TransactionKind.RECEIVE: (r"\bfrom\s+",),
        TransactionKind.PAY_BILL: (r"\b(?:sent|paid)\s+to\s+", r"\bto\s+"),
        TransactionKind.BUY_GOODS: (r"\bpaid\s+to\s+", r"\bto\s+"),
        TransactionKind.WITHDRAW: (r"\bfrom\s+", r"\bagent\s+till\s+", r"\bat\s+"),
        TransactionKind.DEPOSIT: (r"\bcash\s+to\s+", r"\bagent\s+till\s+", r"\bat\s+"),
        TransactionKind.REVERSAL: (r"\bto\s+", r"\bfrom\s+"),
        TransactionKind.AIRTIME_OR_DATA: (r"\bairtime\s+for\s+", r"\bbundles?\s+for\s+"),
        TransactionKind.UNKNOWN: (),
    }.items()
}

# Which field the number in "NUMBER - NAME" fills, per kind.
_NUMBER_FIELD: dict[TransactionKind, str] = {
    TransactionKind.SEND: "phone_number",
    TransactionKind.RECEIVE: "phone_number",
    TransactionKind.PAY_BILL: "paybill_number",
    TransactionKind.BUY_GOODS: "till_number",
    TransactionKind.WITHDRAW: "agent_number",
    TransactionKind.DEPOSIT: "agent_number",
}


@lru_cache(maxsize=8)
def _money_patterns(markers: tuple[str, ...]) -> tuple[re.Pattern, re.Pattern, re.Pattern]:
    """(amount, balance, fee) regexes for a set of currency markers."""
    amount = currency_pattern(markers)
    token = amount.pattern
    balance = re.compile(r"\bbalance\s+(?:is|was)\s*(?:now\s*)?" + token, re.IGNORECASE)
    fee = re.compile(r"\btransaction\s+cost\s*,?\s*" + token, re.IGNORECASE)
    return amount, balance, fee


def _clean_name(segment: str) -> str:
    return collapse_whitespace(segment).strip(" .,;:-")


def extract_counterparty_fields(kind: TransactionKind, text: str) -> dict:
    """
    Extract the counterparty and kind-specific identifiers from text.

    Shared by the message parser and the statement tokenizer, which feeds
    it the description column. Returns a dict of fields for
    `build_transaction`; identifiers the text does not carry are absent.
    """
    fields: dict = {"counterparty": UNKNOWN_COUNTERPARTY}

    segment = None
    for start in _COUNTERPARTY_START[kind]:
        match = start.search(text)
        if match:
            rest = text[match.end():]
            segment = rest[:_DELIMITER.search(rest).start()]
            break

    if segment:
        name = _clean_name(segment)
        numbered = _NUMBERED_NAME.match(name)
        if numbered and kind in _NUMBER_FIELD:
            fields[_NUMBER_FIELD[kind]] = numbered.group(1)
            name = _clean_name(numbered.group(2))
        elif kind in (TransactionKind.SEND, TransactionKind.RECEIVE, TransactionKind.AIRTIME_OR_DATA):
            fields["phone_number"] = extract_phone_number(name)
        if name:
            fields["counterparty"] = name[:MAX_COUNTERPARTY_LENGTH].rstrip()

    if kind == TransactionKind.PAY_BILL:
        account = _ACCOUNT.search(text)
        if account:
            fields["account_number"] = account.group(1)
    elif kind == TransactionKind.REVERSAL:
        reversed_ref = _REVERSED_REFERENCE.search(text)
        if reversed_ref:
            fields["reversed_reference"] = reversed_ref.group(1)

    return fields


class MessageParser:
    """
    Parser for single M-PESA confirmation messages.

    IMPORTANT BOUNDARIES:
    1. One message in, one transaction out, or a ParseError
    2. No I/O and no shared state; safe to call from many threads
    3. The only time dependence is the `received_at` fallback, used when
       the message carries no date token
    """

    def __init__(self, settings: Optional[ParserSettings] = None):
        self._settings = settings or get_settings().parser
        self._amount_re, self._balance_re, self._fee_re = _money_patterns(
            tuple(self._settings.currency_markers_list)
        )

    def parse(
        self,
        raw_message: str,
        received_at: Optional[datetime] = None,
    ) -> TransactionBase:
        """
        Parse one message.

        Args:
            raw_message: The message text as pasted
            received_at: Ingestion time; fills in a missing date or year

        Raises:
            UnrecognizedFormatError: No anchor phrase matched
            MalformedAmountError: The amount token is unusable
            UnrecognizedFormatError: An extracted identifier is out of range
        """
        text = collapse_whitespace(clean_text(raw_message))
        if not text or len(text) > self._settings.max_message_length:
            raise UnrecognizedFormatError(
                "Message is empty or too long to be a confirmation",
                raw_message=raw_message,
            )

        kind = classify(text)
        if kind is None:
            raise UnrecognizedFormatError(
                "Message matches no known M-PESA format",
                raw_message=raw_message,
            )

        received_at = received_at or datetime.now()
        fields = extract_counterparty_fields(kind, text)
        fields.update(
            amount=self._extract_amount(text, raw_message),
            reference=self._extract_reference(text),
            timestamp=self._extract_timestamp(text, received_at),
            balance_after=self._money_after(self._balance_re, text),
            fee=self._money_after(self._fee_re, text),
            raw_message=raw_message,
            source=TransactionSource.MESSAGE,
        )
        try:
            return build_transaction(kind, **fields)
        except ValidationError as e:
            fields_at_fault = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            raise UnrecognizedFormatError(
                f"Message fields out of range: {', '.join(fields_at_fault)}",
                raw_message=raw_message,
            ) from e

    def _extract_amount(self, text: str, raw_message: str):
        match = self._amount_re.search(text)
        if match is None:
            raise MalformedAmountError(
                "No currency amount found in message",
                raw_message=raw_message,
            )
        return parse_positive_money(match.group("token"), raw_message)

    def _money_after(self, pattern: re.Pattern, text: str):
        """Balance and fee are optional; a garbled trailer is dropped."""
        match = pattern.search(text)
        if match is None:
            return None
        try:
            return parse_money(match.group("token"))
        except MalformedAmountError:
            logger.debug("trailer_amount_unreadable", token=match.group("token"))
            return None

    @staticmethod
    def _extract_reference(text: str) -> Optional[str]:
        match = _REFERENCE.search(text)
        return match.group(1) if match else None

    def _extract_timestamp(self, text: str, received_at: datetime) -> datetime:
        match = _DATE.search(text)
        if match is None:
            return received_at

        first, second, year, hour, minute, meridiem = match.groups()
        day, month = (first, second) if self._settings.day_first else (second, first)

        if year is None:
            year_value = received_at.year
        elif len(year) == 2:
            year_value = 2000 + int(year)
        else:
            year_value = int(year)

        hour_value = int(hour) if hour else 0
        if meridiem:
            meridiem = meridiem.upper()
            if meridiem == "PM" and hour_value != 12:
                hour_value += 12
            elif meridiem == "AM" and hour_value == 12:
                hour_value = 0

        try:
            return datetime(
                year_value,
                int(month),
                int(day),
                hour_value,
                int(minute) if minute else 0,
            )
        except ValueError:
            logger.warning("message_date_invalid", date_token=match.group(0))
            return received_at


def split_messages(text: str) -> list[str]:
    """
    Split pasted text into individual messages.

    One message per line, unless the paste separates messages with blank
    lines (as copying from a phone usually does), in which case each block
    is one message and its inner line breaks are joined.
    """
    text = clean_text(text)
    if re.search(r"\n[ \t]*\n", text):
        chunks = re.split(r"\n[ \t]*\n+", text)
    else:
        chunks = text.split("\n")
    return [collapse_whitespace(chunk) for chunk in chunks if chunk.strip()]


def parse_message(
    raw_message: str,
    *,
    received_at: Optional[datetime] = None,
    settings: Optional[ParserSettings] = None,
) -> TransactionBase:
    """Parse a single message. See MessageParser.parse."""
    return MessageParser(settings).parse(raw_message, received_at)


def parse_messages(
    messages: Union[str, Iterable[str]],
    *,
    received_at: Optional[datetime] = None,
    settings: Optional[ParserSettings] = None,
    max_workers: Optional[int] = None,
) -> MessageBatch:
    """
    Parse a batch of messages, collecting failures instead of raising.

    Args:
        messages: Pasted text (split with split_messages) or an iterable
            of individual messages
        received_at: Shared ingestion time for the whole batch
        settings: Parser settings override
        max_workers: Parse on a thread pool; output order is unchanged

    Returns:
        MessageBatch with transactions in input order, the failures, and
        the references that repeated an earlier message of the batch
    """
    lines = split_messages(messages) if isinstance(messages, str) else list(messages)
    parser = MessageParser(settings)
    received_at = received_at or datetime.now()

    def attempt(line: str):
        try:
            return parser.parse(line, received_at)
        except ParseError as e:
            return e

    if max_workers and max_workers > 1 and len(lines) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(attempt, lines))
    else:
        outcomes = [attempt(line) for line in lines]

    batch = MessageBatch()
    seen_references: set[str] = set()

    for index, (line, outcome) in enumerate(zip(lines, outcomes)):
        if isinstance(outcome, ParseError):
            batch.failures.append(ParseFailure(
                index=index,
                raw_message=line,
                error_kind=outcome.error_kind,
                message=str(outcome),
            ))
            logger.info(
                "message_parse_failed",
                index=index,
                error_kind=outcome.error_kind.value,
                reason=str(outcome),
            )
            continue

        if outcome.reference and outcome.reference in seen_references:
            batch.repeated_references.append(outcome.reference)
            continue
        if outcome.reference:
            seen_references.add(outcome.reference)
        batch.transactions.append(outcome)

    logger.info(
        "messages_parsed",
        parsed=len(batch.transactions),
        failed=batch.failure_count,
        repeated=len(batch.repeated_references),
    )
    return batch
