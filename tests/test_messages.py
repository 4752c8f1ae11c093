"""Tests for the confirmation message parser."""

import pytest
from datetime import datetime
from decimal import Decimal

from pesabook.config import ParserSettings
from pesabook.models.batch import ParseErrorKind
from pesabook.models.transaction import (
    MAX_COUNTERPARTY_LENGTH,
    UNKNOWN_COUNTERPARTY,
    AirtimeTransaction,
    BuyGoodsTransaction,
    DepositTransaction,
    PayBillTransaction,
    ReceiveTransaction,
    ReversalTransaction,
    SendTransaction,
    TransactionKind,
    TransactionSource,
    WithdrawTransaction,
)
from pesabook.parsing import (
    MalformedAmountError,
    UnrecognizedFormatError,
    classify,
    parse_message,
    parse_messages,
    split_messages,
)


RECEIVED_AT = datetime(2025, 6, 1, 12, 0)

SEND = (
    "QGH7X9KLM0 Confirmed. Ksh500.00 sent to JANE DOE 0712345678 on 15/1/25 "
    "at 10:30 AM New M-PESA balance is Ksh4,500.00"
)
PAY_BILL = (
    "RKT3ABC123 Confirmed. Ksh1,500.00 sent to KPLC PREPAID for account 54405070 "
    "on 3/2/25 at 7:15 PM New M-PESA balance is Ksh2,340.50. Transaction cost, Ksh23.00."
)
RECEIVE = (
    "SAB1CD2EF3 Confirmed.You have received Ksh2,000.00 from JOHN KAMAU 0722000111 "
    "on 5/3/25 at 9:00 AM New M-PESA balance is Ksh6,500.00."
)
BUY_GOODS = (
    "TGH5JK6LM7 Confirmed. Ksh450.00 paid to NAIVAS SUPERMARKET. on 6/3/25 at 1:05 PM."
    "New M-PESA balance is Ksh6,050.00. Transaction cost, Ksh0.00."
)
WITHDRAW = (
    "UJK8LM9NP0 Confirmed.on 7/3/25 at 5:40 PMWithdraw Ksh1,000.00 from 123456 - "
    "JOHN AGENT SHOP New M-PESA balance is Ksh5,000.00. Transaction cost, Ksh29.00."
)
DEPOSIT = (
    "XCV7BN8MK9 Confirmed. On 9/3/25 at 11:00 AM Give Ksh3,000.00 cash to 654321 - "
    "MARY AGENT New M-PESA balance is Ksh7,900.00."
)
AIRTIME = (
    "VBN1MN2BV3 confirmed.You bought Ksh100.00 of airtime on 8/3/25 at 8:00 AM."
    "New M-PESA balance is Ksh4,900.00."
)
REVERSAL = (
    "QWE4RT5YU6 Confirmed. Transaction QGH7X9KLM0 has been reversed. Ksh500.00 is "
    "credited to your M-PESA account. New M-PESA balance is Ksh5,000.00."
)
LONG_ACCOUNT = (
    "ZZZ1234567 Confirmed. Ksh1,500.00 sent to KPLC PREPAID for account "
    f"{'1' * 60} on 3/2/25 at 7:15 PM New M-PESA balance is Ksh2,340.50."
)


class TestFieldExtraction:
    """Tests for single-message extraction."""

    def test_send_message(self):
        """Test the reference send message end to end."""
        txn = parse_message(SEND, received_at=RECEIVED_AT)

        assert isinstance(txn, SendTransaction)
        assert txn.kind == TransactionKind.SEND
        assert txn.amount == Decimal("500.00")
        assert txn.counterparty == "JANE DOE 0712345678"
        assert txn.reference == "QGH7X9KLM0"
        assert txn.balance_after == Decimal("4500.00")
        assert txn.timestamp == datetime(2025, 1, 15, 10, 30)
        assert txn.phone_number == "0712345678"
        assert txn.fee is None
        assert txn.source == TransactionSource.MESSAGE
        assert txn.raw_message == SEND

    def test_pay_bill_account_does_not_leak_into_name(self):
        """Test that 'for account' wins over 'sent to' and ends the name."""
        txn = parse_message(PAY_BILL, received_at=RECEIVED_AT)

        assert isinstance(txn, PayBillTransaction)
        assert txn.counterparty == "KPLC PREPAID"
        assert txn.account_number == "54405070"
        assert txn.amount == Decimal("1500.00")
        assert txn.fee == Decimal("23.00")
        assert txn.balance_after == Decimal("2340.50")
        assert txn.timestamp == datetime(2025, 2, 3, 19, 15)

    def test_receive_message(self):
        """Test a received-money message."""
        txn = parse_message(RECEIVE, received_at=RECEIVED_AT)

        assert isinstance(txn, ReceiveTransaction)
        assert txn.amount == Decimal("2000.00")
        assert txn.counterparty == "JOHN KAMAU 0722000111"
        assert txn.phone_number == "0722000111"
        assert txn.reference == "SAB1CD2EF3"

    def test_buy_goods_message(self):
        """Test a merchant payment with a zero transaction cost."""
        txn = parse_message(BUY_GOODS, received_at=RECEIVED_AT)

        assert isinstance(txn, BuyGoodsTransaction)
        assert txn.counterparty == "NAIVAS SUPERMARKET"
        assert txn.fee == Decimal("0.00")
        assert txn.timestamp == datetime(2025, 3, 6, 13, 5)

    def test_withdraw_message_glued_to_time(self):
        """Test a withdrawal where the anchor follows 'PM' without a space."""
        txn = parse_message(WITHDRAW, received_at=RECEIVED_AT)

        assert isinstance(txn, WithdrawTransaction)
        assert txn.agent_number == "123456"
        assert txn.counterparty == "JOHN AGENT SHOP"
        assert txn.fee == Decimal("29.00")
        assert txn.timestamp == datetime(2025, 3, 7, 17, 40)

    def test_deposit_message(self):
        """Test an agent deposit."""
        txn = parse_message(DEPOSIT, received_at=RECEIVED_AT)

        assert isinstance(txn, DepositTransaction)
        assert txn.agent_number == "654321"
        assert txn.counterparty == "MARY AGENT"
        assert txn.amount == Decimal("3000.00")

    def test_airtime_message_without_counterparty(self):
        """Test that a missing counterparty becomes Unknown."""
        txn = parse_message(AIRTIME, received_at=RECEIVED_AT)

        assert isinstance(txn, AirtimeTransaction)
        assert txn.counterparty == UNKNOWN_COUNTERPARTY
        assert txn.reference == "VBN1MN2BV3"

    def test_reversal_message(self):
        """Test that a reversal records the reversed reference."""
        txn = parse_message(REVERSAL, received_at=RECEIVED_AT)

        assert isinstance(txn, ReversalTransaction)
        assert txn.reference == "QWE4RT5YU6"
        assert txn.reversed_reference == "QGH7X9KLM0"
        assert txn.amount == Decimal("500.00")

    def test_missing_year_uses_received_year(self):
        """Test that a date without a year takes the ingestion year."""
        text = "QGH7X9KLM0 Confirmed. Ksh500.00 sent to JANE DOE on 15/1 at 10:30 AM"
        txn = parse_message(text, received_at=RECEIVED_AT)
        assert txn.timestamp == datetime(2025, 1, 15, 10, 30)

    def test_missing_date_uses_received_at(self):
        """Test that a message without a date falls back to ingestion time."""
        text = "QGH7X9KLM0 Confirmed. Ksh500.00 sent to JANE DOE."
        txn = parse_message(text, received_at=RECEIVED_AT)
        assert txn.timestamp == RECEIVED_AT
        assert txn.counterparty == "JANE DOE"

    def test_impossible_date_uses_received_at(self):
        """Test that 31 February falls back instead of failing."""
        text = "QGH7X9KLM0 Confirmed. Ksh500.00 sent to JANE DOE on 31/2/25 at 10:30 AM"
        txn = parse_message(text, received_at=RECEIVED_AT)
        assert txn.timestamp == RECEIVED_AT

    def test_month_first_setting(self):
        """Test that day_first=False reads m/d dates."""
        text = "QGH7X9KLM0 Confirmed. Ksh500.00 sent to JANE DOE on 1/15/25 at 10:30 PM"
        txn = parse_message(text, received_at=RECEIVED_AT, settings=ParserSettings(day_first=False))
        assert txn.timestamp == datetime(2025, 1, 15, 22, 30)

    def test_unicode_spacing_is_normalized(self):
        """Test that non-breaking and zero-width characters are ignored."""
        text = SEND.replace(" ", "\u00a0").replace("Ksh500", "Ksh\u200b500")
        txn = parse_message(text, received_at=RECEIVED_AT)
        assert txn.amount == Decimal("500.00")
        assert txn.counterparty == "JANE DOE 0712345678"

    def test_initial_inside_name(self):
        """Test that a period after an initial does not end the name."""
        text = (
            "QGH7X9KLM0 Confirmed. Ksh500.00 sent to JOHN K. DOE 0712345678 "
            "on 15/1/25 at 10:30 AM"
        )
        txn = parse_message(text, received_at=RECEIVED_AT)
        assert txn.counterparty == "JOHN K. DOE 0712345678"
        assert txn.phone_number == "0712345678"

    def test_abbreviation_inside_business_name(self):
        """Test that 'CO. LTD' stays part of a pay bill name."""
        text = (
            "RKT3ABC123 Confirmed. Ksh1,500.00 sent to KENYA POWER & LIGHTING CO. LTD "
            "for account 54405070 on 3/2/25 at 7:15 PM New M-PESA balance is Ksh2,340.50."
        )
        txn = parse_message(text, received_at=RECEIVED_AT)
        assert txn.counterparty == "KENYA POWER & LIGHTING CO. LTD"
        assert txn.account_number == "54405070"

    def test_period_before_trailer_ends_name(self):
        """Test that a sentence break before a known trailer still ends the name."""
        text = "QGH7X9KLM0 Confirmed. Ksh500.00 sent to JANE DOE. Transaction cost, Ksh7.00."
        txn = parse_message(text, received_at=RECEIVED_AT)
        assert txn.counterparty == "JANE DOE"
        assert txn.fee == Decimal("7.00")

    def test_long_counterparty_is_clamped(self):
        """Test that an over-long name is cut to the field limit, not rejected."""
        text = f"QGH7X9KLM0 Confirmed. Ksh500.00 sent to {'A' * 250} on 15/1/25 at 10:30 AM"
        txn = parse_message(text, received_at=RECEIVED_AT)
        assert txn.counterparty == "A" * MAX_COUNTERPARTY_LENGTH

    def test_parsing_is_idempotent(self):
        """Test that the same text yields the same transaction every time."""
        first = parse_message(SEND, received_at=RECEIVED_AT)
        second = parse_message(SEND, received_at=datetime(2026, 1, 1))
        assert first == second


class TestParseErrors:
    """Tests for rejected messages."""

    def test_unrecognized_format(self):
        """Test that a message with no anchor phrase is rejected."""
        with pytest.raises(UnrecognizedFormatError) as exc:
            parse_message("Hello, your data bundle expires tomorrow", received_at=RECEIVED_AT)
        assert exc.value.error_kind == ParseErrorKind.UNRECOGNIZED_FORMAT

    def test_garbled_amount(self):
        """Test that an OCR-garbled amount is malformed, not skipped."""
        with pytest.raises(MalformedAmountError) as exc:
            parse_message("ABC1234567 Confirmed. Ksh5O0.00 sent to JANE DOE", received_at=RECEIVED_AT)
        assert exc.value.token == "5O0.00"

    def test_missing_amount(self):
        """Test that an anchor without a currency amount is malformed."""
        with pytest.raises(MalformedAmountError):
            parse_message("ABC1234567 Confirmed. KshABC sent to JANE DOE", received_at=RECEIVED_AT)

    def test_zero_amount(self):
        """Test that a zero amount is rejected."""
        with pytest.raises(MalformedAmountError):
            parse_message("ABC1234567 Confirmed. Ksh0.00 sent to JANE DOE", received_at=RECEIVED_AT)

    def test_empty_message(self):
        """Test that blank input is unrecognized."""
        with pytest.raises(UnrecognizedFormatError):
            parse_message("   ", received_at=RECEIVED_AT)

    def test_out_of_range_account_number(self):
        """Test that a field the model rejects surfaces as a parse error."""
        with pytest.raises(UnrecognizedFormatError) as exc:
            parse_message(LONG_ACCOUNT, received_at=RECEIVED_AT)
        assert "account_number" in str(exc.value)
        assert exc.value.raw_message == LONG_ACCOUNT


class TestAnchorPriority:
    """Tests for the anchor table ordering."""

    def test_for_account_beats_sent_to(self):
        """Test that a pay bill phrased as 'sent to' is a pay bill."""
        assert classify("Ksh100 sent to KPLC for account 123") == TransactionKind.PAY_BILL

    def test_reversal_beats_everything(self):
        """Test that reversals quoting a send are reversals."""
        assert classify("Transaction ABC sent to JANE has been reversed") == TransactionKind.REVERSAL

    def test_no_anchor(self):
        """Test that unknown text is not classified."""
        assert classify("Good morning") is None


class TestBatchParsing:
    """Tests for parse_messages and split_messages."""

    def test_batch_collects_failures(self):
        """Test that one bad line does not stop the batch."""
        batch = parse_messages([SEND, "not a message", RECEIVE], received_at=RECEIVED_AT)

        assert [t.reference for t in batch.transactions] == ["QGH7X9KLM0", "SAB1CD2EF3"]
        assert batch.failure_count == 1
        assert batch.failures[0].index == 1
        assert batch.failures[0].error_kind == ParseErrorKind.UNRECOGNIZED_FORMAT
        assert batch.total_count == 3

    def test_out_of_range_field_fails_one_line(self):
        """Test that a model validation failure stays inside its own line."""
        batch = parse_messages([SEND, LONG_ACCOUNT, RECEIVE], received_at=RECEIVED_AT)

        assert [t.reference for t in batch.transactions] == ["QGH7X9KLM0", "SAB1CD2EF3"]
        assert batch.failure_count == 1
        assert batch.failures[0].index == 1
        assert batch.failures[0].error_kind == ParseErrorKind.UNRECOGNIZED_FORMAT

    def test_repeated_reference_is_dropped(self):
        """Test that pasting the same message twice keeps one copy."""
        batch = parse_messages([SEND, SEND], received_at=RECEIVED_AT)

        assert len(batch.transactions) == 1
        assert batch.repeated_references == ["QGH7X9KLM0"]

    def test_thread_pool_preserves_order(self):
        """Test that parallel parsing returns input order."""
        messages = [SEND, PAY_BILL, RECEIVE, BUY_GOODS, WITHDRAW, DEPOSIT, AIRTIME, REVERSAL]
        serial = parse_messages(messages, received_at=RECEIVED_AT)
        parallel = parse_messages(messages, received_at=RECEIVED_AT, max_workers=4)

        assert parallel.transactions == serial.transactions
        assert len(parallel.transactions) == 8

    def test_split_on_lines(self):
        """Test one message per line when there are no blank lines."""
        assert split_messages(f"{SEND}\n{RECEIVE}\n") == [SEND, RECEIVE]

    def test_split_on_blank_lines(self):
        """Test that blank-line blocks are joined into single messages."""
        wrapped = SEND.replace(" sent to", "\nsent to")
        text = f"{wrapped}\n\n{RECEIVE}"
        assert split_messages(text) == [SEND, RECEIVE]

    def test_pasted_text_is_split(self):
        """Test that a str input is split before parsing."""
        batch = parse_messages(f"{SEND}\n\n{PAY_BILL}", received_at=RECEIVED_AT)
        assert [t.kind for t in batch.transactions] == [TransactionKind.SEND, TransactionKind.PAY_BILL]
