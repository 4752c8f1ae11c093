"""
Anchor phrase table for transaction kind classification.

DESIGN DECISION: Priority is data, not control flow.
The table is scanned top to bottom and the first matching rule wins, so
more specific phrases sit above generic ones. "Ksh1,500.00 sent to KPLC
for account 1234" must be a pay bill payment, not a plain send, which is
why "for account" is listed long before "sent to".

The same table classifies SMS messages and statement description cells.
"""

import re
from typing import NamedTuple, Optional

from pesabook.models.transaction import TransactionKind


class AnchorRule(NamedTuple):
    pattern: re.Pattern
    kind: TransactionKind
    label: str


def _rule(regex: str, kind: TransactionKind, label: str) -> AnchorRule:
    return AnchorRule(re.compile(regex, re.IGNORECASE), kind, label)


ANCHOR_RULES: tuple[AnchorRule, ...] = (
    # Reversals quote the original transaction, so they go first.
    _rule(r"\b(?:has been |was )?reversed\b", TransactionKind.REVERSAL, "reversed"),
    _rule(r"\breversal\b", TransactionKind.REVERSAL, "reversal"),

    _rule(r"\bof airtime\b", TransactionKind.AIRTIME_OR_DATA, "of airtime"),
    _rule(r"\bairtime purchase\b", TransactionKind.AIRTIME_OR_DATA, "airtime purchase"),
    _rule(r"\b(?:data )?bundles? purchase\b", TransactionKind.AIRTIME_OR_DATA, "bundle purchase"),

    _rule(r"\bpay ?bill\b", TransactionKind.PAY_BILL, "pay bill"),
    _rule(r"\bfor account\b", TransactionKind.PAY_BILL, "for account"),

    _rule(r"\bbuy goods\b", TransactionKind.BUY_GOODS, "buy goods"),
    _rule(r"\b(?:merchant payment|pay merchant)\b", TransactionKind.BUY_GOODS, "merchant payment"),
    _rule(r"\bpaid to\b", TransactionKind.BUY_GOODS, "paid to"),

    # "5:40 PMWithdraw" and "PMGive": no word boundary after the time token.
    _rule(r"withdraw(?:al|n)?\b", TransactionKind.WITHDRAW, "withdraw"),

    _rule(r"\bdeposited\b", TransactionKind.DEPOSIT, "deposited"),
    _rule(r"\bdeposit of funds\b", TransactionKind.DEPOSIT, "deposit of funds"),
    _rule(r"give\b.+?\bcash to\b", TransactionKind.DEPOSIT, "give cash to"),

    _rule(r"\breceived\b", TransactionKind.RECEIVE, "received"),
    _rule(r"\bbusiness payment from\b", TransactionKind.RECEIVE, "business payment from"),

    _rule(r"\bsent to\b", TransactionKind.SEND, "sent to"),
    _rule(r"\b(?:customer )?transfer to\b", TransactionKind.SEND, "transfer to"),
)


def matching_rule(text: str) -> Optional[AnchorRule]:
    """Return the highest-priority rule that matches the text, if any."""
    for rule in ANCHOR_RULES:
        if rule.pattern.search(text):
            return rule
    return None


def classify(text: str) -> Optional[TransactionKind]:
    """
    Classify a message or statement description.

    Returns None when no anchor phrase matches. Callers must treat that
    as a failure; a kind is never guessed.
    """
    rule = matching_rule(text)
    return rule.kind if rule else None
