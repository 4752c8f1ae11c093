"""
Recurring Payment Matcher

Links a transaction to the recurring definition (rent, KPLC tokens, a
subscription) it pays.

DESIGN DECISION: Identifiers beat names.
When the definition and the transaction both carry a paybill, till or
account number, those numbers decide on their own: a rent paybill payment
still matches when the rent went up, and a different paybill never matches
however similar the name. Only when no identifier can be compared do we
fall back to counterparty name plus an amount tolerance.
"""

from decimal import Decimal
from typing import Iterable, Optional

import structlog

from pesabook.config import RecurringSettings, get_settings
from pesabook.models.transaction import (
    RecurringDefinition,
    TransactionBase,
    normalize_identifier,
)
from pesabook.parsing.normalize import normalize_name


logger = structlog.get_logger(__name__)


def _identifier(txn: TransactionBase, field: str) -> str:
    # Only PayBill/BuyGoods variants declare these fields.
    return normalize_identifier(getattr(txn, field, None))


def structural_match(txn: TransactionBase, definition: RecurringDefinition) -> Optional[bool]:
    """
    Compare paybill/till/account identifiers.

    Returns None when no identifier is present on both sides, otherwise
    whether the identifiers agree. A paybill definition that also names an
    account requires both to agree.
    """
    paybill = _identifier(txn, "paybill_number")
    till = _identifier(txn, "till_number")
    account = _identifier(txn, "account_number")

    if definition.paybill_number and paybill:
        if paybill != normalize_identifier(definition.paybill_number):
            return False
        return not definition.account_number or account == normalize_identifier(definition.account_number)

    if definition.till_number and till:
        return till == normalize_identifier(definition.till_number)

    if definition.account_number and account:
        return account == normalize_identifier(definition.account_number)

    return None


def recurring_match_reasons(
    txn: TransactionBase,
    definition: RecurringDefinition,
    *,
    settings: Optional[RecurringSettings] = None,
) -> list[str]:
    """Explain a link made by match_recurring, one reason per agreeing field."""
    if structural_match(txn, definition):
        reasons = []
        if definition.paybill_number and _identifier(txn, "paybill_number"):
            reasons.append("Paybill number matches")
        elif definition.till_number and _identifier(txn, "till_number"):
            reasons.append("Till number matches")
        if definition.account_number and _identifier(txn, "account_number"):
            reasons.append("Account number matches")
        return reasons

    settings = settings or get_settings().recurring
    return [
        "Recipient name exact match",
        f"Amount matches (within {settings.amount_tolerance_pct.normalize():f}%)",
    ]


def within_tolerance(amount: Decimal, expected: Decimal, tolerance_pct: Decimal) -> bool:
    """True when `amount` is within `tolerance_pct` percent of `expected`."""
    return abs(amount - expected) <= expected * tolerance_pct / Decimal("100")


def find_structural_conflicts(
    txn: TransactionBase,
    definitions: Iterable[RecurringDefinition],
) -> list[RecurringDefinition]:
    """
    Return every active definition whose identifiers match the transaction.

    More than one result means the user configured the same paybill or
    till for several recurring payments.
    """
    return [d for d in definitions if d.is_active and structural_match(txn, d)]


def match_recurring(
    txn: TransactionBase,
    definitions: Iterable[RecurringDefinition],
    *,
    settings: Optional[RecurringSettings] = None,
) -> Optional[RecurringDefinition]:
    """
    Find the recurring definition this transaction satisfies.

    Structural matches are considered before name matches, and within
    each pass the first definition in the given order wins. Inactive
    definitions never match.
    """
    settings = settings or get_settings().recurring
    active = [d for d in definitions if d.is_active]

    structural = find_structural_conflicts(txn, active)
    if len(structural) > 1:
        logger.warning(
            "recurring_definition_conflict",
            reference=txn.reference,
            definitions=[d.name for d in structural],
        )
    if structural:
        return structural[0]

    name = normalize_name(txn.counterparty)
    for definition in active:
        if structural_match(txn, definition) is not None:
            continue
        if not name or normalize_name(definition.counterparty) != name:
            continue
        if within_tolerance(txn.amount, definition.amount, settings.amount_tolerance_pct):
            return definition

    return None
