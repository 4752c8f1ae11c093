"""
Text and money normalization shared by the message and statement parsers.

Pasted SMS text arrives with non-breaking spaces, zero-width joiners,
full-width digits and assorted spellings of the currency prefix. All of
that is flattened here so the extractors only ever see plain ASCII
spacing and one canonical money format.
"""

import re
import unicodedata
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from pesabook.parsing.exceptions import MalformedAmountError


_INVISIBLE = dict.fromkeys(map(ord, "\u200b\u200c\u200d\u2060\ufeff"), None)

# Leading part of a money token that is a well-formed number.
_NUMBER_PREFIX = re.compile(r"[-+]?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?")

# Sentence punctuation may follow a number ("Ksh4,500.00." or "Ksh53.00,Transaction").
_CLEAN_TAIL = re.compile(r"(?:[.,](?![0-9]).*)?", re.DOTALL)

PHONE_NUMBER = re.compile(r"(?<![\d*])(?:\+?254|0)[17][\d*]{8}(?![\d*])")


def clean_text(text: str) -> str:
    """
    Normalize Unicode formatting artifacts without touching layout.

    NFKC folds non-breaking and full-width spaces into plain ones and
    full-width digits into ASCII digits. Invisible joiners are dropped.
    Line breaks are preserved.
    """
    text = unicodedata.normalize("NFKC", text).translate(_INVISIBLE)
    return text.replace("\r\n", "\n").replace("\r", "\n")


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def currency_pattern(markers: Iterable[str]) -> re.Pattern:
    """
    Build the money-token regex for the configured currency markers.

    The token group is deliberately loose so that garbled amounts are
    captured and rejected instead of silently skipped.
    """
    alternatives = "|".join(re.escape(m) for m in sorted(markers, key=len, reverse=True))
    return re.compile(
        rf"(?<![A-Za-z])(?:{alternatives})s?\.?\s*(?P<token>[-+]?\d[0-9A-Za-z,.]*)",
        re.IGNORECASE,
    )


def parse_money(token: str, raw_message: str = "") -> Decimal:
    """
    Parse a money token such as "4,500.00" into a Decimal.

    Thousands separators are stripped. Anything else that is not part of a
    plain decimal number makes the token malformed.

    Raises:
        MalformedAmountError: If the token is not a finite decimal number.
    """
    match = _NUMBER_PREFIX.match(token)
    if match is None or not _CLEAN_TAIL.fullmatch(token[match.end():]):
        raise MalformedAmountError(
            f"Amount token '{token}' is not a number",
            raw_message=raw_message,
            token=token,
        )

    try:
        value = Decimal(match.group(0).replace(",", ""))
    except InvalidOperation:
        raise MalformedAmountError(
            f"Amount token '{token}' is not a number",
            raw_message=raw_message,
            token=token,
        )

    if not value.is_finite():
        raise MalformedAmountError(
            f"Amount token '{token}' is not finite",
            raw_message=raw_message,
            token=token,
        )
    return value


def parse_positive_money(token: str, raw_message: str = "") -> Decimal:
    """Parse a transaction amount; zero and negative values are rejected."""
    value = parse_money(token, raw_message)
    if value <= 0:
        raise MalformedAmountError(
            f"Amount must be positive, got {value}",
            raw_message=raw_message,
            token=token,
        )
    return value


def normalize_name(name: Optional[str]) -> str:
    """Case-insensitive, trimmed, single-spaced form used for name comparison."""
    if not name:
        return ""
    return collapse_whitespace(name).casefold()


def comparable_times(*values: datetime) -> tuple[datetime, ...]:
    """
    Make timestamps safe to compare with each other.

    Ledger rows may be naive while parsed timestamps are aware, or the
    other way round. A mixed set is compared on wall-clock time.
    """
    if len({v.tzinfo is None for v in values}) > 1:
        return tuple(v.replace(tzinfo=None) for v in values)
    return values


def extract_phone_number(text: str) -> Optional[str]:
    """Return the first Kenyan mobile number (possibly masked) in the text."""
    match = PHONE_NUMBER.search(text)
    return match.group(0) if match else None
