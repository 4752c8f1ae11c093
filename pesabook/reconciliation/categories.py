"""
Category Inference

Suggests a category for a parsed transaction from the user's own history:
whatever they filed this counterparty under most often.

DESIGN DECISION: History first, keywords only on request.
A category is inferred from what the user already did, never made up. The
keyword table below is an opt-in fallback for a first import with no
history, switched on through ReconcileSettings.keyword_fallback.
"""

import re
from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

import structlog

from pesabook.models.transaction import ExistingRecord
from pesabook.parsing.normalize import comparable_times, normalize_name


logger = structlog.get_logger(__name__)


UNCATEGORIZED = "Uncategorized"


def infer_category(counterparty: str, history: Iterable[ExistingRecord]) -> Optional[str]:
    """
    Return the most frequent category used for this counterparty.

    Names match exactly after trimming, case folding and whitespace
    collapsing. Ties go to the category used most recently, then
    alphabetically. "Uncategorized" only wins when it is the sole
    category on record.

    Returns None when the counterparty has no categorized history.
    """
    target = normalize_name(counterparty)
    if not target:
        return None

    matching = [
        record for record in history
        if record.category and normalize_name(record.counterparty) == target
    ]
    times = comparable_times(*(record.timestamp for record in matching))

    counts: Counter = Counter()
    last_used: dict[str, datetime] = {}

    for record, when in zip(matching, times):
        counts[record.category] += 1
        seen = last_used.get(record.category)
        if seen is None or when > seen:
            last_used[record.category] = when

    if len(counts) > 1:
        counts.pop(UNCATEGORIZED, None)
    if not counts:
        return None

    # Highest count, then most recent use, then alphabetical.
    ranked = sorted(
        counts,
        key=lambda c: (-counts[c], -last_used[c].timestamp(), c),
    )
    return ranked[0]


# =============================================================================
# KEYWORD FALLBACK
# =============================================================================

def _words(*words: str) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(re.escape(w) for w in words) + r")\b", re.IGNORECASE)


# (category, keyword pattern); scanned in order, most keyword hits wins.
KEYWORD_RULES: tuple[tuple[str, re.Pattern], ...] = (
    ("Transport", _words("uber", "bolt", "boda", "matatu", "taxi", "train", "fuel", "petrol", "carwash")),
    ("Food & Drinks", _words(
        "restaurant", "cafe", "coffee", "kfc", "pizza", "naivas", "carrefour",
        "quickmart", "supermarket", "grocery", "meals",
    )),
    ("Shopping", _words("shop", "store", "jumia", "kilimall", "mall", "fashion", "clothing", "electronics")),
    ("Entertainment", _words(
        "netflix", "showmax", "spotify", "dstv", "movie", "cinema", "betika", "sportpesa", "odibets",
    )),
    ("Utilities", _words(
        "kplc", "kenya power", "nairobi water", "water", "airtime", "internet", "wifi",
        "safaricom", "airtel", "telkom", "zuku",
    )),
    ("Health", _words("hospital", "clinic", "pharmacy", "chemist", "medical", "nhif", "sha", "insurance")),
    ("Finance / Transfers", _words("bank", "kcb", "equity", "pesalink", "mshwari", "tala")),
    ("Work & Subscriptions", _words(
        "subscription", "hosting", "domain", "aws", "google", "microsoft", "github", "vercel",
    )),
    ("Savings / Goals", _words("saving", "savings", "investment", "sacco")),
    ("Debt / Loans", _words("loan", "repay", "repayment", "installment", "fuliza")),
)


def suggest_category_from_keywords(text: str) -> Optional[str]:
    """
    Suggest a category from merchant keywords in the text.

    The category with the most distinct keyword hits wins; on a tie the
    one listed first in KEYWORD_RULES wins. Returns None when no keyword
    appears.
    """
    if not text:
        return None

    best, best_hits = None, 0
    for category, pattern in KEYWORD_RULES:
        hits = len({m.group(0).lower() for m in pattern.finditer(text)})
        if hits > best_hits:
            best, best_hits = category, hits

    if best:
        logger.debug("keyword_category_suggested", category=best, hits=best_hits)
    return best
