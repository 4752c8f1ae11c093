"""
Reconciliation Package

Category inference, duplicate flagging and recurring payment matching.
Everything here is pure: history and definitions are passed in and never
modified.
"""

from pesabook.reconciliation.aliases import display_name
from pesabook.reconciliation.categories import (
    KEYWORD_RULES,
    UNCATEGORIZED,
    infer_category,
    suggest_category_from_keywords,
)
from pesabook.reconciliation.duplicates import (
    DuplicateReconciler,
    apply_resolutions,
    names_overlap,
    reconcile,
)
from pesabook.reconciliation.exceptions import (
    InvalidResolutionError,
    ReconciliationError,
    UnresolvedDuplicateError,
)
from pesabook.reconciliation.recurring import (
    find_structural_conflicts,
    match_recurring,
    recurring_match_reasons,
    structural_match,
)

__all__ = [
    # Aliases
    "display_name",
    # Categories
    "KEYWORD_RULES",
    "UNCATEGORIZED",
    "infer_category",
    "suggest_category_from_keywords",
    # Duplicates
    "DuplicateReconciler",
    "apply_resolutions",
    "names_overlap",
    "reconcile",
    # Exceptions
    "InvalidResolutionError",
    "ReconciliationError",
    "UnresolvedDuplicateError",
    # Recurring
    "find_structural_conflicts",
    "match_recurring",
    "recurring_match_reasons",
    "structural_match",
]
