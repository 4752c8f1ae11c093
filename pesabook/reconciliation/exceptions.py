"""Reconciliation Exceptions"""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""
    pass


class UnresolvedDuplicateError(ReconciliationError):
    """A duplicate flag reached the commit step without a decision."""

    def __init__(self, reference: Optional[str], message: Optional[str] = None):
        self.reference = reference
        super().__init__(
            message or f"Flagged transaction {reference or '(no reference)'} has no resolution"
        )


class InvalidResolutionError(ReconciliationError):
    """A decision that cannot be applied, such as merging into a non-candidate."""
    pass
