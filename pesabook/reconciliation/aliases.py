"""Recipient aliases: cosmetic display names for counterparties."""

from typing import Iterable

from pesabook.models.transaction import RecipientAlias
from pesabook.parsing.normalize import normalize_name


def display_name(name: str, aliases: Iterable[RecipientAlias]) -> str:
    """
    Return the user's display name for a counterparty, or the name itself.

    The original name must match exactly, ignoring case and spacing.
    Aliases are for display only and never feed into matching.
    """
    target = normalize_name(name)
    for alias in aliases:
        if normalize_name(alias.original_name) == target:
            return alias.display_name
    return name
