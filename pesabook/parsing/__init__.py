"""
Parsing Package

Message and statement parsing into canonical transactions.
"""

from pesabook.parsing.anchors import ANCHOR_RULES, AnchorRule, classify
from pesabook.parsing.exceptions import (
    MalformedAmountError,
    ParseError,
    UnrecognizedFormatError,
)
from pesabook.parsing.messages import (
    MessageParser,
    parse_message,
    parse_messages,
    split_messages,
)
from pesabook.parsing.statement import StatementTokenizer, parse_statement

__all__ = [
    # Anchor table
    "ANCHOR_RULES",
    "AnchorRule",
    "classify",
    # Exceptions
    "MalformedAmountError",
    "ParseError",
    "UnrecognizedFormatError",
    # Messages
    "MessageParser",
    "parse_message",
    "parse_messages",
    "split_messages",
    # Statements
    "StatementTokenizer",
    "parse_statement",
]
