"""
Parsing Exceptions

A ParseError always concerns exactly one message. Batch functions catch
it per line and turn it into a ParseFailure entry.
"""

from pesabook.models.batch import ParseErrorKind


class ParseError(Exception):
    """Base exception for message parsing failures."""

    error_kind: ParseErrorKind = ParseErrorKind.UNRECOGNIZED_FORMAT

    def __init__(self, message: str, raw_message: str = ""):
        self.raw_message = raw_message
        super().__init__(message)


class UnrecognizedFormatError(ParseError):
    """The message matches none of the known anchor phrases."""

    error_kind = ParseErrorKind.UNRECOGNIZED_FORMAT


class MalformedAmountError(ParseError):
    """A currency token is present but is not a positive decimal."""

    error_kind = ParseErrorKind.MALFORMED_AMOUNT

    def __init__(self, message: str, raw_message: str = "", token: str = ""):
        self.token = token
        super().__init__(message, raw_message)
