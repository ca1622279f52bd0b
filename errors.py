from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    EMPTY_DATASET = "empty_dataset"
    INCOMPLETE_DATA = "incomplete_data"
    UNKNOWN_FIELD = "unknown_field"
    TYPE_MISMATCH = "type_mismatch"
    MALFORMED_COMPOUND_INPUT = "malformed_compound_input"
    NO_MATCH = "no_match"


# =========================
# 🔹 QUERY ENGINE ERRORS
# =========================

class QueryError(Exception):
    """
    Base class for sort/filter failures.

    `kind` tags the failure so callers can branch without parsing messages;
    `retryable` tells the controller whether the user may simply try again.
    """
    kind: ErrorKind
    retryable: bool = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class EmptyDatasetError(QueryError):
    kind = ErrorKind.EMPTY_DATASET

    def __init__(self, message: str = "There is no data to process. Send a .csv or .json file first."):
        super().__init__(message)


class IncompleteDataError(QueryError):
    kind = ErrorKind.INCOMPLETE_DATA

    def __init__(self, message: str = "Some records have no TestDate, there is nothing to sort by."):
        super().__init__(message)


class UnknownFieldError(QueryError):
    kind = ErrorKind.UNKNOWN_FIELD
    retryable = False

    def __init__(self, field: Any):
        super().__init__(f"Field '{field}' does not exist.")
        self.field = field


class TypeMismatchError(QueryError):
    kind = ErrorKind.TYPE_MISMATCH

    def __init__(self, field: Any, expected_type: Any, raw_input: str):
        expected = getattr(expected_type, "value", expected_type)
        hint = " (format DD.MM.YYYY)" if expected == "date" else ""
        super().__init__(f"'{raw_input}' is not a valid {expected}{hint} for field {getattr(field, 'value', field)}.")
        self.field = field
        self.expected_type = expected_type
        self.raw_input = raw_input


class MalformedCompoundInputError(QueryError):
    kind = ErrorKind.MALFORMED_COMPOUND_INPUT

    def __init__(self, message: str = "The filter text has an invalid format: send exactly two lines, one value per line."):
        super().__init__(message)


class NoMatchError(QueryError):
    kind = ErrorKind.NO_MATCH

    def __init__(self, message: str = "No matching records were found."):
        super().__init__(message)


# =========================
# 🔹 CODEC ERRORS
# =========================

class CodecError(Exception):
    """Raised when an uploaded file cannot be turned into a dataset (or back)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedFormatError(CodecError):
    def __init__(self, extension: str):
        super().__init__(f"❌ Files of format '{extension or 'unknown'}' are not allowed.\nAllowed formats: .json or .csv")
        self.extension = extension


class HeaderMismatchError(CodecError):
    def __init__(self, message: str = "The headers in the file have an invalid format."):
        super().__init__(message)


class InvalidFileError(CodecError):
    def __init__(self, message: str = "The file has an invalid format."):
        super().__init__(message)


class EmptyFileError(CodecError):
    def __init__(self, message: str = "No suitable records were found in the file."):
        super().__init__(message)


class EmptyFieldsError(CodecError):
    pass


# =========================
# 🔹 TRANSPORT ERRORS
# =========================

class TelegramApiError(Exception):
    def __init__(self, method: str, status: int, description: str = ""):
        super().__init__(f"Telegram API call '{method}' failed ({status}): {description}")
        self.method = method
        self.status = status
        self.description = description
