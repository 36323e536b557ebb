"""Exception classes for xls-decode.

Exceptions are reserved for container-, header- and sheet-level failures.
Problems with a single cell never raise; they become an error cell plus a
``DecodeWarning`` on the workbook.

Exception Hierarchy:
    XlsDecodeError (base)
    ├── UnsupportedFormatError
    ├── ContainerError
    │   └── MalformedContainerError
    │       ├── ZipError
    │       └── XmlError
    ├── WorkbookOpenError
    │   └── PasswordError
    ├── SheetNotFoundError
    └── SheetTruncatedError
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for programmatic handling.

    - E1xxx: format and container errors
    - E2xxx: workbook errors
    - E3xxx: sheet errors
    """

    UNSUPPORTED_FORMAT = "E1001"
    CONTAINER_UNREADABLE = "E1002"
    MALFORMED_CONTAINER = "E1003"
    ZIP_ERROR = "E1004"
    XML_ERROR = "E1005"

    WORKBOOK_OPEN_FAILED = "E2001"
    PASSWORD_PROTECTED = "E2002"
    WORKBOOK_CLOSED = "E2003"

    SHEET_NOT_FOUND = "E3001"
    SHEET_TRUNCATED = "E3002"


class XlsDecodeError(Exception):
    """Base exception for all xls-decode errors.

    Attributes:
        message: Human-readable error message.
        error_code: Code from ErrorCode.
        details: Additional structured details.
    """

    default_code: ErrorCode = ErrorCode.WORKBOOK_OPEN_FAILED

    def __init__(
        self,
        message: str,
        error_code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a plain dictionary."""
        result: dict[str, Any] = {
            "error_code": self.error_code.value,
            "error_type": type(self).__name__,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


class UnsupportedFormatError(XlsDecodeError):
    """The signature of the input does not match any supported format."""

    default_code = ErrorCode.UNSUPPORTED_FORMAT

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details=details)


class ContainerError(XlsDecodeError):
    """The raw input could not be read as a container."""

    default_code = ErrorCode.CONTAINER_UNREADABLE


class MalformedContainerError(ContainerError):
    """Structural framing of a container, table or record stream is violated."""

    default_code = ErrorCode.MALFORMED_CONTAINER


class ZipError(MalformedContainerError):
    """A zip package is corrupt or misses a required part."""

    default_code = ErrorCode.ZIP_ERROR


class XmlError(MalformedContainerError):
    """An XML part is not well formed."""

    default_code = ErrorCode.XML_ERROR


class WorkbookOpenError(XlsDecodeError):
    """The header phase of a decoder failed; the workbook is not usable."""

    default_code = ErrorCode.WORKBOOK_OPEN_FAILED


class PasswordError(WorkbookOpenError):
    """The workbook is encrypted."""

    default_code = ErrorCode.PASSWORD_PROTECTED


class SheetNotFoundError(XlsDecodeError, LookupError):
    """No sheet matches the requested name or index."""

    default_code = ErrorCode.SHEET_NOT_FOUND

    def __init__(self, sheet: str | int) -> None:
        kind = "index" if isinstance(sheet, int) else "name"
        super().__init__(
            f"Sheet not found ({kind}): {sheet!r}",
            details={"sheet": sheet},
        )
        self.sheet = sheet


class SheetTruncatedError(XlsDecodeError):
    """The row stream of a sheet ended before its declared end.

    Rows yielded before this error remain valid. Other sheets of the same
    workbook are not affected.
    """

    default_code = ErrorCode.SHEET_TRUNCATED

    def __init__(
        self,
        sheet: str,
        message: str,
        last_row: int | None = None,
    ) -> None:
        super().__init__(
            f"Sheet {sheet!r} truncated: {message}",
            details={"sheet": sheet, "last_row": last_row},
        )
        self.sheet = sheet
        self.last_row = last_row
