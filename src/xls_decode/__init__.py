"""
xls-decode: Lazy, read-only decoding of spreadsheet files.

This library reads legacy binary workbooks (.xls), OOXML workbooks
(.xlsx, .xlsm), OOXML binary workbooks (.xlsb) and OpenDocument
spreadsheets (.ods) into one uniform model: workbook metadata plus
sheets read row by row through lazy cursors.

Basic usage:
    >>> from xls_decode import open_workbook
    >>> with open_workbook("workbook.xlsb") as wb:
    ...     print(wb.sheet_names())
    ...     cursor = wb.open_sheet(0)
    ...     while (row := cursor.next_row()) is not None:
    ...         print(row.index, row.values())

Plain Python values:
    >>> from xls_decode import Workbook
    >>> wb = Workbook.from_path("data.ods")
    >>> rows = wb.get_sheet_by_name("Sheet1").to_python()
"""

import logging

from .config import ReadOptions
from .cursor import SheetCursor
from .detect import detect_format
from .errors import (
    ContainerError,
    ErrorCode,
    MalformedContainerError,
    PasswordError,
    SheetNotFoundError,
    SheetTruncatedError,
    UnsupportedFormatError,
    WorkbookOpenError,
    XlsDecodeError,
    XmlError,
    ZipError,
)
from .models import (
    # Enums
    CellKind,
    DateEpoch,
    ErrorType,
    FormatKind,
    NumberFormatKind,
    SheetType,
    SheetVisibility,
    # Values
    EMPTY,
    CellValue,
    Row,
    # Metadata
    DecodeWarning,
    DefinedName,
    Dimensions,
    MergedRange,
    SheetMetadata,
    WorkbookMetadata,
)
from .workbook import Workbook, open_workbook

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # Main API
    "open_workbook",
    "Workbook",
    "SheetCursor",
    "ReadOptions",
    "detect_format",
    # Enums
    "CellKind",
    "DateEpoch",
    "ErrorType",
    "FormatKind",
    "NumberFormatKind",
    "SheetType",
    "SheetVisibility",
    # Values
    "EMPTY",
    "CellValue",
    "Row",
    # Metadata
    "DecodeWarning",
    "DefinedName",
    "Dimensions",
    "MergedRange",
    "SheetMetadata",
    "WorkbookMetadata",
    # Errors
    "ErrorCode",
    "XlsDecodeError",
    "UnsupportedFormatError",
    "ContainerError",
    "MalformedContainerError",
    "ZipError",
    "XmlError",
    "WorkbookOpenError",
    "PasswordError",
    "SheetNotFoundError",
    "SheetTruncatedError",
]
