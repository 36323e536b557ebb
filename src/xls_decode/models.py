"""
Data models for decoded workbooks.

This module contains the value types every decoder produces: the tagged
cell value, rows, sheet metadata and the workbook-level records (defined
names, merged ranges, decode warnings). They are identical for all four
source formats.

Example:
    >>> from xls_decode import open_workbook
    >>> with open_workbook("report.xlsx") as wb:
    ...     for row in wb.open_sheet(0):
    ...         print(row.index, row.values())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Any, Iterator

from openpyxl.utils.cell import get_column_letter


# =============================================================================
# Enums
# =============================================================================


class FormatKind(Enum):
    """Spreadsheet container format.

    Attributes:
        XLS: Legacy binary workbook (BIFF5/BIFF8 record stream).
        XLSX: OOXML zip package with XML parts (.xlsx, .xlsm).
        XLSB: OOXML zip package with binary record parts.
        ODS: OpenDocument spreadsheet.
    """

    XLS = "xls"
    XLSX = "xlsx"
    XLSB = "xlsb"
    ODS = "ods"


class SheetVisibility(Enum):
    """Visibility state of a worksheet.

    Attributes:
        VISIBLE: Sheet is visible in the workbook.
        HIDDEN: Sheet is hidden but can be unhidden via the UI.
        VERY_HIDDEN: Sheet is hidden and can only be unhidden via VBA.
    """

    VISIBLE = "visible"
    HIDDEN = "hidden"
    VERY_HIDDEN = "very_hidden"


class SheetType(Enum):
    """Kind of sheet behind a workbook tab."""

    WORKSHEET = "worksheet"
    CHARTSHEET = "chartsheet"
    DIALOGSHEET = "dialogsheet"
    MACROSHEET = "macrosheet"
    VBA = "vba"


class CellKind(Enum):
    """Tag of a CellValue.

    Attributes:
        EMPTY: No value.
        BOOL: bool value.
        INT: 64-bit signed integer.
        FLOAT: 64-bit float.
        STRING: Text.
        DATETIME: Calendar value (datetime.datetime).
        DURATION: Elapsed time (datetime.timedelta).
        ERROR: Source error code or a cell that failed to decode (ErrorType).
    """

    EMPTY = "empty"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    DATETIME = "datetime"
    DURATION = "duration"
    ERROR = "error"


class NumberFormatKind(Enum):
    """Semantic classification of a number format.

    Used to decide whether a numeric cell is a plain number, a calendar
    value or an elapsed time.
    """

    GENERAL = "general"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    DURATION = "duration"
    NUMERIC = "numeric"
    TEXT = "text"

    @property
    def is_temporal(self) -> bool:
        return self in (
            NumberFormatKind.DATE,
            NumberFormatKind.TIME,
            NumberFormatKind.DATETIME,
        )


class ErrorType(Enum):
    """Types of spreadsheet cell errors.

    Attributes:
        REF: Invalid cell reference (#REF!)
        NAME: Unrecognized formula name (#NAME?)
        VALUE: Wrong type of argument (#VALUE!)
        DIV: Division by zero (#DIV/0!)
        NULL: Incorrect range operator (#NULL!)
        NUM: Invalid numeric value (#NUM!)
        NA: Value not available (#N/A)
        CALC: Calculation error (#CALC!)
        SPILL: Spill range blocked (#SPILL!)
        GETTING_DATA: Data still loading (#GETTING_DATA)
        DECODE: The cell could not be decoded (bad shared-string index,
            unknown style, unrepresentable date serial, ...)
    """

    REF = "#REF!"
    NAME = "#NAME?"
    VALUE = "#VALUE!"
    DIV = "#DIV/0!"
    NULL = "#NULL!"
    NUM = "#NUM!"
    NA = "#N/A"
    CALC = "#CALC!"
    SPILL = "#SPILL!"
    GETTING_DATA = "#GETTING_DATA"
    DECODE = "#DECODE!"

    @classmethod
    def from_text(cls, text: str) -> ErrorType | None:
        """Look up an error by its display text, case-insensitively."""
        wanted = text.strip().upper()
        for member in cls:
            if member.value == wanted:
                return member
        return None


class DateEpoch(Enum):
    """Reference date for serial date numbers."""

    EXCEL_1900 = 1900
    EXCEL_1904 = 1904


# =============================================================================
# Cell values and rows
# =============================================================================


@dataclass(frozen=True)
class CellValue:
    """A single decoded cell.

    Attributes:
        kind: Which variant the value holds.
        value: The payload. None for EMPTY, ErrorType for ERROR,
            datetime for DATETIME, timedelta for DURATION.
        format_kind: Number format classification for temporal cells.

    Example:
        >>> CellValue.integer(3).to_python()
        3
        >>> CellValue.error(ErrorType.NA).to_python()
        '#N/A'
    """

    kind: CellKind
    value: Any = None
    format_kind: NumberFormatKind | None = None

    @classmethod
    def empty(cls) -> CellValue:
        return EMPTY

    @classmethod
    def boolean(cls, value: bool) -> CellValue:
        return cls(CellKind.BOOL, bool(value))

    @classmethod
    def integer(cls, value: int) -> CellValue:
        return cls(CellKind.INT, int(value))

    @classmethod
    def number(cls, value: float) -> CellValue:
        return cls(CellKind.FLOAT, float(value))

    @classmethod
    def string(cls, value: str) -> CellValue:
        return cls(CellKind.STRING, value)

    @classmethod
    def timestamp(
        cls,
        value: datetime,
        format_kind: NumberFormatKind = NumberFormatKind.DATETIME,
    ) -> CellValue:
        return cls(CellKind.DATETIME, value, format_kind)

    @classmethod
    def duration(cls, value: timedelta) -> CellValue:
        return cls(CellKind.DURATION, value, NumberFormatKind.DURATION)

    @classmethod
    def error(cls, error: ErrorType = ErrorType.DECODE) -> CellValue:
        return cls(CellKind.ERROR, error)

    @property
    def is_empty(self) -> bool:
        return self.kind is CellKind.EMPTY

    @property
    def is_error(self) -> bool:
        return self.kind is CellKind.ERROR

    def to_python(self) -> Any:
        """Plain Python value for this cell.

        DATETIME narrows to ``date`` for pure date formats and to ``time``
        for pure time formats. Errors become their display text.
        """
        if self.kind is CellKind.ERROR:
            return self.value.value
        if self.kind is CellKind.DATETIME:
            if self.format_kind is NumberFormatKind.DATE and self.value.time() == time(0):
                return self.value.date()
            if self.format_kind is NumberFormatKind.TIME:
                return self.value.time()
        return self.value


EMPTY = CellValue(CellKind.EMPTY)


@dataclass(frozen=True)
class Row:
    """One row of a sheet.

    Attributes:
        index: 0-based row number as found in the source. Successive rows
            from one cursor have strictly increasing indexes but may skip
            numbers when the source omits empty rows.
        cells: One CellValue per column, from column 0 up to the last
            non-empty cell.
    """

    index: int
    cells: tuple[CellValue, ...] = ()

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self) -> Iterator[CellValue]:
        return iter(self.cells)

    def __getitem__(self, col: int) -> CellValue:
        return self.cells[col]

    @property
    def is_empty(self) -> bool:
        return not self.cells

    def values(self) -> list[Any]:
        """Python values of all cells (see CellValue.to_python)."""
        return [cell.to_python() for cell in self.cells]


# =============================================================================
# Sheet and workbook metadata
# =============================================================================


@dataclass(frozen=True)
class Dimensions:
    """Declared extent of a sheet, 0-based and inclusive.

    Attributes:
        start: (row, col) of the top-left cell.
        end: (row, col) of the bottom-right cell.
    """

    start: tuple[int, int]
    end: tuple[int, int]

    @property
    def height(self) -> int:
        return self.end[0] - self.start[0] + 1

    @property
    def width(self) -> int:
        return self.end[1] - self.start[1] + 1

    @property
    def ref(self) -> str:
        return _range_ref(self.start, self.end)


@dataclass(frozen=True)
class SheetMetadata:
    """Information about one sheet.

    Attributes:
        name: Sheet name as shown on the tab (unique within the workbook).
        index: 0-based position in the workbook.
        visibility: Whether the sheet is visible, hidden, or very hidden.
        sheet_type: Worksheet, chartsheet, ...
        dimension: Declared extent, or None when the source declares none.
    """

    name: str
    index: int
    visibility: SheetVisibility = SheetVisibility.VISIBLE
    sheet_type: SheetType = SheetType.WORKSHEET
    dimension: Dimensions | None = None


@dataclass(frozen=True)
class MergedRange:
    """A merged cell area, 0-based and inclusive.

    Example:
        >>> MergedRange(start=(0, 3), end=(1, 4)).ref
        'D1:E2'
    """

    start: tuple[int, int]
    end: tuple[int, int]

    @property
    def ref(self) -> str:
        return _range_ref(self.start, self.end)


@dataclass(frozen=True)
class DefinedName:
    """A named range or named formula.

    Attributes:
        name: The defined name.
        reference: Range reference or formula text (e.g. "Sheet1!$A$1:$B$2").
        scope: Sheet name if local scope, None if global.
        hidden: Whether the name is hidden from the UI.
    """

    name: str
    reference: str
    scope: str | None = None
    hidden: bool = False


@dataclass
class DecodeWarning:
    """A non-fatal problem found while decoding.

    Attributes:
        scope: Where it happened ("shared_strings", "styles", "sheet:Data").
        message: Human-readable warning message.
        row: 0-based row of the affected cell, if any.
        col: 0-based column of the affected cell, if any.
        details: Additional details.
    """

    scope: str
    message: str
    row: int | None = None
    col: int | None = None
    details: str | None = None


@dataclass
class WorkbookMetadata:
    """Everything the header phase learns about a workbook.

    Attributes:
        format: Source container format.
        sheets: Sheets in workbook order.
        defined_names: Workbook and sheet scoped names.
        epoch: Date epoch used for serial dates.
        merged: Merged ranges per sheet index, filled on first request.
    """

    format: FormatKind
    sheets: list[SheetMetadata] = field(default_factory=list)
    defined_names: list[DefinedName] = field(default_factory=list)
    epoch: DateEpoch = DateEpoch.EXCEL_1900
    merged: dict[int, tuple[MergedRange, ...]] = field(default_factory=dict)

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]


def _range_ref(start: tuple[int, int], end: tuple[int, int]) -> str:
    first = f"{get_column_letter(start[1] + 1)}{start[0] + 1}"
    last = f"{get_column_letter(end[1] + 1)}{end[0] + 1}"
    return first if first == last else f"{first}:{last}"
