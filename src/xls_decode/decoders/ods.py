"""OpenDocument spreadsheet decoder.

All sheets of an ``.ods`` package live in ``content.xml``. A cursor
streams that part from the start with ``lxml.etree.iterparse``, skips the
tables before its own and decodes rows as they close. Repeated rows and
columns (``number-rows-repeated``, ``number-columns-repeated``) are
expanded lazily; empty repeats are only counted, never materialized.
"""

from __future__ import annotations

import logging
import re
from contextlib import closing
from datetime import date, datetime, time, timedelta
from typing import Iterator

from lxml import etree
from openpyxl.utils.datetime import from_ISO8601

from ..cells import parse_number
from ..containers.archive import ZIP_READ_ERRORS
from ..errors import SheetTruncatedError, XmlError, ZipError
from ..models import (
    EMPTY,
    CellValue,
    DefinedName,
    ErrorType,
    FormatKind,
    MergedRange,
    NumberFormatKind,
    Row,
    SheetMetadata,
    SheetVisibility,
)
from .base import BaseDecoder
from .formula import quote_sheet

logger = logging.getLogger(__name__)

NS_OFFICE = "urn:oasis:names:tc:opendocument:xmlns:office:1.0"
NS_TABLE = "urn:oasis:names:tc:opendocument:xmlns:table:1.0"
NS_TEXT = "urn:oasis:names:tc:opendocument:xmlns:text:1.0"
NS_STYLE = "urn:oasis:names:tc:opendocument:xmlns:style:1.0"
NS_CALCEXT = "urn:org:documentfoundation:names:experimental:calc:xmlns:calcext:1.0"

CONTENT_PART = "content.xml"

TABLE = f"{{{NS_TABLE}}}table"
ROW = f"{{{NS_TABLE}}}table-row"
CELL = f"{{{NS_TABLE}}}table-cell"
COVERED_CELL = f"{{{NS_TABLE}}}covered-table-cell"
NAMED_RANGE = f"{{{NS_TABLE}}}named-range"
NAMED_EXPRESSION = f"{{{NS_TABLE}}}named-expression"
STYLE = f"{{{NS_STYLE}}}style"
TABLE_PROPERTIES = f"{{{NS_STYLE}}}table-properties"
PARAGRAPH = f"{{{NS_TEXT}}}p"
SPACE = f"{{{NS_TEXT}}}s"
TAB = f"{{{NS_TEXT}}}tab"
LINE_BREAK = f"{{{NS_TEXT}}}line-break"
ANNOTATION = f"{{{NS_OFFICE}}}annotation"

ROWS_REPEATED = f"{{{NS_TABLE}}}number-rows-repeated"
COLUMNS_REPEATED = f"{{{NS_TABLE}}}number-columns-repeated"
ROWS_SPANNED = f"{{{NS_TABLE}}}number-rows-spanned"
COLUMNS_SPANNED = f"{{{NS_TABLE}}}number-columns-spanned"
VALUE_TYPE = f"{{{NS_OFFICE}}}value-type"
CALC_VALUE_TYPE = f"{{{NS_CALCEXT}}}value-type"

# PnDTnHnMnS; years and months have no fixed length and are rejected
ISO_DURATION_RE = re.compile(
    r"^(?P<sign>-)?P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


def parse_duration(text: str) -> timedelta:
    """Parse an ISO 8601 duration such as ``PT36H15M00S``.

    Raises:
        ValueError: If the text is not a day/time duration.
    """
    match = ISO_DURATION_RE.match(text.strip())
    if match is None or not any(match.group(k) for k in ("days", "hours", "minutes", "seconds")):
        raise ValueError(f"invalid duration {text!r}")
    value = timedelta(**{
        key: float(match.group(key) or 0) for key in ("days", "hours", "minutes", "seconds")
    })
    return -value if match.group("sign") else value


def paragraph_text(element: etree._Element) -> str:
    """Text content of a ``text:p`` with spaces, tabs and breaks expanded."""
    parts = [element.text or ""]
    for child in element:
        if child.tag == SPACE:
            parts.append(" " * int(child.get(f"{{{NS_TEXT}}}c", "1")))
        elif child.tag == TAB:
            parts.append("\t")
        elif child.tag == LINE_BREAK:
            parts.append("\n")
        elif child.tag != ANNOTATION and isinstance(child.tag, str):
            parts.append(paragraph_text(child))
        parts.append(child.tail or "")
    return "".join(parts)


def cell_range_address(address: str) -> str:
    """Convert ``$Sheet1.$A$1:.$B$2`` to ``Sheet1!$A$1:$B$2``."""
    refs = []
    first_sheet = None
    for part in _split_outside_quotes(address, ":"):
        name, _, cell = part.rpartition(".")
        name = name.lstrip("$")
        if len(name) > 1 and name.startswith("'") and name.endswith("'"):
            name = name[1:-1].replace("''", "'")
        if first_sheet is None:
            first_sheet = name
            refs.append(f"{quote_sheet(name)}!{cell}" if name else cell)
        elif name and name != first_sheet:
            refs.append(f"{quote_sheet(name)}!{cell}")
        else:
            refs.append(cell)
    return ":".join(refs)


def _split_outside_quotes(text: str, separator: str) -> list[str]:
    parts, current, quoted = [], [], False
    for char in text:
        if char == "'":
            quoted = not quoted
        if char == separator and not quoted:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def _release(element: etree._Element) -> None:
    element.clear()
    parent = element.getparent()
    if parent is not None:
        while element.getprevious() is not None:
            del parent[0]


class OdsDecoder(BaseDecoder):
    """Decoder for OpenDocument spreadsheets."""

    format = FormatKind.ODS

    def _content(self, events: tuple[str, ...], tags: tuple[str, ...]):
        stream = self.container.open_entry(CONTENT_PART)
        try:
            yield from etree.iterparse(
                stream,
                events=events,
                tag=tags,
                resolve_entities=False,
                huge_tree=True,
            )
        finally:
            stream.close()

    def _parse_header(self) -> None:
        hidden_styles: set[str] = set()
        table_name = None
        sheets = self.metadata.sheets
        try:
            with closing(self._content(
                ("start", "end"), (STYLE, TABLE, ROW, NAMED_RANGE, NAMED_EXPRESSION)
            )) as events:
                for event, element in events:
                    if element.tag == TABLE:
                        if event == "start":
                            table_name = element.get(f"{{{NS_TABLE}}}name") or f"Sheet{len(sheets) + 1}"
                            hidden = element.get(f"{{{NS_TABLE}}}style-name") in hidden_styles
                            sheets.append(SheetMetadata(
                                name=table_name,
                                index=len(sheets),
                                visibility=SheetVisibility.HIDDEN if hidden else SheetVisibility.VISIBLE,
                            ))
                        else:
                            table_name = None
                            _release(element)
                        continue
                    if event == "start":
                        continue
                    if element.tag == STYLE:
                        properties = element.find(TABLE_PROPERTIES)
                        if properties is not None and properties.get(f"{{{NS_TABLE}}}display") == "false":
                            hidden_styles.add(element.get(f"{{{NS_STYLE}}}name"))
                    elif element.tag == ROW:
                        _release(element)
                    elif element.tag == NAMED_RANGE:
                        address = element.get(f"{{{NS_TABLE}}}cell-range-address", "")
                        self.metadata.defined_names.append(DefinedName(
                            name=element.get(f"{{{NS_TABLE}}}name", ""),
                            reference=cell_range_address(address),
                            scope=table_name,
                        ))
                    elif element.tag == NAMED_EXPRESSION:
                        expression = element.get(f"{{{NS_TABLE}}}expression", "")
                        if expression.startswith("of:"):
                            expression = expression[3:]
                        expression = expression.removeprefix("=")
                        self.metadata.defined_names.append(DefinedName(
                            name=element.get(f"{{{NS_TABLE}}}name", ""),
                            reference=expression,
                            scope=table_name,
                        ))
        except etree.XMLSyntaxError as exc:
            raise XmlError(f"{CONTENT_PART} is not well formed: {exc}", details={"entry": CONTENT_PART}) from exc
        except ZIP_READ_ERRORS as exc:
            raise ZipError(f"Could not read {CONTENT_PART}: {exc}", details={"entry": CONTENT_PART}) from exc

    # -- sheets -------------------------------------------------------------

    def _table_rows(self, sheet: SheetMetadata) -> Iterator[tuple[int, int, etree._Element]]:
        """(first row index, repeat count, row element) for each row of a sheet.

        The element is only valid until the next item is requested.
        """
        table_index = -1
        inside = False
        row_index = 0
        with closing(self._content(("start", "end"), (TABLE, ROW))) as events:
            for event, element in events:
                if element.tag == TABLE:
                    if event == "start":
                        table_index += 1
                        inside = table_index == sheet.index
                    elif inside:
                        return
                    else:
                        _release(element)
                elif event == "end":
                    if inside:
                        repeat = self._repeat(element, ROWS_REPEATED, sheet, row_index)
                        yield row_index, repeat, element
                        row_index += repeat
                    _release(element)

    def _repeat(self, element: etree._Element, attribute: str, sheet: SheetMetadata, row: int) -> int:
        value = element.get(attribute)
        if value is None:
            return 1
        try:
            count = int(value)
        except ValueError:
            count = 0
        if count < 1:
            self._warn(f"sheet:{sheet.name}", f"Repeat count {value!r} invalid; using 1", row)
            return 1
        return count

    def read_merged_ranges(self, sheet: SheetMetadata) -> list[MergedRange]:
        ranges: list[MergedRange] = []
        rows = self._table_rows(sheet)
        try:
            for row_index, row_repeat, element in rows:
                col = 0
                for cell in element:
                    if cell.tag not in (CELL, COVERED_CELL):
                        continue
                    col_repeat = self._repeat(cell, COLUMNS_REPEATED, sheet, row_index)
                    height = int(cell.get(ROWS_SPANNED, "1"))
                    width = int(cell.get(COLUMNS_SPANNED, "1"))
                    if cell.tag == CELL and (height > 1 or width > 1):
                        for r in range(row_index, row_index + row_repeat):
                            for c in range(col, col + col_repeat):
                                ranges.append(MergedRange(start=(r, c), end=(r + height - 1, c + width - 1)))
                    col += col_repeat
        except (etree.XMLSyntaxError, ZipError, ValueError) + ZIP_READ_ERRORS as exc:
            self._warn(f"sheet:{sheet.name}", f"Merged ranges incomplete: {exc}")
        finally:
            rows.close()
        return ranges

    def _iter_rows(self, sheet: SheetMetadata) -> Iterator[Row]:
        last_row = None
        rows = self._table_rows(sheet)
        try:
            for row_index, repeat, element in rows:
                cells = self._row_cells(element, sheet, row_index)
                if not cells:
                    continue
                for offset in range(repeat):
                    last_row = row_index + offset
                    yield Row(last_row, cells)
        except (etree.XMLSyntaxError, ZipError) + ZIP_READ_ERRORS as exc:
            raise SheetTruncatedError(sheet.name, str(exc), last_row) from exc
        finally:
            rows.close()

    def _row_cells(self, row: etree._Element, sheet: SheetMetadata, row_index: int) -> tuple[CellValue, ...]:
        """Cells of a row up to its last value; trailing empties are dropped."""
        cells: list[CellValue] = []
        pending = 0
        for cell in row:
            if cell.tag not in (CELL, COVERED_CELL):
                continue
            repeat = self._repeat(cell, COLUMNS_REPEATED, sheet, row_index)
            value = self._cell_value(cell, sheet, row_index, len(cells) + pending)
            if value.is_empty:
                pending += repeat
                continue
            cells.extend([EMPTY] * pending)
            pending = 0
            cells.extend([value] * repeat)
        return tuple(cells)

    def _cell_value(self, cell: etree._Element, sheet: SheetMetadata, row: int, col: int) -> CellValue:
        value_type = cell.get(VALUE_TYPE)
        if value_type is None or value_type == "void":
            return EMPTY
        scope = f"sheet:{sheet.name}"
        try:
            if cell.get(CALC_VALUE_TYPE) == "error":
                text = self._cell_text(cell)
                error = ErrorType.from_text(text)
                if error is None:
                    self._warn(scope, f"Unknown error value {text!r}", row, col)
                    error = ErrorType.DECODE
                return CellValue.error(error)
            if value_type in ("float", "percentage", "currency"):
                number = parse_number(cell.get(f"{{{NS_OFFICE}}}value", ""), self.options.int_inference)
                return CellValue.integer(number) if isinstance(number, int) else CellValue.number(number)
            if value_type == "date":
                return self._date_value(cell.get(f"{{{NS_OFFICE}}}date-value", ""))
            if value_type == "time":
                return CellValue.duration(parse_duration(cell.get(f"{{{NS_OFFICE}}}time-value", "")))
            if value_type == "boolean":
                return CellValue.boolean(cell.get(f"{{{NS_OFFICE}}}boolean-value", "").lower() in ("true", "1"))
            if value_type == "string":
                text = cell.get(f"{{{NS_OFFICE}}}string-value")
                return CellValue.string(text if text is not None else self._cell_text(cell))
        except (ValueError, KeyError, TypeError) as exc:
            self._warn(scope, f"Cell value invalid: {exc}", row, col)
            return CellValue.error()
        self._warn(scope, f"Unknown value type {value_type!r}", row, col)
        return CellValue.error()

    @staticmethod
    def _cell_text(cell: etree._Element) -> str:
        return "\n".join(paragraph_text(p) for p in cell.findall(PARAGRAPH))

    @staticmethod
    def _date_value(text: str) -> CellValue:
        value = from_ISO8601(text.strip())
        if isinstance(value, datetime):
            if "T" not in text:
                return CellValue.timestamp(value, NumberFormatKind.DATE)
            return CellValue.timestamp(value.replace(tzinfo=None))
        if isinstance(value, date):
            return CellValue.timestamp(datetime.combine(value, time(0)), NumberFormatKind.DATE)
        raise ValueError(f"invalid date {text!r}")
