"""OOXML workbook decoder for ``.xlsx`` and ``.xlsm`` packages.

Workbook, styles and shared strings are parsed during the header phase.
Sheet parts are streamed with ``lxml.etree.iterparse``: each ``row``
element is decoded when it closes and then cleared, so memory stays flat
however large the sheet is.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterator

from lxml import etree
from openpyxl.utils.cell import coordinate_to_tuple, range_boundaries
from openpyxl.utils.datetime import from_ISO8601
from openpyxl.utils.escape import unescape
from openpyxl.utils.exceptions import CellCoordinatesException

from ..cells import EPOCH_ORIGINS, parse_number
from ..containers.archive import ZIP_READ_ERRORS
from ..errors import MalformedContainerError, SheetTruncatedError, XmlError, ZipError
from ..models import (
    CellValue,
    DateEpoch,
    DefinedName,
    Dimensions,
    ErrorType,
    FormatKind,
    MergedRange,
    NumberFormatKind,
    Row,
    SheetMetadata,
    SheetType,
    SheetVisibility,
)
from ..tables import TablesBuilder
from .base import BaseDecoder, make_row
from .package import (
    SHEET_RELATIONSHIPS,
    find_workbook_part,
    local_name,
    parse_xml,
    read_relationships,
    related_part,
)

logger = logging.getLogger(__name__)

NAMESPACES = (
    "http://schemas.openxmlformats.org/spreadsheetml/2006/main",
    "http://purl.oclc.org/ooxml/spreadsheetml/main",
)
NS_REL = (
    "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
    "http://purl.oclc.org/ooxml/officeDocument/relationships",
)

VISIBILITY = {
    "visible": SheetVisibility.VISIBLE,
    "hidden": SheetVisibility.HIDDEN,
    "veryHidden": SheetVisibility.VERY_HIDDEN,
}
TRUE_VALUES = ("1", "true")


def tags(name: str) -> tuple[str, ...]:
    """Clark names of a SpreadsheetML element in both namespaces."""
    return tuple(f"{{{ns}}}{name}" for ns in NAMESPACES)


def rel_id(element: etree._Element) -> str | None:
    for ns in NS_REL:
        value = element.get(f"{{{ns}}}id")
        if value is not None:
            return value
    return None


def _children(element: etree._Element, name: str) -> list[etree._Element]:
    return [child for child in element if local_name(child) == name]


def _child(element: etree._Element, name: str) -> etree._Element | None:
    for child in element:
        if local_name(child) == name:
            return child
    return None


def rich_text(element: etree._Element) -> str:
    """Text of a string item (``si`` or ``is``), ignoring phonetic runs."""
    parts = []
    for node in element.iter(*tags("t")):
        parent = node.getparent()
        if parent is not None and local_name(parent) == "rPh":
            continue
        parts.append(node.text or "")
    return unescape("".join(parts))


def _release(element: etree._Element) -> None:
    """Free an element handled by iterparse and the siblings before it."""
    element.clear()
    parent = element.getparent()
    if parent is not None:
        while element.getprevious() is not None:
            del parent[0]


class XlsxDecoder(BaseDecoder):
    """Decoder for OOXML XML workbooks."""

    format = FormatKind.XLSX

    def _parse_header(self) -> None:
        workbook_part = find_workbook_part(self.container, "xl/workbook.xml")
        root = parse_xml(self.container.read_entry(workbook_part), workbook_part)
        relationships = read_relationships(self.container, workbook_part)
        builder = TablesBuilder(self.warnings)

        properties = next(root.iter(*tags("workbookPr")), None)
        if properties is not None and properties.get("date1904", "").lower() in TRUE_VALUES:
            builder.set_epoch(DateEpoch.EXCEL_1904)

        self._parts: list[str] = []
        for index, element in enumerate(root.iter(*tags("sheet"))):
            name = element.get("name")
            rid = rel_id(element)
            rel = relationships.get(rid) if rid else None
            if name is None or rel is None:
                raise MalformedContainerError(
                    f"Sheet {index} ({name!r}) has no part relationship",
                    details={"relationship": rid},
                )
            self._parts.append(rel.target)
            self.metadata.sheets.append(SheetMetadata(
                name=name,
                index=index,
                visibility=VISIBILITY.get(element.get("state", "visible"), SheetVisibility.HIDDEN),
                sheet_type=SHEET_RELATIONSHIPS.get(rel.kind, SheetType.WORKSHEET),
            ))

        sheet_names = self.metadata.sheet_names
        for element in root.iter(*tags("definedName")):
            local = element.get("localSheetId")
            scope = None
            if local is not None and local.isdigit() and int(local) < len(sheet_names):
                scope = sheet_names[int(local)]
            self.metadata.defined_names.append(DefinedName(
                name=element.get("name", ""),
                reference=element.text or "",
                scope=scope,
                hidden=element.get("hidden", "").lower() in TRUE_VALUES,
            ))

        styles = related_part(self.container, relationships, "styles", "xl/styles.xml")
        if styles is not None:
            self._read_styles(styles, builder)
        strings = related_part(self.container, relationships, "sharedStrings", "xl/sharedStrings.xml")
        if strings is not None:
            self._read_shared_strings(strings, builder)
        self.tables = builder.build(strict_count=False)

    def _read_styles(self, part: str, builder: TablesBuilder) -> None:
        root = parse_xml(self.container.read_entry(part), part)
        for element in root.iter(*tags("numFmt")):
            try:
                format_id = int(element.get("numFmtId", ""))
            except ValueError:
                self._warn("number_formats", f"numFmt with id {element.get('numFmtId')!r} skipped")
                continue
            builder.add_format(format_id, element.get("formatCode"))

        cell_xfs = next(root.iter(*tags("cellXfs")), None)
        if cell_xfs is None:
            return
        for xf in _children(cell_xfs, "xf"):
            try:
                builder.add_style(int(xf.get("numFmtId", "0")))
            except ValueError:
                self._warn("styles", f"Cell style with numFmtId {xf.get('numFmtId')!r} has no format")
                builder.add_style(-1)

    def _read_shared_strings(self, part: str, builder: TablesBuilder) -> None:
        stream = self.container.open_entry(part)
        try:
            for event, element in etree.iterparse(
                stream,
                events=("start", "end"),
                tag=tags("sst") + tags("si"),
                resolve_entities=False,
                huge_tree=True,
            ):
                if local_name(element) == "sst":
                    if event == "start" and element.get("uniqueCount", "").isdigit():
                        builder.declare_string_count(int(element.get("uniqueCount")))
                    continue
                if event == "end":
                    builder.add_string(rich_text(element))
                    _release(element)
        except etree.XMLSyntaxError as exc:
            raise XmlError(f"{part} is not well formed: {exc}", details={"entry": part}) from exc
        except ZIP_READ_ERRORS as exc:
            raise ZipError(f"Could not read {part}: {exc}", details={"entry": part}) from exc
        finally:
            stream.close()

    # -- sheets -------------------------------------------------------------

    def _scan(self, sheet: SheetMetadata, names: tuple[str, ...], events=("end",)):
        """iterparse over a sheet part, restricted to some element names."""
        stream = self.container.open_entry(self._parts[sheet.index])
        try:
            yield from etree.iterparse(
                stream,
                events=events,
                tag=tuple(tag for name in names for tag in tags(name)),
                resolve_entities=False,
                huge_tree=True,
            )
        finally:
            stream.close()

    def read_dimension(self, sheet: SheetMetadata) -> Dimensions | None:
        scan = self._scan(sheet, ("dimension", "sheetData"), events=("start",))
        try:
            for _, element in scan:
                if local_name(element) != "dimension":
                    return None
                min_col, min_row, max_col, max_row = range_boundaries(element.get("ref", ""))
                if None in (min_col, min_row, max_col, max_row):
                    return None
                return Dimensions(start=(min_row - 1, min_col - 1), end=(max_row - 1, max_col - 1))
        except (etree.XMLSyntaxError, ValueError, ZipError) + ZIP_READ_ERRORS as exc:
            self._warn(f"sheet:{sheet.name}", f"Dimension unreadable: {exc}")
        finally:
            scan.close()
        return None

    def read_merged_ranges(self, sheet: SheetMetadata) -> list[MergedRange]:
        ranges: list[MergedRange] = []
        try:
            for _, element in self._scan(sheet, ("mergeCell", "row")):
                if local_name(element) == "row":
                    _release(element)
                    continue
                try:
                    min_col, min_row, max_col, max_row = range_boundaries(element.get("ref", ""))
                except ValueError:
                    self._warn(f"sheet:{sheet.name}", f"Merged range {element.get('ref')!r} skipped")
                    continue
                ranges.append(MergedRange(start=(min_row - 1, min_col - 1), end=(max_row - 1, max_col - 1)))
        except (etree.XMLSyntaxError, ZipError) + ZIP_READ_ERRORS as exc:
            self._warn(f"sheet:{sheet.name}", f"Merged ranges incomplete: {exc}")
        return ranges

    def _iter_rows(self, sheet: SheetMetadata) -> Iterator[Row]:
        last_row = -1
        try:
            for _, element in self._scan(sheet, ("row",)):
                index = self._row_index(element, last_row, sheet)
                cells: dict[int, CellValue] = {}
                col = -1
                for cell in _children(element, "c"):
                    col = self._cell_column(cell, index, col, sheet)
                    cells[col] = self._cell_value(cell, sheet, index, col)
                _release(element)
                last_row = index
                row = make_row(index, cells)
                if row is not None:
                    yield row
        except (etree.XMLSyntaxError, ZipError) + ZIP_READ_ERRORS as exc:
            raise SheetTruncatedError(
                sheet.name, str(exc), last_row if last_row >= 0 else None
            ) from exc

    def _row_index(self, element: etree._Element, last_row: int, sheet: SheetMetadata) -> int:
        number = element.get("r")
        if number is None:
            return last_row + 1
        try:
            return int(number) - 1
        except ValueError:
            self._warn(f"sheet:{sheet.name}", f"Row number {number!r} invalid; using position")
            return last_row + 1

    def _cell_column(self, cell: etree._Element, row: int, last_col: int, sheet: SheetMetadata) -> int:
        ref = cell.get("r")
        if ref is None:
            return last_col + 1
        try:
            ref_row, ref_col = coordinate_to_tuple(ref)
        except (CellCoordinatesException, ValueError):
            self._warn(f"sheet:{sheet.name}", f"Cell reference {ref!r} invalid; using position", row)
            return last_col + 1
        if ref_row - 1 != row:
            self._warn(f"sheet:{sheet.name}", f"Cell {ref} listed under row {row + 1}", row, ref_col - 1)
        return ref_col - 1

    def _cell_value(self, cell: etree._Element, sheet: SheetMetadata, row: int, col: int) -> CellValue:
        kind = cell.get("t", "n")
        if kind == "inlineStr":
            inline = _child(cell, "is")
            return CellValue.string(rich_text(inline)) if inline is not None else CellValue.empty()

        value = _child(cell, "v")
        text = value.text if value is not None else None
        if text is None:
            return CellValue.string("") if kind == "str" and value is not None else CellValue.empty()

        scope = f"sheet:{sheet.name}"
        if kind == "s":
            try:
                index = int(text)
            except ValueError:
                self._warn(scope, f"Shared string index {text!r} invalid", row, col)
                return CellValue.error()
            return self._shared_string(index, sheet, row, col)
        if kind == "str":
            return CellValue.string(unescape(text))
        if kind == "b":
            return CellValue.boolean(text.strip().lower() in TRUE_VALUES)
        if kind == "e":
            error = ErrorType.from_text(text)
            if error is None:
                self._warn(scope, f"Unknown error value {text!r}", row, col)
                error = ErrorType.DECODE
            return CellValue.error(error)
        if kind == "d":
            return self._iso_value(text, sheet, row, col)

        try:
            number = parse_number(text, self.options.int_inference)
        except ValueError:
            self._warn(scope, f"Numeric value {text!r} invalid", row, col)
            return CellValue.error()
        try:
            style = int(cell.get("s", "0"))
        except ValueError:
            style = -1
        return self._numeric(number, style, sheet, row, col)

    def _iso_value(self, text: str, sheet: SheetMetadata, row: int, col: int) -> CellValue:
        try:
            value = from_ISO8601(text.strip())
        except (ValueError, KeyError, TypeError):
            value = None
        if value is None:
            self._warn(f"sheet:{sheet.name}", f"Date value {text!r} invalid", row, col)
            return CellValue.error()
        if isinstance(value, timedelta):
            return CellValue.duration(value)
        if isinstance(value, datetime):
            return CellValue.timestamp(value.replace(tzinfo=None))
        if isinstance(value, date):
            return CellValue.timestamp(datetime.combine(value, time(0)), NumberFormatKind.DATE)
        origin = EPOCH_ORIGINS[self.tables.epoch].date()
        return CellValue.timestamp(datetime.combine(origin, value), NumberFormatKind.TIME)
