"""OOXML binary workbook decoder for ``.xlsb`` packages.

The package layout is the same as xlsx (relationships, one part per
sheet) but every part is a stream of binary records instead of XML.
"""

from __future__ import annotations

import logging
import struct
from contextlib import closing
from typing import Iterator

from ..cells import ERROR_CODES, decode_rk
from ..containers import XlsbRecordStream
from ..containers.records import RecordTruncatedError
from ..errors import MalformedContainerError, SheetTruncatedError, ZipError
from ..models import (
    CellValue,
    DateEpoch,
    DefinedName,
    Dimensions,
    ErrorType,
    FormatKind,
    MergedRange,
    Row,
    SheetMetadata,
    SheetType,
    SheetVisibility,
)
from ..tables import TablesBuilder
from .base import BaseDecoder, make_row
from .formula import XLSB, FormulaError, render_name_formula
from .package import SHEET_RELATIONSHIPS, find_workbook_part, read_relationships, related_part

logger = logging.getLogger(__name__)

# Workbook part
BRT_NAME = 0x27
BRT_BEGIN_BOOK = 0x83
BRT_END_BOOK = 0x84
BRT_WB_PROP = 0x99
BRT_BUNDLE_SH = 0x9C
BRT_EXTERN_SHEET = 0x16A

# Shared strings part
BRT_SST_ITEM = 0x13
BRT_BEGIN_SST = 0x9F
BRT_END_SST = 0xA0

# Styles part
BRT_FMT = 0x2C
BRT_XF = 0x2F
BRT_BEGIN_CELL_XFS = 0x269
BRT_END_CELL_XFS = 0x26A

# Sheet parts
BRT_ROW_HDR = 0x00
BRT_CELL_BLANK = 0x01
BRT_CELL_RK = 0x02
BRT_CELL_ERROR = 0x03
BRT_CELL_BOOL = 0x04
BRT_CELL_REAL = 0x05
BRT_CELL_ST = 0x06
BRT_CELL_ISST = 0x07
BRT_FMLA_STRING = 0x08
BRT_FMLA_NUM = 0x09
BRT_FMLA_BOOL = 0x0A
BRT_FMLA_ERROR = 0x0B
BRT_BEGIN_SHEET_DATA = 0x91
BRT_END_SHEET_DATA = 0x92
BRT_WS_DIM = 0x94
BRT_MERGE_CELL = 0xB0

CELL_RECORDS = range(BRT_CELL_BLANK, BRT_FMLA_ERROR + 1)

NULL_STRING = 0xFFFFFFFF
WORKBOOK_SCOPE = 0xFFFFFFFF

VISIBILITY = {
    0: SheetVisibility.VISIBLE,
    1: SheetVisibility.HIDDEN,
    2: SheetVisibility.VERY_HIDDEN,
}


def wide_string(data: bytes, pos: int) -> tuple[str | None, int]:
    """Read an XLWideString (u32 length + UTF-16); None for a null string.

    Raises:
        ValueError: If the characters are cut short.
    """
    (nchars,) = struct.unpack_from("<I", data, pos)
    pos += 4
    if nchars == NULL_STRING:
        return None, pos
    end = pos + 2 * nchars
    if end > len(data):
        raise ValueError(f"string needs {2 * nchars} bytes, {len(data) - pos} available")
    return data[pos:end].decode("utf_16_le"), end


class XlsbDecoder(BaseDecoder):
    """Decoder for OOXML binary workbooks."""

    format = FormatKind.XLSB

    def _records(self, part: str) -> Iterator[tuple[int, bytes]]:
        stream = XlsbRecordStream(self.container.open_entry(part))
        try:
            yield from stream
        finally:
            stream.close()

    def _parse_header(self) -> None:
        workbook_part = find_workbook_part(self.container, "xl/workbook.bin")
        relationships = read_relationships(self.container, workbook_part)
        builder = TablesBuilder(self.warnings)
        names: list[bytes] = []
        self._extern: list[tuple[int, int, int]] = []
        self._parts: list[str] = []

        with closing(self._records(workbook_part)) as records:
            for rtype, data in records:
                if rtype == BRT_WB_PROP:
                    (flags,) = struct.unpack_from("<I", data)
                    if flags & 0x01:
                        builder.set_epoch(DateEpoch.EXCEL_1904)
                elif rtype == BRT_BUNDLE_SH:
                    self._add_sheet(data, relationships)
                elif rtype == BRT_NAME:
                    names.append(data)
                elif rtype == BRT_EXTERN_SHEET:
                    (count,) = struct.unpack_from("<I", data)
                    self._extern = [struct.unpack_from("<iii", data, 4 + 12 * i) for i in range(count)]
                elif rtype == BRT_END_BOOK:
                    break

        for data in names:
            name = self._parse_name(data)
            if name is not None:
                self.metadata.defined_names.append(name)

        styles = related_part(self.container, relationships, "styles", "xl/styles.bin")
        if styles is not None:
            self._read_styles(styles, builder)
        strings = related_part(self.container, relationships, "sharedStrings", "xl/sharedStrings.bin")
        if strings is not None:
            self._read_shared_strings(strings, builder)
        self.tables = builder.build()

    def _add_sheet(self, data: bytes, relationships) -> None:
        state, _tab_id = struct.unpack_from("<II", data)
        rid, pos = wide_string(data, 8)
        name, _ = wide_string(data, pos)
        rel = relationships.get(rid) if rid else None
        if name is None or rel is None:
            raise MalformedContainerError(
                f"Sheet {len(self._parts)} ({name!r}) has no part relationship",
                details={"relationship": rid},
            )
        self.metadata.sheets.append(SheetMetadata(
            name=name,
            index=len(self._parts),
            visibility=VISIBILITY.get(state, SheetVisibility.HIDDEN),
            sheet_type=SHEET_RELATIONSHIPS.get(rel.kind, SheetType.WORKSHEET),
        ))
        self._parts.append(rel.target)

    def _parse_name(self, data: bytes) -> DefinedName | None:
        sheet_names = self.metadata.sheet_names
        try:
            flags, _key, itab = struct.unpack_from("<IBI", data)
            name, pos = wide_string(data, 9)
            (size,) = struct.unpack_from("<I", data, pos)
            rgce = data[pos + 4:pos + 4 + size]
        except (struct.error, ValueError, UnicodeDecodeError) as exc:
            self._warn("defined_names", f"BrtName record skipped: {exc}")
            return None
        scope = sheet_names[itab] if itab != WORKBOOK_SCOPE and itab < len(sheet_names) else None

        def sheet_span(ixti: int) -> str | None:
            if not 0 <= ixti < len(self._extern):
                return None
            _book, first, last = self._extern[ixti]
            if not (0 <= first < len(sheet_names) and 0 <= last < len(sheet_names)):
                return None
            return sheet_names[first] if first == last else f"{sheet_names[first]}:{sheet_names[last]}"

        try:
            reference = render_name_formula(rgce, sheet_span, XLSB)
        except FormulaError as exc:
            self._warn("defined_names", f"Name {name!r} skipped: {exc}")
            return None
        return DefinedName(name or "", reference, scope, bool(flags & 0x01))

    def _read_styles(self, part: str, builder: TablesBuilder) -> None:
        in_cell_xfs = False
        for rtype, data in self._records(part):
            if rtype == BRT_FMT:
                try:
                    (format_id,) = struct.unpack_from("<H", data)
                    code, _ = wide_string(data, 2)
                except (struct.error, ValueError, UnicodeDecodeError) as exc:
                    self._warn("number_formats", f"BrtFmt record skipped: {exc}")
                    continue
                builder.add_format(format_id, code)
            elif rtype == BRT_BEGIN_CELL_XFS:
                in_cell_xfs = True
            elif rtype == BRT_END_CELL_XFS:
                in_cell_xfs = False
            elif rtype == BRT_XF and in_cell_xfs:
                if len(data) >= 4:
                    builder.add_style(struct.unpack_from("<H", data, 2)[0])
                else:
                    self._warn("styles", "BrtXF record too short; style has no format")
                    builder.add_style(-1)

    def _read_shared_strings(self, part: str, builder: TablesBuilder) -> None:
        with closing(self._records(part)) as records:
            for rtype, data in records:
                if rtype == BRT_BEGIN_SST:
                    _total, unique = struct.unpack_from("<ii", data)
                    builder.declare_string_count(unique)
                elif rtype == BRT_SST_ITEM:
                    try:
                        text, _ = wide_string(data, 1)
                    except (struct.error, ValueError, UnicodeDecodeError) as exc:
                        builder.add_malformed_string(str(exc))
                        continue
                    builder.add_string(text or "")
                elif rtype == BRT_END_SST:
                    break

    # -- sheets -------------------------------------------------------------

    def read_dimension(self, sheet: SheetMetadata) -> Dimensions | None:
        try:
            with closing(self._records(self._parts[sheet.index])) as records:
                for rtype, data in records:
                    if rtype == BRT_WS_DIM:
                        r1, r2, c1, c2 = struct.unpack_from("<IIII", data)
                        return Dimensions(start=(r1, c1), end=(r2, c2))
                    if rtype == BRT_BEGIN_SHEET_DATA:
                        return None
        except (RecordTruncatedError, ZipError, struct.error) as exc:
            self._warn(f"sheet:{sheet.name}", f"Dimension unreadable: {exc}")
        return None

    def read_merged_ranges(self, sheet: SheetMetadata) -> list[MergedRange]:
        ranges: list[MergedRange] = []
        try:
            for rtype, data in self._records(self._parts[sheet.index]):
                if rtype != BRT_MERGE_CELL:
                    continue
                if len(data) < 16:
                    self._warn(f"sheet:{sheet.name}", "BrtMergeCell record too short")
                    continue
                r1, r2, c1, c2 = struct.unpack_from("<IIII", data)
                ranges.append(MergedRange(start=(r1, c1), end=(r2, c2)))
        except (RecordTruncatedError, ZipError) as exc:
            self._warn(f"sheet:{sheet.name}", f"Merged ranges incomplete: {exc}")
        return ranges

    def _iter_rows(self, sheet: SheetMetadata) -> Iterator[Row]:
        try:
            stream = XlsbRecordStream(self.container.open_entry(self._parts[sheet.index]))
        except ZipError as exc:
            raise SheetTruncatedError(sheet.name, str(exc)) from exc

        current: int | None = None
        cells: dict[int, CellValue] = {}
        in_data = False
        try:
            while True:
                record = stream.next_record()
                if record is None:
                    if sheet.sheet_type is SheetType.CHARTSHEET and not in_data:
                        return
                    raise SheetTruncatedError(sheet.name, "part ends inside the sheet data", current)
                rtype, data = record
                if rtype == BRT_BEGIN_SHEET_DATA:
                    in_data = True
                elif rtype == BRT_END_SHEET_DATA:
                    break
                elif not in_data:
                    continue
                elif rtype == BRT_ROW_HDR:
                    if current is not None:
                        row = make_row(current, cells)
                        if row is not None:
                            yield row
                    (current,) = struct.unpack_from("<I", data)
                    cells = {}
                elif rtype in CELL_RECORDS:
                    if current is None:
                        self._warn(f"sheet:{sheet.name}", f"Cell record 0x{rtype:02X} before any row")
                        continue
                    decoded = self._decode_cell(rtype, data, sheet, current)
                    if decoded is not None:
                        cells[decoded[0]] = decoded[1]
            if current is not None:
                row = make_row(current, cells)
                if row is not None:
                    yield row
        except (RecordTruncatedError, struct.error) as exc:
            raise SheetTruncatedError(sheet.name, str(exc), current) from exc
        finally:
            stream.close()

    def _decode_cell(
        self,
        rtype: int,
        data: bytes,
        sheet: SheetMetadata,
        row: int,
    ) -> tuple[int, CellValue] | None:
        if len(data) < 8:
            self._warn(f"sheet:{sheet.name}", f"Cell record 0x{rtype:02X} too short; skipped", row)
            return None
        col, style_flags = struct.unpack_from("<II", data)
        style = style_flags & 0xFFFFFF
        try:
            if rtype == BRT_CELL_BLANK:
                return col, CellValue.empty()
            if rtype == BRT_CELL_RK:
                value = decode_rk(data[8:12], self.options.int_inference)
                return col, self._numeric(value, style, sheet, row, col)
            if rtype in (BRT_CELL_REAL, BRT_FMLA_NUM):
                (value,) = struct.unpack_from("<d", data, 8)
                return col, self._numeric(value, style, sheet, row, col)
            if rtype in (BRT_CELL_BOOL, BRT_FMLA_BOOL):
                return col, CellValue.boolean(data[8])
            if rtype in (BRT_CELL_ERROR, BRT_FMLA_ERROR):
                error = ERROR_CODES.get(data[8])
                if error is None:
                    self._warn(f"sheet:{sheet.name}", f"Unknown error code 0x{data[8]:02X}", row, col)
                    error = ErrorType.DECODE
                return col, CellValue.error(error)
            if rtype in (BRT_CELL_ST, BRT_FMLA_STRING):
                text, _ = wide_string(data, 8)
                return col, CellValue.string(text or "")
            if rtype == BRT_CELL_ISST:
                (index,) = struct.unpack_from("<I", data, 8)
                return col, self._shared_string(index, sheet, row, col)
        except (struct.error, IndexError, ValueError, UnicodeDecodeError) as exc:
            self._warn(f"sheet:{sheet.name}", f"Cell record 0x{rtype:02X} malformed: {exc}", row, col)
        return col, CellValue.error()
