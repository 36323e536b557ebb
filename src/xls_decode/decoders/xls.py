"""Legacy binary workbook decoder (BIFF5 and BIFF8 record streams).

The workbook stream starts with a globals substream (shared strings,
formats, styles, sheet directory, names) followed by one BOF..EOF
substream per sheet, located through the offsets in BOUNDSHEET records.
"""

from __future__ import annotations

import codecs
import logging
import struct
from dataclasses import dataclass
from itertools import chain
from typing import Iterator

from ..cells import ERROR_CODES, decode_rk
from ..containers import BiffRecordStream, RecordTruncatedError
from ..errors import MalformedContainerError, PasswordError, SheetTruncatedError
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
from .formula import BIFF8, FormulaError, render_name_formula

logger = logging.getLogger(__name__)

# Record types
XL_BOF = 0x0809
XL_EOF = 0x000A
XL_FILEPASS = 0x002F
XL_CODEPAGE = 0x0042
XL_DATEMODE = 0x0022
XL_FORMAT = 0x041E
XL_XF = 0x00E0
XL_SST = 0x00FC
XL_CONTINUE = 0x003C
XL_BOUNDSHEET = 0x0085
XL_EXTERNSHEET = 0x0017
XL_NAME = 0x0018
XL_DIMENSION = 0x0200
XL_NUMBER = 0x0203
XL_RK = 0x027E
XL_MULRK = 0x00BD
XL_LABELSST = 0x00FD
XL_LABEL = 0x0204
XL_RSTRING = 0x00D6
XL_BOOLERR = 0x0205
XL_FORMULA = 0x0006
XL_STRING = 0x0207
XL_BLANK = 0x0201
XL_MULBLANK = 0x00BE
XL_MERGEDCELLS = 0x00E5

# Records that carry a cell value at explicit coordinates
CELL_RECORDS = frozenset({
    XL_NUMBER, XL_RK, XL_MULRK, XL_LABELSST, XL_LABEL, XL_RSTRING,
    XL_BOOLERR, XL_FORMULA, XL_BLANK, XL_MULBLANK,
})

BIFF8_VERSION = 0x0600

SHEET_TYPES = {
    0x00: SheetType.WORKSHEET,
    0x01: SheetType.MACROSHEET,
    0x02: SheetType.CHARTSHEET,
    0x06: SheetType.VBA,
}
VISIBILITY = {
    0: SheetVisibility.VISIBLE,
    1: SheetVisibility.HIDDEN,
    2: SheetVisibility.VERY_HIDDEN,
}
BUILTIN_NAMES = {
    0x00: "Consolidate_Area",
    0x01: "Auto_Open",
    0x02: "Auto_Close",
    0x03: "Extract",
    0x04: "Database",
    0x05: "Criteria",
    0x06: "Print_Area",
    0x07: "Print_Titles",
    0x08: "Recorder",
    0x09: "Data_Form",
    0x0A: "Auto_Activate",
    0x0B: "Auto_Deactivate",
    0x0C: "Sheet_Title",
    0x0D: "_FilterDatabase",
}
CODEPAGES = {
    367: "ascii",
    1200: "utf_16_le",
    10000: "mac_roman",
    32768: "mac_roman",
    32769: "cp1252",
}


def unpack_unicode(data: bytes, pos: int, lenlen: int = 2) -> tuple[str, int]:
    """Read a BIFF8 XLUnicodeString; returns the text and the next offset.

    Raises:
        struct.error: If the header is cut short.
        ValueError: If the characters are cut short or not valid UTF-16.
    """
    nchars = int.from_bytes(data[pos:pos + lenlen], "little")
    if len(data) < pos + lenlen + 1:
        raise struct.error("string header cut short")
    pos += lenlen
    flags = data[pos]
    pos += 1
    runs = ext = 0
    if flags & 0x08:
        (runs,) = struct.unpack_from("<H", data, pos)
        pos += 2
    if flags & 0x04:
        (ext,) = struct.unpack_from("<i", data, pos)
        pos += 4
    size = nchars * 2 if flags & 0x01 else nchars
    raw = data[pos:pos + size]
    if len(raw) < size:
        raise ValueError(f"string needs {size} bytes, {len(raw)} available")
    text = raw.decode("utf_16_le") if flags & 0x01 else raw.decode("latin_1")
    return text, pos + size + 4 * runs + ext


def unpack_sst(chunks: list[bytes], count: int, builder: TablesBuilder) -> None:
    """Read ``count`` strings from an SST record and its CONTINUE records.

    Strings may be split across records; each continuation starts with a
    new option byte telling whether the rest is compressed or UTF-16.

    Raises:
        MalformedContainerError: If the records end before ``count``
            strings were read.
    """
    index = 0
    data = chunks[0]
    pos = 8

    def next_chunk() -> bytes:
        nonlocal index
        index += 1
        if index >= len(chunks):
            raise MalformedContainerError(
                f"SST ends after {builder.string_count} of {count} strings"
            )
        return chunks[index]

    for _ in range(count):
        if pos >= len(data):
            data = next_chunk()
            pos = 0
        if len(data) - pos < 3:
            raise MalformedContainerError(f"SST string header cut at string {builder.string_count}")
        nchars, options = struct.unpack_from("<HB", data, pos)
        pos += 3
        runs = ext = 0
        if options & 0x08:
            (runs,) = struct.unpack_from("<H", data, pos)
            pos += 2
        if options & 0x04:
            (ext,) = struct.unpack_from("<i", data, pos)
            pos += 4

        utf16 = bytearray()
        got = 0
        wide = options & 0x01
        while True:
            need = nchars - got
            if wide:
                avail = min((len(data) - pos) // 2, need)
                utf16 += data[pos:pos + 2 * avail]
                pos += 2 * avail
            else:
                avail = min(len(data) - pos, need)
                utf16 += data[pos:pos + avail].decode("latin_1").encode("utf_16_le")
                pos += avail
            got += avail
            if got == nchars:
                break
            data = next_chunk()
            wide = data[0] & 0x01
            pos = 1

        try:
            builder.add_string(bytes(utf16).decode("utf_16_le"))
        except UnicodeDecodeError as exc:
            builder.add_malformed_string(str(exc))

        skip = 4 * runs + max(ext, 0)
        while skip:
            avail = len(data) - pos
            if skip <= avail:
                pos += skip
                break
            skip -= avail
            data = next_chunk()
            pos = 0


@dataclass
class _BoundSheet:
    name: str
    offset: int
    visibility: SheetVisibility
    sheet_type: SheetType


class XlsDecoder(BaseDecoder):
    """Decoder for ``.xls`` workbooks."""

    format = FormatKind.XLS

    def _parse_header(self) -> None:
        stream_name = self.container.workbook_stream_name()
        self._data = self.container.read_entry(stream_name)
        stream = BiffRecordStream(self._data)

        record = stream.next_record()
        if record is None or record[0] != XL_BOF or len(record[1]) < 4:
            raise MalformedContainerError("Workbook stream does not start with a BOF record")
        version, stream_type = struct.unpack_from("<HH", record[1])
        self._biff8 = version == BIFF8_VERSION
        self._encoding = "utf_16_le" if self._biff8 else "cp1252"
        logger.debug("BIFF version 0x%04X, stream type 0x%04X", version, stream_type)

        builder = TablesBuilder(self.warnings)
        bound: list[_BoundSheet] = []
        extern: list[tuple[int, int, int]] = []
        names: list[bytes] = []

        while True:
            record = stream.next_record()
            if record is None:
                raise MalformedContainerError("Workbook globals end without an EOF record")
            rtype, data = record
            if rtype == XL_EOF:
                break
            if rtype == XL_FILEPASS:
                raise PasswordError("Workbook is encrypted")
            if rtype == XL_CODEPAGE:
                self._set_codepage(struct.unpack_from("<H", data)[0])
            elif rtype == XL_DATEMODE:
                if struct.unpack_from("<H", data)[0] == 1:
                    builder.set_epoch(DateEpoch.EXCEL_1904)
            elif rtype == XL_FORMAT:
                self._handle_format(data, builder)
            elif rtype == XL_XF:
                if len(data) >= 4:
                    builder.add_style(struct.unpack_from("<H", data, 2)[0])
                else:
                    self._warn("styles", f"XF record {len(data)} bytes long; style has no format")
                    builder.add_style(-1)
            elif rtype == XL_SST:
                self._handle_sst(data, stream, builder)
            elif rtype == XL_BOUNDSHEET:
                bound.append(self._handle_boundsheet(data))
            elif rtype == XL_EXTERNSHEET and self._biff8:
                (count,) = struct.unpack_from("<H", data)
                extern = [
                    struct.unpack_from("<HHH", data, 2 + 6 * i) for i in range(count)
                ]
            elif rtype == XL_NAME:
                names.append(data)

        self.tables = builder.build()
        self._offsets = [sheet.offset for sheet in bound]
        self.metadata.sheets = [
            SheetMetadata(
                name=sheet.name,
                index=index,
                visibility=sheet.visibility,
                sheet_type=sheet.sheet_type,
            )
            for index, sheet in enumerate(bound)
        ]
        sheet_names = [sheet.name for sheet in bound]
        for data in names:
            name = self._handle_name(data, sheet_names, extern)
            if name is not None:
                self.metadata.defined_names.append(name)

    # -- globals records ----------------------------------------------------

    def _set_codepage(self, codepage: int) -> None:
        encoding = CODEPAGES.get(codepage, f"cp{codepage}")
        try:
            codecs.lookup(encoding)
        except LookupError:
            self._warn("workbook", f"Unknown codepage {codepage}; using cp1252")
            encoding = "cp1252"
        if not self._biff8:
            self._encoding = encoding

    def _byte_string(self, data: bytes, pos: int, lenlen: int) -> tuple[str, int]:
        """BIFF5 string: length prefix plus codepage-encoded bytes."""
        size = int.from_bytes(data[pos:pos + lenlen], "little")
        pos += lenlen
        raw = data[pos:pos + size]
        if len(raw) < size:
            raise ValueError(f"string needs {size} bytes, {len(raw)} available")
        return raw.decode(self._encoding, errors="replace"), pos + size

    def _string(self, data: bytes, pos: int, lenlen: int) -> tuple[str, int]:
        if self._biff8:
            return unpack_unicode(data, pos, lenlen)
        return self._byte_string(data, pos, lenlen)

    def _handle_format(self, data: bytes, builder: TablesBuilder) -> None:
        try:
            (format_id,) = struct.unpack_from("<H", data)
            code, _ = self._string(data, 2, 2 if self._biff8 else 1)
        except (struct.error, ValueError) as exc:
            self._warn("number_formats", f"FORMAT record skipped: {exc}")
            return
        builder.add_format(format_id, code)

    def _handle_sst(self, data: bytes, stream: BiffRecordStream, builder: TablesBuilder) -> None:
        if len(data) < 8:
            raise MalformedContainerError("SST record too short")
        _total, unique = struct.unpack_from("<ii", data)
        builder.declare_string_count(unique)
        chunks = [data]
        while True:
            extra = stream.next_record_if(XL_CONTINUE)
            if extra is None:
                break
            chunks.append(extra)
        unpack_sst(chunks, unique, builder)

    def _handle_boundsheet(self, data: bytes) -> _BoundSheet:
        offset, state, kind = struct.unpack_from("<iBB", data)
        name, _ = self._string(data, 6, 1)
        return _BoundSheet(
            name=name,
            offset=offset,
            visibility=VISIBILITY.get(state & 0x03, SheetVisibility.HIDDEN),
            sheet_type=SHEET_TYPES.get(kind, SheetType.WORKSHEET),
        )

    def _handle_name(
        self,
        data: bytes,
        sheet_names: list[str],
        extern: list[tuple[int, int, int]],
    ) -> DefinedName | None:
        try:
            options, _key, nchars, formula_size, _reserved, itab = struct.unpack_from(
                "<HBBHHH", data
            )
            pos = 14
            if options & 0x0020:
                # builtin names store a one-character code
                flags = data[pos] if self._biff8 else 0
                code = data[pos + 1] if self._biff8 else data[pos]
                name = BUILTIN_NAMES.get(code, f"_Builtin{code:02X}")
                pos += (1 + nchars * (2 if flags & 0x01 else 1)) if self._biff8 else nchars
            elif self._biff8:
                flags = data[pos]
                size = nchars * (2 if flags & 0x01 else 1)
                raw = data[pos + 1:pos + 1 + size]
                name = raw.decode("utf_16_le" if flags & 0x01 else "latin_1")
                pos += 1 + size
            else:
                name = data[pos:pos + nchars].decode(self._encoding, errors="replace")
                pos += nchars
        except (struct.error, IndexError, UnicodeDecodeError) as exc:
            self._warn("defined_names", f"NAME record skipped: {exc}")
            return None

        scope = sheet_names[itab - 1] if 0 < itab <= len(sheet_names) else None
        if not self._biff8:
            self._warn("defined_names", f"Formula of name {name!r} not decoded (BIFF5)")
            return DefinedName(name, "", scope, bool(options & 0x0001))

        def sheet_span(ixti: int) -> str | None:
            if not 0 <= ixti < len(extern):
                return None
            _book, first, last = extern[ixti]
            if first >= len(sheet_names) or last >= len(sheet_names):
                return None
            return sheet_names[first] if first == last else f"{sheet_names[first]}:{sheet_names[last]}"

        try:
            reference = render_name_formula(
                data[pos:pos + formula_size], sheet_span, BIFF8
            )
        except FormulaError as exc:
            self._warn("defined_names", f"Name {name!r} skipped: {exc}")
            return None
        return DefinedName(name, reference, scope, bool(options & 0x0001))

    # -- sheet substreams ---------------------------------------------------

    def _sheet_stream(self, sheet: SheetMetadata) -> BiffRecordStream:
        """Independent record stream positioned after the sheet's BOF."""
        offset = self._offsets[sheet.index]
        if not 0 <= offset < len(self._data):
            raise SheetTruncatedError(sheet.name, f"sheet offset {offset} outside workbook stream")
        stream = BiffRecordStream(self._data, offset)
        record = stream.next_record()
        if record is None or record[0] != XL_BOF:
            raise SheetTruncatedError(sheet.name, "sheet substream does not start with BOF")
        return stream

    def _sheet_records(self, sheet: SheetMetadata) -> Iterator[tuple[int, bytes]]:
        """Records of a sheet substream up to (not including) its EOF.

        Nested BOF..EOF substreams (embedded charts) are skipped.
        """
        stream = self._sheet_stream(sheet)
        depth = 0
        while True:
            record = stream.next_record()
            if record is None:
                raise SheetTruncatedError(sheet.name, "sheet substream ends without EOF")
            rtype = record[0]
            if rtype == XL_BOF:
                depth += 1
            elif rtype == XL_EOF:
                if depth == 0:
                    return
                depth -= 1
            elif depth == 0:
                yield record

    def read_dimension(self, sheet: SheetMetadata) -> Dimensions | None:
        if sheet.sheet_type is SheetType.VBA:
            return None
        try:
            for rtype, data in self._sheet_records(sheet):
                if rtype == XL_DIMENSION:
                    return self._dimension(data)
                if rtype in CELL_RECORDS:
                    return None
        except (SheetTruncatedError, RecordTruncatedError, struct.error) as exc:
            self._warn(f"sheet:{sheet.name}", f"Dimension unreadable: {exc}")
        return None

    def _dimension(self, data: bytes) -> Dimensions | None:
        if self._biff8:
            first_row, last_row, first_col, last_col = struct.unpack_from("<IIHH", data)
        else:
            first_row, last_row, first_col, last_col = struct.unpack_from("<HHHH", data)
        if last_row <= first_row or last_col <= first_col:
            return None
        return Dimensions(start=(first_row, first_col), end=(last_row - 1, last_col - 1))

    def read_merged_ranges(self, sheet: SheetMetadata) -> list[MergedRange]:
        ranges: list[MergedRange] = []
        if sheet.sheet_type is SheetType.VBA:
            return ranges
        try:
            for rtype, data in self._sheet_records(sheet):
                if rtype != XL_MERGEDCELLS:
                    continue
                (count,) = struct.unpack_from("<H", data)
                if len(data) < 2 + 8 * count:
                    self._warn(f"sheet:{sheet.name}", "MERGEDCELLS record shorter than its count")
                    count = (len(data) - 2) // 8
                for i in range(count):
                    r1, r2, c1, c2 = struct.unpack_from("<HHHH", data, 2 + 8 * i)
                    ranges.append(MergedRange(start=(r1, c1), end=(r2, c2)))
        except (SheetTruncatedError, RecordTruncatedError) as exc:
            self._warn(f"sheet:{sheet.name}", f"Merged ranges incomplete: {exc}")
        return ranges

    def _iter_rows(self, sheet: SheetMetadata) -> Iterator[Row]:
        if sheet.sheet_type is SheetType.VBA:
            return
        current: int | None = None
        cells: dict[int, CellValue] = {}
        # FORMULA cells with a string result get their text from the next
        # STRING record, which carries no coordinates of its own.
        pending: tuple[int, int] | None = None
        try:
            records = chain(self._sheet_records(sheet), [(_END_OF_SHEET, b"")])
            for rtype, data in records:
                if rtype == XL_STRING:
                    if pending is None:
                        self._warn(f"sheet:{sheet.name}", "STRING record without a formula cell")
                        continue
                    decoded = [(*pending, self._formula_string(data, sheet, *pending))]
                    pending = None
                elif rtype in CELL_RECORDS or rtype == _END_OF_SHEET:
                    decoded = []
                    if pending is not None:
                        self._warn(f"sheet:{sheet.name}", "Formula string result missing", *pending)
                        decoded.append((*pending, CellValue.error()))
                        pending = None
                    if rtype != _END_OF_SHEET:
                        decoded.extend(self._decode_cell(rtype, data, sheet))
                    if decoded and decoded[-1][2] is _STRING_FOLLOWS:
                        pending = decoded.pop()[:2]
                else:
                    continue

                for row, col, cell in decoded:
                    if current is None or row == current:
                        current = row
                    elif row > current:
                        built = make_row(current, cells)
                        if built is not None:
                            yield built
                        current, cells = row, {}
                    else:
                        self._warn(
                            f"sheet:{sheet.name}",
                            f"Cell in row {row} after row {current}; skipped",
                            row, col,
                        )
                        continue
                    if not cell.is_empty:
                        cells[col] = cell
        except RecordTruncatedError as exc:
            raise SheetTruncatedError(sheet.name, str(exc), current) from exc

        if current is not None:
            built = make_row(current, cells)
            if built is not None:
                yield built

    # -- cell records -------------------------------------------------------

    def _decode_cell(
        self,
        rtype: int,
        data: bytes,
        sheet: SheetMetadata,
    ) -> list[tuple[int, int, CellValue]]:
        """Decode one cell record into (row, col, value) triples."""
        if len(data) < 6:
            self._warn(f"sheet:{sheet.name}", f"Cell record 0x{rtype:04X} too short; skipped")
            return []
        row, col, xf = struct.unpack_from("<HHH", data)
        try:
            if rtype == XL_MULRK:
                return self._decode_mulrk(data, sheet)
            if rtype in (XL_BLANK, XL_MULBLANK):
                return [(row, col, CellValue.empty())]
            if rtype == XL_NUMBER:
                (value,) = struct.unpack_from("<d", data, 6)
                return [(row, col, self._numeric(value, xf, sheet, row, col))]
            if rtype == XL_RK:
                value = decode_rk(data[6:10], self.options.int_inference)
                return [(row, col, self._numeric(value, xf, sheet, row, col))]
            if rtype == XL_LABELSST:
                (index,) = struct.unpack_from("<I", data, 6)
                return [(row, col, self._shared_string(index, sheet, row, col))]
            if rtype in (XL_LABEL, XL_RSTRING):
                text, _ = self._string(data, 6, 2)
                return [(row, col, CellValue.string(text))]
            if rtype == XL_BOOLERR:
                value, is_error = struct.unpack_from("<BB", data, 6)
                if is_error:
                    return [(row, col, self._error_code(value, sheet, row, col))]
                return [(row, col, CellValue.boolean(value))]
            if rtype == XL_FORMULA:
                return [(row, col, self._formula_result(data, xf, sheet, row, col))]
        except (struct.error, ValueError, UnicodeDecodeError) as exc:
            self._warn(f"sheet:{sheet.name}", f"Record 0x{rtype:04X} malformed: {exc}", row, col)
            return [(row, col, CellValue.error())]
        return []

    def _decode_mulrk(self, data: bytes, sheet: SheetMetadata) -> list[tuple[int, int, CellValue]]:
        row, first = struct.unpack_from("<HH", data)
        (last,) = struct.unpack_from("<H", data, len(data) - 2)
        count = (len(data) - 6) // 6
        if (len(data) - 6) % 6 or last - first + 1 != count:
            raise ValueError(f"MULRK spans columns {first}-{last} with {count} values")
        decoded = []
        for i in range(count):
            pos = 4 + 6 * i
            (xf,) = struct.unpack_from("<H", data, pos)
            value = decode_rk(data[pos + 2:pos + 6], self.options.int_inference)
            decoded.append((row, first + i, self._numeric(value, xf, sheet, row, first + i)))
        return decoded

    def _formula_result(
        self,
        data: bytes,
        xf: int,
        sheet: SheetMetadata,
        row: int,
        col: int,
    ) -> CellValue:
        result = data[6:14]
        if len(result) < 8:
            raise ValueError("FORMULA record too short")
        if result[6:8] != b"\xff\xff":
            (value,) = struct.unpack("<d", result)
            return self._numeric(value, xf, sheet, row, col)
        kind = result[0]
        if kind == 0:
            return _STRING_FOLLOWS
        if kind == 1:
            return CellValue.boolean(result[2])
        if kind == 2:
            return self._error_code(result[2], sheet, row, col)
        if kind == 3:
            return CellValue.string("")
        raise ValueError(f"unknown formula result type {kind}")

    def _formula_string(self, data: bytes, sheet: SheetMetadata, row: int, col: int) -> CellValue:
        try:
            text, _ = self._string(data, 0, 2)
        except (struct.error, ValueError, UnicodeDecodeError) as exc:
            self._warn(f"sheet:{sheet.name}", f"STRING record malformed: {exc}", row, col)
            return CellValue.error()
        return CellValue.string(text)

    def _error_code(self, code: int, sheet: SheetMetadata, row: int, col: int) -> CellValue:
        error = ERROR_CODES.get(code)
        if error is None:
            self._warn(f"sheet:{sheet.name}", f"Unknown error code 0x{code:02X}", row, col)
            error = ErrorType.DECODE
        return CellValue.error(error)


# Marker for a FORMULA cell whose string result is in the next STRING record
_STRING_FOLLOWS = CellValue.string("")

# Record type fed after the last record of a sheet substream
_END_OF_SHEET = -1

