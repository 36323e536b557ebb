"""Tests for the OOXML binary workbook decoder."""

from __future__ import annotations

import struct
from datetime import date

import pytest

import builders
from xls_decode import (
    CellKind,
    DateEpoch,
    ErrorType,
    FormatKind,
    SheetTruncatedError,
    SheetVisibility,
    open_workbook,
)

DATE_STYLES = builders.xlsb_styles({164: "yyyy-mm-dd"}, [0, 164, 14])


def one_sheet(rows, **kwargs) -> bytes:
    return builders.xlsb_package([("Sheet1", builders.xlsb_sheet(rows))], **kwargs)


class TestXlsbHeader:
    """Tests for the workbook, styles and shared strings parts."""

    def test_sheet_list(self, xlsb_workbook):
        with open_workbook(xlsb_workbook) as wb:
            assert wb.format is FormatKind.XLSB
            assert wb.sheet_names() == ["Data", "Other"]
            assert wb.epoch is DateEpoch.EXCEL_1900

    def test_hidden_sheet(self):
        sheet = builders.xlsb_sheet([])
        data = builders.xlsb_package([("Shown", sheet), ("Secret", sheet)], hidden=("Secret",))
        with open_workbook(data) as wb:
            assert [s.visibility for s in wb.sheets_metadata] == [
                SheetVisibility.VISIBLE,
                SheetVisibility.HIDDEN,
            ]

    def test_date1904(self):
        rows = [builders.brt_row(0), builders.brt_rk(0, builders.rk_int(44197), style=1)]
        with open_workbook(one_sheet(rows, date1904=True, styles=DATE_STYLES)) as wb:
            assert wb.epoch is DateEpoch.EXCEL_1904
            assert wb.open_sheet(0).next_row()[0].to_python() == date(2025, 1, 2)

    def test_defined_names(self):
        sheet = builders.xlsb_sheet([])
        data = builders.xlsb_package(
            [("Data", sheet), ("Other", sheet)],
            extern=[(0, 0, 0), (0, 1, 1)],
            names=[
                builders.xlsb_name("Total", b"\x3a" + struct.pack("<HIH", 0, 3, 1)),
                builders.xlsb_name("Local", b"\x3a" + struct.pack("<HIH", 1, 0, 0), itab=1, hidden=True),
                builders.xlsb_name("Broken", b"\x41\x00\x00"),
            ],
        )
        with open_workbook(data) as wb:
            names = {n.name: n for n in wb.defined_name_list}
            assert names["Total"].reference == "Data!$B$4"
            assert names["Total"].scope is None
            assert names["Local"].reference == "Other!$A$1"
            assert names["Local"].scope == "Other"
            assert names["Local"].hidden
            assert "Broken" not in names
            assert any(w.scope == "defined_names" for w in wb.warnings)


class TestXlsbCells:
    """Tests for cell records."""

    def test_simple_rows(self, xlsb_workbook):
        with open_workbook(xlsb_workbook) as wb:
            rows = list(wb.open_sheet("Data"))
            assert [row.index for row in rows] == [0, 1, 2]
            assert rows[0].values() == ["Name", "Value"]
            assert rows[1][1].kind is CellKind.INT
            assert rows[2][1].kind is CellKind.FLOAT
            assert wb.open_sheet("Other").to_python() == [["second"]]

    def test_real_is_always_float(self):
        with open_workbook(one_sheet([builders.brt_row(0), builders.brt_real(0, 3.0)])) as wb:
            cell = wb.open_sheet(0).next_row()[0]
            assert cell.kind is CellKind.FLOAT
            assert cell.value == 3.0

    def test_bool_and_error(self):
        rows = [
            builders.brt_row(0),
            builders.brt_bool(0, True),
            builders.brt_error(1, 0x2A),
            builders.brt_error(2, 0x99),
        ]
        with open_workbook(one_sheet(rows)) as wb:
            cells = wb.open_sheet(0).next_row().cells
            assert cells[0].value is True
            assert cells[1].value is ErrorType.NA
            assert cells[2].value is ErrorType.DECODE
            assert len(wb.warnings) == 1

    def test_short_rk_is_error(self):
        rows = [builders.brt_row(0), builders.brt_rk(0, b"\x0a\x00"), builders.brt_rk(1, builders.rk_int(7))]
        with open_workbook(one_sheet(rows)) as wb:
            row = wb.open_sheet(0).next_row()
            assert row[0].kind is CellKind.ERROR
            assert row[1].value == 7
            assert (wb.warnings[0].row, wb.warnings[0].col) == (0, 0)

    def test_styled_dates(self):
        rows = [
            builders.brt_row(0),
            builders.brt_rk(0, builders.rk_int(44197), style=1),
            builders.brt_real(1, 44197.0, style=2),
            builders.brt_rk(2, builders.rk_int(5), style=7),
        ]
        with open_workbook(one_sheet(rows, styles=DATE_STYLES)) as wb:
            cells = wb.open_sheet(0).next_row().cells
            assert cells[0].to_python() == date(2021, 1, 1)
            assert cells[1].kind is CellKind.DATETIME
            assert cells[2].kind is CellKind.ERROR

    def test_bad_shared_string_index(self):
        rows = [builders.brt_row(0), builders.brt_isst(0, 4), builders.brt_isst(1, 0)]
        with open_workbook(one_sheet(rows, strings=["a"])) as wb:
            row = wb.open_sheet(0).next_row()
            assert row[0].kind is CellKind.ERROR
            assert row[1].value == "a"

    def test_empty_rows_are_skipped(self):
        rows = [
            builders.brt_row(0),
            builders.brt_row(1),
            builders.brt(0x01, struct.pack("<II", 0, 0)),
            builders.brt_row(2),
            builders.brt_string(0, "x"),
        ]
        with open_workbook(one_sheet(rows)) as wb:
            assert [row.index for row in wb.open_sheet(0)] == [2]

    def test_out_of_order_row_is_skipped(self):
        rows = [
            builders.brt_row(3),
            builders.brt_string(0, "three"),
            builders.brt_row(1),
            builders.brt_string(0, "one"),
            builders.brt_row(5),
            builders.brt_string(0, "five"),
        ]
        with open_workbook(one_sheet(rows)) as wb:
            assert [row.index for row in wb.open_sheet(0)] == [3, 5]
            assert len(wb.warnings) == 1


class TestXlsbSheets:
    """Tests for sheet-level behavior."""

    def test_dimension(self, xlsb_workbook):
        with open_workbook(xlsb_workbook) as wb:
            dim = wb.sheet_metadata("Data").dimension
            assert (dim.start, dim.end) == ((0, 0), (2, 1))
            assert wb.sheet_metadata("Other").dimension is None

    def test_merged_ranges(self, xlsb_workbook):
        with open_workbook(xlsb_workbook) as wb:
            assert [m.ref for m in wb.merged_ranges("Data")] == ["A5:B6"]
            assert wb.merged_ranges("Other") == []

    def test_record_cut_short(self):
        part = (
            builders.brt(0x81) + builders.brt(0x91)
            + builders.brt_row(0) + builders.brt_string(0, "a")
            + builders.brt_row(1) + builders.brt_string(0, "b")
            + builders.brt_row(2) + builders.brt_real(0, 3.0)[:-3]
        )
        data = builders.xlsb_package([("Cut", part), ("Fine", builders.xlsb_sheet([]))])
        with open_workbook(data) as wb:
            cursor = wb.open_sheet("Cut")
            assert [cursor.next_row().index, cursor.next_row().index] == [0, 1]
            with pytest.raises(SheetTruncatedError):
                cursor.next_row()
            with pytest.raises(SheetTruncatedError):
                cursor.next_row()
            assert wb.open_sheet("Fine").next_row() is None

    def test_part_ends_inside_sheet_data(self):
        part = builders.brt(0x81) + builders.brt(0x91) + builders.brt_row(0) + builders.brt_string(0, "a")
        with open_workbook(builders.xlsb_package([("Cut", part)])) as wb:
            with pytest.raises(SheetTruncatedError):
                wb.open_sheet(0).next_row()
