"""Tests for the OpenDocument spreadsheet decoder."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

import builders
from xls_decode import (
    CellKind,
    ErrorType,
    FormatKind,
    SheetVisibility,
    WorkbookOpenError,
    open_workbook,
)
from xls_decode.decoders.ods import cell_range_address, parse_duration


def table(name: str, rows: str, style: str | None = None) -> str:
    styled = f' table:style-name="{style}"' if style else ""
    return f'<table:table table:name="{name}"{styled}>{rows}</table:table>'


def row(*cells: str, repeat: int | None = None) -> str:
    repeated = f' table:number-rows-repeated="{repeat}"' if repeat is not None else ""
    return f"<table:table-row{repeated}>{''.join(cells)}</table:table-row>"


def text_cell(text: str, repeat: int | None = None) -> str:
    repeated = f' table:number-columns-repeated="{repeat}"' if repeat is not None else ""
    return f'<table:table-cell office:value-type="string"{repeated}><text:p>{text}</text:p></table:table-cell>'


def float_cell(value: str) -> str:
    return f'<table:table-cell office:value-type="float" office:value="{value}"/>'


def empty_cell(repeat: int | None = None) -> str:
    repeated = f' table:number-columns-repeated="{repeat}"' if repeat is not None else ""
    return f"<table:table-cell{repeated}/>"


def one_sheet(rows: str, styles: str = "") -> bytes:
    return builders.ods_package(table("Sheet1", rows), styles)


class TestOdsHeader:
    """Tests for the header pass over content.xml."""

    def test_sheet_list(self, ods_workbook):
        with open_workbook(ods_workbook) as wb:
            assert wb.format is FormatKind.ODS
            assert wb.sheet_names() == ["Data", "Other"]

    def test_hidden_table(self):
        styles = (
            '<style:style style:name="ta2" style:family="table">'
            '<style:table-properties table:display="false"/></style:style>'
        )
        body = table("Shown", row(text_cell("a"))) + table("Secret", row(text_cell("b")), style="ta2")
        with open_workbook(builders.ods_package(body, styles)) as wb:
            assert [s.visibility for s in wb.sheets_metadata] == [
                SheetVisibility.VISIBLE,
                SheetVisibility.HIDDEN,
            ]

    def test_named_ranges_and_expressions(self):
        body = (
            table("Data", row(float_cell("1")))
            + "<table:named-expressions>"
            '<table:named-range table:name="MyRange" table:cell-range-address="$Data.$A$1:.$A$3"/>'
            '<table:named-expression table:name="Rate" table:expression="of:=0.25"/>'
            "</table:named-expressions>"
        )
        with open_workbook(builders.ods_package(body)) as wb:
            assert wb.defined_names() == {"MyRange": "Data!$A$1:$A$3", "Rate": "0.25"}
            assert all(n.scope is None for n in wb.defined_name_list)

    def test_sheet_scoped_named_range(self):
        body = table(
            "Data",
            row(float_cell("1"))
            + "<table:named-expressions>"
            '<table:named-range table:name="Local" table:cell-range-address="$Data.$B$2"/>'
            "</table:named-expressions>",
        )
        with open_workbook(builders.ods_package(body)) as wb:
            (name,) = wb.defined_name_list
            assert (name.name, name.reference, name.scope) == ("Local", "Data!$B$2", "Data")

    def test_broken_content_fails_open(self):
        data = builders.replace_part(one_sheet(row(text_cell("x"))), "content.xml", lambda text: text[:-40])
        with pytest.raises(WorkbookOpenError):
            open_workbook(data)


class TestOdsCells:
    """Tests for cell values."""

    def test_simple_rows(self, ods_workbook):
        with open_workbook(ods_workbook) as wb:
            rows = list(wb.open_sheet("Data"))
            assert [r.index for r in rows] == [0, 1, 2]
            assert rows[0].values() == ["Name", "Value"]
            assert rows[1][1].kind is CellKind.INT
            assert rows[2][1].kind is CellKind.FLOAT
            assert wb.open_sheet("Other").to_python() == [["second"]]

    def test_repeated_columns_and_rows(self):
        rows = (
            row(text_cell("x", repeat=3))
            + row(empty_cell(), repeat=4)
            + row(empty_cell(2), float_cell("7"), empty_cell(1000), repeat=2)
        )
        with open_workbook(one_sheet(rows)) as wb:
            result = [(r.index, r.values()) for r in wb.open_sheet(0)]
            assert result == [
                (0, ["x", "x", "x"]),
                (5, [None, None, 7]),
                (6, [None, None, 7]),
            ]

    def test_dates_times_and_booleans(self):
        cells = (
            '<table:table-cell office:value-type="date" office:date-value="2021-01-01"/>'
            '<table:table-cell office:value-type="date" office:date-value="2024-02-29T13:30:00"/>'
            '<table:table-cell office:value-type="time" office:time-value="PT36H00M00S"/>'
            '<table:table-cell office:value-type="boolean" office:boolean-value="true"/>'
            '<table:table-cell office:value-type="percentage" office:value="0.5"/>'
        )
        with open_workbook(one_sheet(row(cells))) as wb:
            values = wb.open_sheet(0).next_row()
            assert values[0].to_python() == date(2021, 1, 1)
            assert values[1].value == datetime(2024, 2, 29, 13, 30)
            assert values[2].kind is CellKind.DURATION
            assert values[2].value == timedelta(hours=36)
            assert values[3].value is True
            assert values[4].value == 0.5

    def test_text_spacing(self):
        cell = (
            '<table:table-cell office:value-type="string">'
            '<text:p>a<text:s text:c="3"/>b<text:tab/>c</text:p>'
            "<text:p>second <text:span>line</text:span></text:p>"
            "</table:table-cell>"
        )
        with open_workbook(one_sheet(row(cell))) as wb:
            assert wb.open_sheet(0).next_row()[0].value == "a   b\tc\nsecond line"

    def test_string_value_attribute_wins(self):
        cell = '<table:table-cell office:value-type="string" office:string-value="stored"><text:p>shown</text:p></table:table-cell>'
        with open_workbook(one_sheet(row(cell))) as wb:
            assert wb.open_sheet(0).next_row()[0].value == "stored"

    def test_errors(self):
        cells = (
            '<table:table-cell office:value-type="string" office:string-value="" calcext:value-type="error">'
            "<text:p>#DIV/0!</text:p></table:table-cell>"
            '<table:table-cell office:value-type="date" office:date-value="garbage"/>'
            '<table:table-cell office:value-type="mystery"/>'
        )
        with open_workbook(one_sheet(row(cells))) as wb:
            values = wb.open_sheet(0).next_row()
            assert values[0].value is ErrorType.DIV
            assert values[1].kind is CellKind.ERROR
            assert values[2].kind is CellKind.ERROR
            assert len(wb.warnings) == 2

    def test_invalid_repeat_count(self):
        with open_workbook(one_sheet(row(text_cell("x"), repeat=0))) as wb:
            assert [r.index for r in wb.open_sheet(0)] == [0]
            assert len(wb.warnings) == 1


class TestOdsSheets:
    """Tests for sheet-level behavior."""

    def test_no_dimension(self, ods_workbook):
        with open_workbook(ods_workbook) as wb:
            assert wb.sheet_metadata("Data").dimension is None

    def test_merged_spans(self):
        cells = (
            '<table:table-cell office:value-type="string" table:number-columns-spanned="2" '
            'table:number-rows-spanned="2"><text:p>m</text:p></table:table-cell>'
            "<table:covered-table-cell/>"
        )
        rows = row(cells) + row("<table:covered-table-cell/>" * 2)
        with open_workbook(one_sheet(rows)) as wb:
            assert [m.ref for m in wb.merged_ranges(0)] == ["A1:B2"]
            assert wb.open_sheet(0).to_python() == [["m"]]

    def test_reads_second_sheet_only(self, ods_workbook):
        with open_workbook(ods_workbook) as wb:
            cursor = wb.open_sheet("Other")
            assert cursor.next_row().values() == ["second"]
            assert cursor.next_row() is None
            assert cursor.next_row() is None


class TestOdsHelpers:
    """Tests for parse_duration and cell_range_address."""

    @pytest.mark.parametrize("text,expected", [
        ("PT36H15M00S", timedelta(hours=36, minutes=15)),
        ("P1DT2H", timedelta(days=1, hours=2)),
        ("-PT1.5S", -timedelta(seconds=1.5)),
    ])
    def test_parse_duration(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["P1Y", "P", "PT", "36:00:00"])
    def test_parse_duration_rejects(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    def test_range_address(self):
        assert cell_range_address("$Data.$A$1:.$B$2") == "Data!$A$1:$B$2"
        assert cell_range_address("$'My Sheet'.$A$1") == "'My Sheet'!$A$1"
        assert cell_range_address("$Data.$A$1:$Other.$B$2") == "Data!$A$1:Other!$B$2"
