"""Pytest fixtures for xls-decode tests."""

from __future__ import annotations

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from openpyxl import Workbook
from openpyxl.workbook.defined_name import DefinedName

import builders


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test inputs."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def simple_workbook(temp_dir) -> Path:
    """Create a simple workbook with basic data."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Data"

    ws["A1"] = "Name"
    ws["B1"] = "Value"
    ws["A2"] = "Item 1"
    ws["B2"] = 100
    ws["A3"] = "Item 2"
    ws["B3"] = 2.5
    ws["A4"] = "Total"
    ws["B4"] = "=SUM(B2:B3)"  # No cached value
    ws["C5"] = True

    path = temp_dir / "simple.xlsx"
    wb.save(path)
    wb.close()
    return path


@pytest.fixture
def multi_sheet_workbook(temp_dir) -> Path:
    """Create a workbook with multiple sheets including hidden ones."""
    wb = Workbook()

    ws1 = wb.active
    ws1.title = "Visible"
    ws1["A1"] = "This is visible"

    ws2 = wb.create_sheet("Hidden")
    ws2["A1"] = "This is hidden"
    ws2.sheet_state = "hidden"

    ws3 = wb.create_sheet("VeryHidden")
    ws3["A1"] = "This is very hidden"
    ws3.sheet_state = "veryHidden"

    path = temp_dir / "multi_sheet.xlsx"
    wb.save(path)
    wb.close()
    return path


@pytest.fixture
def feature_workbook(temp_dir) -> Path:
    """Create a workbook with merged cells, gaps and sparse rows."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Features"

    for i in range(1, 11):
        ws[f"A{i}"] = f"Item {i}"
        ws[f"B{i}"] = i * 10

    ws.merge_cells("D1:E2")
    ws["D1"] = "Merged"

    # Row 20 only has a value in column C
    ws["C20"] = "far"

    path = temp_dir / "features.xlsx"
    wb.save(path)
    wb.close()
    return path


@pytest.fixture
def date_workbook(temp_dir) -> Path:
    """Create a workbook with date, time and duration cells."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Dates"

    ws["A1"] = datetime(2021, 1, 1)
    ws["A1"].number_format = "yyyy-mm-dd"
    ws["A2"] = datetime(2024, 2, 29, 13, 30)
    ws["A3"] = timedelta(hours=36)
    ws["A4"] = 44197
    ws["A4"].number_format = "0.00"

    path = temp_dir / "dates.xlsx"
    wb.save(path)
    wb.close()
    return path


@pytest.fixture
def error_workbook(temp_dir) -> Path:
    """Create a workbook with error cells."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Errors"

    ws["A1"] = "#REF!"
    ws["A2"] = "#N/A"
    ws["A3"] = "#DIV/0!"

    path = temp_dir / "errors.xlsx"
    wb.save(path)
    wb.close()
    return path


@pytest.fixture
def named_range_workbook(temp_dir) -> Path:
    """Create a workbook with named ranges."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Data"

    ws["A1"] = 100
    ws["A2"] = 200
    ws["A3"] = 300

    wb.defined_names.add(DefinedName("MyRange", attr_text="Data!$A$1:$A$3"))
    wb.defined_names.add(DefinedName("TaxRate", attr_text="0.25"))

    path = temp_dir / "named_ranges.xlsx"
    wb.save(path)
    wb.close()
    return path


@pytest.fixture
def xls_workbook(temp_dir) -> Path:
    """Create a legacy binary workbook inside a compound file."""
    stream = builders.biff_workbook(
        [
            ("Data", [
                builders.dimension(0, 2, 0, 1),
                builders.labelsst(0, 0, 0),
                builders.labelsst(0, 1, 1),
                builders.label(1, 0, "Item 1"),
                builders.rk(1, 1, builders.rk_int(100)),
                builders.label(2, 0, "Item 2"),
                builders.number(2, 1, 2.5),
            ]),
            ("Other", [builders.label(0, 0, "second")]),
        ],
        strings=["Name", "Value"],
    )
    path = temp_dir / "simple.xls"
    path.write_bytes(builders.compound_file(stream))
    return path


@pytest.fixture
def xlsb_workbook(temp_dir) -> Path:
    """Create an xlsb workbook with two sheets."""
    data = builders.xlsb_sheet(
        [
            builders.brt_row(0),
            builders.brt_isst(0, 0),
            builders.brt_isst(1, 1),
            builders.brt_row(1),
            builders.brt_string(0, "Item 1"),
            builders.brt_rk(1, builders.rk_int(100)),
            builders.brt_row(2),
            builders.brt_string(0, "Item 2"),
            builders.brt_real(1, 2.5),
        ],
        dim=(0, 2, 0, 1),
        merged=[(4, 5, 0, 1)],
    )
    other = builders.xlsb_sheet([builders.brt_row(0), builders.brt_string(0, "second")])
    path = temp_dir / "simple.xlsb"
    path.write_bytes(builders.xlsb_package([("Data", data), ("Other", other)], strings=["Name", "Value"]))
    return path


@pytest.fixture
def ods_workbook(temp_dir) -> Path:
    """Create an OpenDocument spreadsheet with two tables."""
    body = (
        '<table:table table:name="Data">'
        '<table:table-column table:number-columns-repeated="2"/>'
        "<table:table-row>"
        '<table:table-cell office:value-type="string"><text:p>Name</text:p></table:table-cell>'
        '<table:table-cell office:value-type="string"><text:p>Value</text:p></table:table-cell>'
        "</table:table-row>"
        "<table:table-row>"
        '<table:table-cell office:value-type="string"><text:p>Item 1</text:p></table:table-cell>'
        '<table:table-cell office:value-type="float" office:value="100"><text:p>100</text:p></table:table-cell>'
        "</table:table-row>"
        "<table:table-row>"
        '<table:table-cell office:value-type="string"><text:p>Item 2</text:p></table:table-cell>'
        '<table:table-cell office:value-type="float" office:value="2.5"><text:p>2.5</text:p></table:table-cell>'
        "</table:table-row>"
        '<table:table-row table:number-rows-repeated="1048573">'
        '<table:table-cell table:number-columns-repeated="1024"/>'
        "</table:table-row>"
        "</table:table>"
        '<table:table table:name="Other">'
        "<table:table-row>"
        '<table:table-cell office:value-type="string"><text:p>second</text:p></table:table-cell>'
        "</table:table-row>"
        "</table:table>"
    )
    path = temp_dir / "simple.ods"
    path.write_bytes(builders.ods_package(body))
    return path
