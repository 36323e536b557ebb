"""Tests for data models and exceptions."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

import pytest

from xls_decode import (
    EMPTY,
    CellKind,
    CellValue,
    Dimensions,
    ErrorType,
    MergedRange,
    NumberFormatKind,
    Row,
    SheetNotFoundError,
    SheetTruncatedError,
    SheetVisibility,
    WorkbookOpenError,
    XlsDecodeError,
)
from xls_decode.errors import ErrorCode, PasswordError


class TestCellValue:
    """Tests for CellValue."""

    def test_constructors_set_kind(self):
        assert CellValue.boolean(1).kind is CellKind.BOOL
        assert CellValue.integer(3).kind is CellKind.INT
        assert CellValue.number(3).value == 3.0
        assert CellValue.string("x").kind is CellKind.STRING
        assert CellValue.duration(timedelta(hours=1)).format_kind is NumberFormatKind.DURATION

    def test_empty_is_shared(self):
        assert CellValue.empty() is EMPTY
        assert EMPTY.is_empty

    def test_error_default_is_decode(self):
        cell = CellValue.error()
        assert cell.is_error
        assert cell.value is ErrorType.DECODE
        assert cell.to_python() == "#DECODE!"

    def test_to_python_narrows_dates(self):
        stamp = datetime(2021, 1, 1)
        assert CellValue.timestamp(stamp, NumberFormatKind.DATE).to_python() == date(2021, 1, 1)
        assert CellValue.timestamp(stamp).to_python() == stamp

    def test_to_python_date_with_time_part_stays_datetime(self):
        stamp = datetime(2021, 1, 1, 12, 0)
        assert CellValue.timestamp(stamp, NumberFormatKind.DATE).to_python() == stamp

    def test_to_python_time(self):
        stamp = datetime(1899, 12, 30, 6, 30)
        assert CellValue.timestamp(stamp, NumberFormatKind.TIME).to_python() == time(6, 30)


class TestRow:
    """Tests for Row."""

    def test_sequence_protocol(self):
        row = Row(2, (CellValue.integer(1), EMPTY, CellValue.string("b")))
        assert len(row) == 3
        assert row[2].value == "b"
        assert [cell.kind for cell in row] == [CellKind.INT, CellKind.EMPTY, CellKind.STRING]
        assert row.values() == [1, None, "b"]

    def test_empty_row(self):
        assert Row(0).is_empty


class TestRanges:
    """Tests for Dimensions and MergedRange."""

    def test_merged_ref(self):
        assert MergedRange(start=(0, 3), end=(1, 4)).ref == "D1:E2"

    def test_single_cell_ref(self):
        assert MergedRange(start=(4, 0), end=(4, 0)).ref == "A5"

    def test_dimension_size(self):
        dim = Dimensions(start=(0, 0), end=(9, 2))
        assert dim.height == 10
        assert dim.width == 3
        assert dim.ref == "A1:C10"


class TestEnums:
    """Tests for enum helpers."""

    def test_visibility_values(self):
        assert SheetVisibility.VISIBLE.value == "visible"
        assert SheetVisibility.VERY_HIDDEN.value == "very_hidden"

    def test_error_from_text(self):
        assert ErrorType.from_text("#n/a") is ErrorType.NA
        assert ErrorType.from_text(" #DIV/0! ") is ErrorType.DIV
        assert ErrorType.from_text("#BOGUS") is None

    def test_temporal_kinds(self):
        assert NumberFormatKind.DATE.is_temporal
        assert not NumberFormatKind.DURATION.is_temporal
        assert not NumberFormatKind.NUMERIC.is_temporal


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_error_codes(self):
        assert SheetNotFoundError("Nope").error_code is ErrorCode.SHEET_NOT_FOUND
        assert PasswordError("locked").error_code is ErrorCode.PASSWORD_PROTECTED

    def test_password_is_open_error(self):
        assert issubclass(PasswordError, WorkbookOpenError)
        assert issubclass(WorkbookOpenError, XlsDecodeError)

    def test_sheet_not_found_is_lookup_error(self):
        with pytest.raises(LookupError):
            raise SheetNotFoundError(3)

    def test_to_dict(self):
        exc = SheetTruncatedError("Data", "record cut short", last_row=4)
        result = exc.to_dict()
        assert result["error_code"] == "E3002"
        assert result["error_type"] == "SheetTruncatedError"
        assert result["details"] == {"sheet": "Data", "last_row": 4}
        assert str(exc).startswith("[E3002]")
