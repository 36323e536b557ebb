"""Tests for shared resource tables and number format classification."""

from __future__ import annotations

import pytest

from xls_decode import DateEpoch, MalformedContainerError, NumberFormatKind
from xls_decode.tables import (
    TableLookupError,
    TablesBuilder,
    builtin_format_kind,
    classify_format_code,
)


@pytest.fixture
def warnings():
    return []


@pytest.fixture
def builder(warnings):
    return TablesBuilder(warnings.append)


class TestClassifyFormatCode:
    """Tests for classify_format_code."""

    @pytest.mark.parametrize(
        "code,expected",
        [
            ("General", NumberFormatKind.GENERAL),
            ("@", NumberFormatKind.TEXT),
            ("0.00", NumberFormatKind.NUMERIC),
            ("#,##0;[Red]-#,##0", NumberFormatKind.NUMERIC),
            ("0.00E+00", NumberFormatKind.NUMERIC),
            ("yyyy-mm-dd", NumberFormatKind.DATE),
            ("h:mm:ss", NumberFormatKind.TIME),
            ("yyyy-mm-dd h:mm", NumberFormatKind.DATETIME),
            ("[h]:mm:ss", NumberFormatKind.DURATION),
            ('"Day" 0', NumberFormatKind.NUMERIC),
            ("[$-409]mmmm d, yyyy", NumberFormatKind.DATE),
        ],
    )
    def test_classification(self, code, expected):
        assert classify_format_code(code) is expected

    def test_builtin_ids(self):
        assert builtin_format_kind(0) is NumberFormatKind.GENERAL
        assert builtin_format_kind(14) is NumberFormatKind.DATE
        assert builtin_format_kind(46) is NumberFormatKind.DURATION
        assert builtin_format_kind(30) is NumberFormatKind.DATE
        assert builtin_format_kind(200) is None

    @pytest.mark.parametrize("format_id", [23, 26, 59, 67, 163])
    def test_reserved_ids_without_code_are_general(self, format_id):
        assert builtin_format_kind(format_id) is NumberFormatKind.GENERAL

    def test_thai_temporal_ids(self):
        assert builtin_format_kind(71) is NumberFormatKind.DATE
        assert builtin_format_kind(76) is NumberFormatKind.TIME
        assert builtin_format_kind(79) is NumberFormatKind.DURATION

    def test_undefined_custom_format(self, builder):
        builder.add_style(59)
        builder.add_style(170)
        tables = builder.build()
        assert tables.style_kind(0) is NumberFormatKind.GENERAL
        with pytest.raises(TableLookupError):
            tables.style_kind(1)


class TestSharedResourceTables:
    """Tests for lookups on built tables."""

    def test_string_lookup(self, builder):
        builder.add_string("a")
        builder.add_string("b")
        tables = builder.build()
        assert tables.string(1) == "b"

    def test_string_out_of_range(self, builder):
        builder.add_string("a")
        tables = builder.build()
        with pytest.raises(TableLookupError):
            tables.string(5)

    def test_malformed_string_keeps_ids(self, builder, warnings):
        builder.add_string("a")
        builder.add_malformed_string("bad bytes")
        builder.add_string("c")
        tables = builder.build()
        assert tables.string(2) == "c"
        with pytest.raises(TableLookupError):
            tables.string(1)
        assert warnings[0].scope == "shared_strings"

    def test_style_resolves_custom_format(self, builder):
        builder.add_format(164, "dd/mm/yyyy")
        builder.add_style(0)
        builder.add_style(164)
        tables = builder.build()
        assert tables.style_kind(0) is NumberFormatKind.GENERAL
        assert tables.style_kind(1) is NumberFormatKind.DATE

    def test_unknown_style(self, builder):
        builder.add_style(0)
        tables = builder.build()
        with pytest.raises(TableLookupError):
            tables.style_kind(3)

    def test_no_styles_means_general(self, builder):
        assert builder.build().style_kind(0) is NumberFormatKind.GENERAL

    def test_missing_format_code_is_warned(self, builder, warnings):
        builder.add_format(170, None)
        builder.build()
        assert warnings[0].scope == "number_formats"

    def test_epoch(self, builder):
        builder.set_epoch(DateEpoch.EXCEL_1904)
        assert builder.build().epoch is DateEpoch.EXCEL_1904


class TestDeclaredCounts:
    """Tests for declared shared string counts."""

    def test_short_table_is_strict(self, builder):
        builder.declare_string_count(3)
        builder.add_string("a")
        with pytest.raises(MalformedContainerError):
            builder.build()

    def test_short_table_lenient(self, builder, warnings):
        builder.declare_string_count(3)
        builder.add_string("a")
        tables = builder.build(strict_count=False)
        assert tables.strings == ("a",)
        assert len(warnings) == 1

    def test_negative_count(self, builder):
        with pytest.raises(MalformedContainerError):
            builder.declare_string_count(-1)
