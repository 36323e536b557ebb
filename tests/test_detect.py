"""Tests for format detection."""

from __future__ import annotations

import io
import zipfile

import pytest

import builders
from xls_decode import FormatKind, UnsupportedFormatError, detect_format, open_workbook
from xls_decode.containers import open_source
from xls_decode.detect import ContainerKind, detect_container, open_container


class TestDetectContainer:
    """Tests for detect_container."""

    def test_compound_file(self):
        assert detect_container(builders.CFB_SIGNATURE + bytes(24)) is ContainerKind.CFB

    def test_zip(self):
        assert detect_container(b"PK\x03\x04" + bytes(26)) is ContainerKind.ZIP

    def test_bare_biff8(self):
        assert detect_container(builders.bof()) is ContainerKind.BIFF

    def test_bare_biff5(self):
        assert detect_container(builders.bof(version=0x0500)) is ContainerKind.BIFF

    def test_legacy_biff_rejected(self):
        with pytest.raises(UnsupportedFormatError, match="BIFF4"):
            detect_container(b"\x09\x04\x06\x00\x00\x00\x10\x00")

    @pytest.mark.parametrize("prefix", [b"", b"PK", b"hello world, not a workbook", b"%PDF-1.7"])
    def test_unknown(self, prefix):
        with pytest.raises(UnsupportedFormatError):
            detect_container(prefix)


class TestDetectFormat:
    """Tests for detect_format."""

    def test_xls(self):
        assert detect_format(builders.CFB_SIGNATURE) is FormatKind.XLS

    def test_xlsx_by_entries(self):
        names = ["[Content_Types].xml", "xl/workbook.xml", "xl/worksheets/sheet1.xml"]
        assert detect_format(b"PK\x03\x04" + bytes(40), names) is FormatKind.XLSX

    def test_xlsb_by_entries(self):
        names = ["[Content_Types].xml", "xl/workbook.bin"]
        assert detect_format(b"PK\x03\x04" + bytes(40), names) is FormatKind.XLSB

    def test_ods_by_mimetype(self):
        data = builders.ods_package("")
        assert detect_format(data[:128]) is FormatKind.ODS

    def test_ods_by_entries(self):
        names = ["mimetype", "content.xml", "META-INF/manifest.xml"]
        assert detect_format(b"PK\x03\x04" + bytes(40), names) is FormatKind.ODS

    def test_other_opendocument_rejected(self):
        data = builders.ods_package("", mimetype="application/vnd.oasis.opendocument.text")
        with pytest.raises(UnsupportedFormatError, match="not a spreadsheet"):
            detect_format(data[:128])

    def test_zip_without_workbook(self):
        with pytest.raises(UnsupportedFormatError):
            detect_format(b"PK\x03\x04" + bytes(40), ["word/document.xml"])

    def test_zip_needs_entries(self):
        with pytest.raises(UnsupportedFormatError):
            detect_format(b"PK\x03\x04" + bytes(40))


class TestOpenContainer:
    """Tests for open_container."""

    def test_opens_each_format(self, xls_workbook, simple_workbook, xlsb_workbook, ods_workbook):
        for path, kind in [
            (xls_workbook, FormatKind.XLS),
            (simple_workbook, FormatKind.XLSX),
            (xlsb_workbook, FormatKind.XLSB),
            (ods_workbook, FormatKind.ODS),
        ]:
            opened = open_source(path)
            container, detected = open_container(opened)
            assert detected is kind
            container.close()
            opened.close()

    def test_compound_file_without_workbook(self):
        data = builders.compound_file(b"\x00" * 16, name="Contents")
        with pytest.raises(UnsupportedFormatError, match="no workbook stream"):
            open_container(open_source(data))

    def test_extension_is_ignored(self, temp_dir, ods_workbook):
        renamed = temp_dir / "really_ods.xlsx"
        renamed.write_bytes(ods_workbook.read_bytes())
        _, kind = open_container(open_source(renamed))
        assert kind is FormatKind.ODS

    def test_deflated_ods_mimetype(self):
        data = builders.ods_package(
            "<table:table table:name=\"S\"><table:table-row><table:table-cell "
            "office:value-type=\"float\" office:value=\"3\"/></table:table-row></table:table>",
            stored_mimetype=False,
        )
        assert detect_format(data[:128], ["mimetype", "content.xml"]) is FormatKind.ODS
        with open_workbook(data) as wb:
            assert wb.format is FormatKind.ODS
            assert wb.open_sheet("S").to_python() == [[3]]

    def test_deflated_other_opendocument_rejected(self):
        data = builders.ods_package(
            "", mimetype="application/vnd.oasis.opendocument.text", stored_mimetype=False
        )
        with pytest.raises(UnsupportedFormatError, match="not a spreadsheet"):
            open_container(open_source(data))

    def test_plain_zip_rejected(self):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr("readme.txt", "hello")
        with pytest.raises(UnsupportedFormatError):
            open_container(open_source(buffer.getvalue()))
