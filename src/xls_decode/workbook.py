"""
Opening workbooks.

This module provides open_workbook(), which detects the format of a
spreadsheet, runs the matching decoder's header phase and returns a
Workbook handle for lazy, sheet-by-sheet reading.

Example:
    >>> from xls_decode import open_workbook
    >>> with open_workbook("report.xls") as wb:
    ...     print(wb.sheet_names())
    ...     for row in wb.open_sheet("Summary"):
    ...         print(row.values())
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, BinaryIO

from .config import ReadOptions
from .containers import OpenedSource, Source, open_source
from .cursor import SheetCursor
from .decoders import DECODERS, BaseDecoder
from .detect import open_container
from .models import (
    DateEpoch,
    DecodeWarning,
    DefinedName,
    FormatKind,
    MergedRange,
    SheetMetadata,
)

logger = logging.getLogger(__name__)


def open_workbook(source: Source, options: ReadOptions | None = None) -> Workbook:
    """Open a spreadsheet of any supported format.

    Only the header is decoded here (sheet list, shared strings, number
    formats, defined names); cell data is read when a sheet is opened.

    Args:
        source: Path, bytes, or a binary file object.
        options: Optional decoding options.

    Returns:
        Workbook handle. Use it as a context manager or call close().

    Raises:
        UnsupportedFormatError: If the signature matches no format.
        ContainerError: If the container cannot be read.
        WorkbookOpenError: If the header is unusable.
        PasswordError: If the workbook is encrypted.

    Example:
        >>> wb = open_workbook("data.xlsx")
        >>> cursor = wb.open_sheet(0)
        >>> first = cursor.next_row()
        >>> wb.close()
    """
    opened = open_source(source)
    try:
        container, kind = open_container(opened)
    except Exception:
        opened.close()
        raise

    decoder = DECODERS[kind](container, options)
    try:
        decoder.open()
    except Exception:
        decoder.close()
        opened.close()
        raise
    logger.debug("Opened %s as %s", opened.path or type(source).__name__, kind.value)
    return Workbook(decoder, opened)


class Workbook:
    """An open spreadsheet.

    Owns the decoder (and through it the container handle and the shared
    tables). Sheets are read lazily through cursors; the workbook keeps no
    cell data.

    Attributes:
        path: Filesystem path, when the source was one.
    """

    def __init__(self, decoder: BaseDecoder, source: OpenedSource):
        self._decoder = decoder
        self._source = source
        self._resolved: dict[int, SheetMetadata] = {}
        self.path: Path | None = source.path

    # =========================================================================
    # Constructors
    # =========================================================================

    @classmethod
    def from_path(cls, path: str | os.PathLike[str], options: ReadOptions | None = None) -> Workbook:
        """Open a workbook from a filesystem path."""
        return open_workbook(Path(path), options)

    @classmethod
    def from_filelike(cls, filelike: BinaryIO, options: ReadOptions | None = None) -> Workbook:
        """Open a workbook from a binary file object; it is not closed by close()."""
        return open_workbook(filelike, options)

    @classmethod
    def from_object(cls, source: Any, options: ReadOptions | None = None) -> Workbook:
        """Open a workbook from a path, bytes or a binary file object."""
        return open_workbook(source, options)

    # =========================================================================
    # Metadata
    # =========================================================================

    @property
    def format(self) -> FormatKind:
        return self._decoder.format

    @property
    def epoch(self) -> DateEpoch:
        """Date epoch used for serial dates."""
        return self._decoder.metadata.epoch

    def sheet_names(self) -> list[str]:
        """Sheet names in workbook order."""
        return self._decoder.metadata.sheet_names

    @property
    def sheets_metadata(self) -> list[SheetMetadata]:
        """Metadata of every sheet, in workbook order."""
        return [self.sheet_metadata(index) for index in range(len(self._decoder.metadata.sheets))]

    def sheet_metadata(self, key: int | str) -> SheetMetadata:
        """Metadata of one sheet, by 0-based index or name.

        The declared dimension is read from the sheet the first time it is
        asked for; later calls return the same object.

        Raises:
            SheetNotFoundError: If nothing matches.
        """
        sheet = self._decoder.sheet(key)
        resolved = self._resolved.get(sheet.index)
        if resolved is None:
            self._decoder.check_ready()
            dimension = self._decoder.read_dimension(sheet)
            resolved = dataclasses.replace(sheet, dimension=dimension)
            self._resolved[sheet.index] = resolved
        return resolved

    def defined_names(self) -> dict[str, str]:
        """Defined names mapped to their reference text.

        When a name exists both globally and per sheet, the global one wins.
        """
        names: dict[str, str] = {}
        for name in sorted(self.defined_name_list, key=lambda n: n.scope is None):
            names[name.name] = name.reference
        return names

    @property
    def defined_name_list(self) -> list[DefinedName]:
        """Defined names with their scope and hidden flag."""
        return list(self._decoder.metadata.defined_names)

    def merged_ranges(self, key: int | str) -> list[MergedRange]:
        """Merged cell ranges of a sheet.

        Raises:
            SheetNotFoundError: If no sheet matches.
        """
        sheet = self._decoder.sheet(key)
        merged = self._decoder.metadata.merged
        if sheet.index not in merged:
            self._decoder.check_ready()
            merged[sheet.index] = tuple(self._decoder.read_merged_ranges(sheet))
        return list(merged[sheet.index])

    @property
    def warnings(self) -> list[DecodeWarning]:
        """Non-fatal problems found so far (header and every cursor)."""
        return list(self._decoder.warnings.items)

    # =========================================================================
    # Sheets
    # =========================================================================

    def open_sheet(self, key: int | str) -> SheetCursor:
        """Start a lazy cursor over a sheet's rows.

        Every call returns a new cursor reading the sheet from its start.

        Raises:
            SheetNotFoundError: If nothing matches.
            WorkbookOpenError: If the workbook has been closed.
        """
        return self._decoder.open_sheet(self.sheet_metadata(key))

    def get_sheet_by_name(self, name: str) -> SheetCursor:
        return self.open_sheet(name)

    def get_sheet_by_index(self, index: int) -> SheetCursor:
        return self.open_sheet(index)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Release the container and, when owned, the underlying file."""
        self._decoder.close()
        self._source.close()

    def __enter__(self) -> Workbook:
        return self

    def __exit__(self, exc_type, exc_value, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Workbook(format={self.format.value!r}, sheets={self.sheet_names()!r})"
