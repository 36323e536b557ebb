"""Base decoder protocol and shared cell-resolution helpers."""

from __future__ import annotations

import dataclasses
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterator, Mapping

from ..cells import numeric_cell
from ..config import ReadOptions
from ..containers import ContainerView
from ..cursor import SheetCursor
from ..errors import (
    ErrorCode,
    PasswordError,
    SheetNotFoundError,
    WorkbookOpenError,
    XlsDecodeError,
)
from ..models import (
    EMPTY,
    CellValue,
    DecodeWarning,
    Dimensions,
    FormatKind,
    MergedRange,
    Row,
    SheetMetadata,
    WorkbookMetadata,
)
from ..tables import SharedResourceTables, TableLookupError

logger = logging.getLogger(__name__)


class DecoderState(Enum):
    """Lifecycle of a decoder."""

    OPENING = "opening"
    HEADER_PARSED = "header_parsed"
    READY = "ready"
    CLOSED = "closed"


class WarningLog:
    """Accumulates decode warnings, keeping at most ``limit`` of them."""

    def __init__(self, limit: int | None = None):
        self.limit = limit
        self.items: list[DecodeWarning] = []
        self.dropped = 0

    def __call__(self, warning: DecodeWarning) -> None:
        self.add(warning)

    def add(self, warning: DecodeWarning) -> None:
        logger.debug("%s: %s", warning.scope, warning.message)
        if self.limit is None or len(self.items) < self.limit:
            self.items.append(warning)
            return
        if self.dropped == 0:
            self.items.append(DecodeWarning(
                "workbook",
                f"Limited to {self.limit} warnings",
            ))
        self.dropped += 1


class BaseDecoder(ABC):
    """Three-phase decoder shared by all formats.

    1. ``open()`` parses the header (sheet list, tables, names).
    2. ``sheet()`` resolves a sheet by index or name.
    3. ``open_sheet()`` returns a lazy cursor over the sheet's rows.
    """

    format: FormatKind

    def __init__(
        self,
        container: ContainerView,
        options: ReadOptions | None = None,
        warnings: WarningLog | None = None,
    ):
        self.container = container
        self.options = options or ReadOptions()
        self.warnings = warnings if warnings is not None else WarningLog(self.options.max_warnings)
        self.state = DecoderState.OPENING
        self.tables = SharedResourceTables()
        self.metadata = WorkbookMetadata(format=self.format)

    # -- phase 1 ------------------------------------------------------------

    def open(self) -> WorkbookMetadata:
        """Run the header phase.

        Raises:
            WorkbookOpenError: If anything in the header is unusable.
            PasswordError: If the workbook is encrypted.
        """
        try:
            self._parse_header()
        except (WorkbookOpenError, PasswordError):
            raise
        except XlsDecodeError as exc:
            raise WorkbookOpenError(
                f"Could not open {self.format.value} workbook: {exc.message}",
                error_code=ErrorCode.WORKBOOK_OPEN_FAILED,
                details={"cause": exc.to_dict()},
            ) from exc
        except Exception as exc:
            raise WorkbookOpenError(
                f"Could not open {self.format.value} workbook: {exc}",
                details={"cause": type(exc).__name__},
            ) from exc
        self.state = DecoderState.HEADER_PARSED

        if self.options.epoch is not None:
            self.tables = dataclasses.replace(self.tables, epoch=self.options.epoch)
        self.metadata.epoch = self.tables.epoch
        self.state = DecoderState.READY
        logger.debug(
            "Opened %s workbook: %d sheets, %d defined names",
            self.format.value, len(self.metadata.sheets), len(self.metadata.defined_names),
        )
        return self.metadata

    @abstractmethod
    def _parse_header(self) -> None:
        """Fill ``self.metadata`` and ``self.tables``."""

    # -- phase 2 ------------------------------------------------------------

    def sheet(self, key: int | str) -> SheetMetadata:
        """Sheet metadata by 0-based index or by name.

        Raises:
            SheetNotFoundError: If nothing matches.
        """
        sheets = self.metadata.sheets
        if isinstance(key, int) and not isinstance(key, bool):
            if 0 <= key < len(sheets):
                return sheets[key]
            raise SheetNotFoundError(key)
        for sheet in sheets:
            if sheet.name == key:
                return sheet
        raise SheetNotFoundError(key)

    def read_dimension(self, sheet: SheetMetadata) -> Dimensions | None:
        """Declared extent of a sheet, None when the format has none."""
        return None

    @abstractmethod
    def read_merged_ranges(self, sheet: SheetMetadata) -> list[MergedRange]:
        """Merged ranges of a sheet."""

    # -- phase 3 ------------------------------------------------------------

    def open_sheet(self, sheet: SheetMetadata) -> SheetCursor:
        """Start a lazy cursor over the rows of a sheet."""
        self.check_ready()
        logger.debug("Opening sheet %r", sheet.name)
        return SheetCursor(sheet, self._iter_rows(sheet), self.warnings)

    @abstractmethod
    def _iter_rows(self, sheet: SheetMetadata) -> Iterator[Row]:
        """Generator of the rows of a sheet.

        Raises:
            SheetTruncatedError: If the row stream ends early.
        """

    def close(self) -> None:
        if self.state is not DecoderState.CLOSED:
            self.container.close()
            self.state = DecoderState.CLOSED

    def check_ready(self) -> None:
        if self.state is not DecoderState.READY:
            raise WorkbookOpenError(
                f"Workbook is {self.state.value}",
                error_code=ErrorCode.WORKBOOK_CLOSED,
            )

    # -- cell helpers -------------------------------------------------------

    def _warn(
        self,
        scope: str,
        message: str,
        row: int | None = None,
        col: int | None = None,
    ) -> None:
        self.warnings.add(DecodeWarning(scope, message, row=row, col=col))

    def _numeric(
        self,
        value: int | float,
        style: int,
        sheet: SheetMetadata,
        row: int,
        col: int,
    ) -> CellValue:
        """Numeric cell resolved through its style's number format."""
        try:
            kind = self.tables.style_kind(style)
            return numeric_cell(value, kind, self.tables.epoch)
        except (TableLookupError, ValueError) as exc:
            self._warn(f"sheet:{sheet.name}", str(exc), row, col)
            return CellValue.error()

    def _shared_string(self, index: int, sheet: SheetMetadata, row: int, col: int) -> CellValue:
        try:
            return CellValue.string(self.tables.string(index))
        except TableLookupError as exc:
            self._warn(f"sheet:{sheet.name}", str(exc), row, col)
            return CellValue.error()


def make_row(index: int, cells: Mapping[int, CellValue]) -> Row | None:
    """Build a positional row from sparse cells.

    Columns without a cell become EMPTY; trailing empty cells are dropped.
    Returns None when the row holds no value at all.
    """
    occupied = [col for col, cell in cells.items() if not cell.is_empty]
    if not occupied:
        return None
    width = max(occupied) + 1
    return Row(index, tuple(cells.get(col, EMPTY) for col in range(width)))
