"""Lazy, forward-only row cursor over one sheet."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator

from .errors import SheetTruncatedError
from .models import DecodeWarning, Dimensions, Row, SheetMetadata

logger = logging.getLogger(__name__)


class SheetCursor:
    """Pulls the rows of one sheet on demand.

    A cursor is single-pass and cannot be restarted; open the sheet again
    from the workbook to read it a second time. Row indexes are strictly
    increasing. After the last row, ``next_row()`` keeps returning None.
    If the sheet turns out to be truncated, ``next_row()`` raises
    SheetTruncatedError, and keeps raising it on every later call.

    Example:
        >>> cursor = wb.open_sheet("Data")
        >>> while (row := cursor.next_row()) is not None:
        ...     print(row.index, row.values())
    """

    def __init__(
        self,
        sheet: SheetMetadata,
        rows: Iterator[Row],
        warn: Callable[[DecodeWarning], None],
    ):
        self.sheet = sheet
        self._rows = rows
        self._warn = warn
        self._last_index: int | None = None
        self._failure: SheetTruncatedError | None = None
        self._done = False
        self.rows_read = 0

    @property
    def name(self) -> str:
        return self.sheet.name

    @property
    def dimensions(self) -> Dimensions | None:
        """Declared extent of the sheet, if the source has one."""
        return self.sheet.dimension

    def next_row(self) -> Row | None:
        """The next row, or None once the sheet is exhausted.

        Raises:
            SheetTruncatedError: If the sheet's row stream is cut short.
        """
        if self._failure is not None:
            raise self._failure
        while not self._done:
            try:
                row = next(self._rows)
            except StopIteration:
                self.close()
                return None
            except SheetTruncatedError as exc:
                logger.warning("Sheet %r truncated after %d rows", self.name, self.rows_read)
                self._failure = exc
                self.close()
                raise
            if self._last_index is not None and row.index <= self._last_index:
                self._warn(DecodeWarning(
                    f"sheet:{self.name}",
                    f"Row {row.index} out of order after row {self._last_index}; skipped",
                    row=row.index,
                ))
                continue
            self._last_index = row.index
            self.rows_read += 1
            return row
        return None

    def __iter__(self) -> Iterator[Row]:
        return self

    def __next__(self) -> Row:
        row = self.next_row()
        if row is None:
            raise StopIteration
        return row

    def to_python(self, skip_empty_area: bool = True, nrows: int | None = None) -> list[list[Any]]:
        """Remaining rows as a rectangular grid of Python values.

        Rows missing from the source come out as rows of None, and every
        row is padded to the width of the widest one.

        Args:
            skip_empty_area: Start the grid at the first used row and
                column instead of at column 0 and the first unread row.
            nrows: Number of grid rows to return (default: all). The
                first row beyond the limit is consumed from the cursor.
        """
        if nrows is not None and nrows <= 0:
            return []
        first = None
        if not skip_empty_area:
            first = 0 if self._last_index is None else self._last_index + 1

        rows: list[Row] = []
        height = None
        for row in self:
            if first is None:
                first = row.index
            if nrows is not None and row.index >= first + nrows:
                height = nrows
                break
            rows.append(row)
        if not rows:
            return []
        if height is None:
            height = rows[-1].index - first + 1

        first_col = 0
        if skip_empty_area:
            first_col = min(
                next(col for col, cell in enumerate(row.cells) if not cell.is_empty)
                for row in rows
            )
        width = max(len(row) for row in rows) - first_col

        grid = [[None] * width for _ in range(height)]
        for row in rows:
            values = row.values()[first_col:]
            grid[row.index - first][:len(values)] = values
        return grid

    def close(self) -> None:
        """Release the cursor's read stream."""
        if not self._done:
            self._done = True
            close = getattr(self._rows, "close", None)
            if close is not None:
                close()

    def __enter__(self) -> SheetCursor:
        return self

    def __exit__(self, exc_type, exc_value, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SheetCursor(name={self.name!r}, rows_read={self.rows_read})"
