"""Shared resource tables: strings, number formats and cell styles.

Every format stores text and number formats once per workbook and refers
to them by index from cell records. Decoders feed the raw entries they
find into a :class:`TablesBuilder` during the header phase; the resulting
:class:`SharedResourceTables` is immutable and shared by every sheet
cursor of the workbook.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

from openpyxl.styles.numbers import (
    BUILTIN_FORMATS,
    is_date_format,
    is_datetime,
    is_timedelta_format,
)

from .errors import MalformedContainerError
from .models import DateEpoch, DecodeWarning, NumberFormatKind

logger = logging.getLogger(__name__)

# Locale dependent builtin ids that never appear in the file but are dates
LOCALE_DATE_FORMAT_IDS = frozenset(range(27, 37)) | frozenset(range(50, 59))

# Thai builtin ids with date or time codes
THAI_TEMPORAL_FORMAT_IDS = {
    71: NumberFormatKind.DATE,
    72: NumberFormatKind.DATE,
    73: NumberFormatKind.DATE,
    74: NumberFormatKind.DATE,
    75: NumberFormatKind.TIME,
    76: NumberFormatKind.TIME,
    77: NumberFormatKind.DATETIME,
    78: NumberFormatKind.TIME,
    79: NumberFormatKind.DURATION,
    80: NumberFormatKind.TIME,
    81: NumberFormatKind.DATE,
}

# Ids below this are reserved for builtin formats
FIRST_CUSTOM_FORMAT_ID = 164

# Quoted literals, escaped characters, and bracketed colors/conditions/locales.
# Elapsed-time brackets ([h], [mm], [ss]) are kept.
_FORMAT_NOISE_RE = re.compile(
    r'"[^"]*"|\\.|_.|\*.|\[(?!(?:h+|m+|s+)\])[^\]]*\]',
    re.IGNORECASE,
)


def classify_format_code(code: str) -> NumberFormatKind:
    """Classify a number format code.

    Only the first section (positive numbers) is considered.

    Example:
        >>> classify_format_code("yyyy-mm-dd")
        <NumberFormatKind.DATE: 'date'>
        >>> classify_format_code("[h]:mm:ss")
        <NumberFormatKind.DURATION: 'duration'>
    """
    section = code.split(";")[0]
    if section.strip().lower() in ("", "general"):
        return NumberFormatKind.GENERAL
    if section.strip() == "@":
        return NumberFormatKind.TEXT

    cleaned = _FORMAT_NOISE_RE.sub("", section).lower()
    if is_timedelta_format(cleaned):
        return NumberFormatKind.DURATION
    if is_date_format(cleaned):
        kind = is_datetime(cleaned)
        if kind == "date":
            return NumberFormatKind.DATE
        if kind == "time":
            return NumberFormatKind.TIME
        return NumberFormatKind.DATETIME
    return NumberFormatKind.NUMERIC


def builtin_format_kind(format_id: int) -> NumberFormatKind | None:
    """Classification of a builtin format id, or None if it is not builtin.

    Reserved ids without a known code (currency and locale variants) are
    plain numbers.
    """
    if format_id in LOCALE_DATE_FORMAT_IDS:
        return NumberFormatKind.DATE
    if format_id in THAI_TEMPORAL_FORMAT_IDS:
        return THAI_TEMPORAL_FORMAT_IDS[format_id]
    code = BUILTIN_FORMATS.get(format_id)
    if code is not None:
        return classify_format_code(code)
    if 0 <= format_id < FIRST_CUSTOM_FORMAT_ID:
        return NumberFormatKind.GENERAL
    return None


class TableLookupError(LookupError):
    """A cell referenced a table entry that does not exist."""


@dataclass(frozen=True)
class SharedResourceTables:
    """Immutable per-workbook lookup tables.

    Attributes:
        strings: Shared strings by source id. A None entry marks a string
            that could not be decoded.
        formats: Custom number format id -> classification.
        style_formats: Cell style (XF) index -> number format id.
        epoch: Date epoch for serial dates.
    """

    strings: tuple[str | None, ...] = ()
    formats: Mapping[int, NumberFormatKind] = field(default_factory=dict)
    style_formats: tuple[int, ...] = ()
    epoch: DateEpoch = DateEpoch.EXCEL_1900

    def string(self, index: int) -> str:
        """Shared string by id.

        Raises:
            TableLookupError: If the id is out of range or its entry was
                malformed.
        """
        if not 0 <= index < len(self.strings):
            raise TableLookupError(
                f"shared string {index} out of range ({len(self.strings)} entries)"
            )
        value = self.strings[index]
        if value is None:
            raise TableLookupError(f"shared string {index} is malformed")
        return value

    def format_kind(self, format_id: int) -> NumberFormatKind:
        """Classification of a number format id.

        Raises:
            TableLookupError: If the id is a custom id that was never
                defined.
        """
        kind = self.formats.get(format_id)
        if kind is None:
            kind = builtin_format_kind(format_id)
        if kind is None:
            raise TableLookupError(f"unknown number format id {format_id}")
        return kind

    def style_kind(self, style_index: int) -> NumberFormatKind:
        """Classification of the number format used by a cell style.

        A workbook without any style table treats style 0 as General.

        Raises:
            TableLookupError: If the style index is out of range.
        """
        if not self.style_formats and style_index == 0:
            return NumberFormatKind.GENERAL
        if not 0 <= style_index < len(self.style_formats):
            raise TableLookupError(
                f"cell style {style_index} out of range ({len(self.style_formats)} styles)"
            )
        return self.format_kind(self.style_formats[style_index])


class TablesBuilder:
    """Collects raw table entries during the header phase.

    Malformed individual entries are recorded as warnings and skipped;
    only framing problems (declared counts that cannot be met) raise.
    """

    def __init__(self, warn: Callable[[DecodeWarning], None]):
        self._warn = warn
        self._strings: list[str | None] = []
        self._formats: dict[int, NumberFormatKind] = {}
        self._style_formats: list[int] = []
        self._epoch = DateEpoch.EXCEL_1900
        self._declared_strings: int | None = None

    @property
    def string_count(self) -> int:
        return len(self._strings)

    def declare_string_count(self, count: int) -> None:
        """Record the unique-string count declared by the table header."""
        if count < 0:
            raise MalformedContainerError(
                f"shared string table declares {count} entries"
            )
        self._declared_strings = count

    def add_string(self, value: str) -> None:
        self._strings.append(value)

    def add_malformed_string(self, message: str) -> None:
        """Keep the id of a string that failed to decode."""
        self._warn(DecodeWarning(
            "shared_strings",
            f"Shared string {len(self._strings)} skipped: {message}",
        ))
        self._strings.append(None)

    def add_format(self, format_id: int, code: str | None) -> None:
        if code is None or format_id < 0:
            self._warn(DecodeWarning(
                "number_formats",
                f"Number format {format_id} skipped: missing format code",
            ))
            return
        self._formats[format_id] = classify_format_code(code)

    def add_style(self, format_id: int) -> None:
        self._style_formats.append(format_id)

    def set_epoch(self, epoch: DateEpoch) -> None:
        self._epoch = epoch

    def build(self, strict_count: bool = True) -> SharedResourceTables:
        """Freeze the collected entries.

        Args:
            strict_count: Treat a declared string count that was not met
                as a framing error. When False only a warning is recorded.

        Raises:
            MalformedContainerError: If fewer strings than declared were
                found and ``strict_count`` is set.
        """
        declared = self._declared_strings
        if declared is not None and declared > len(self._strings):
            message = (
                f"shared string table declares {declared} entries "
                f"but holds {len(self._strings)}"
            )
            if strict_count:
                raise MalformedContainerError(message)
            self._warn(DecodeWarning("shared_strings", message))
        logger.debug(
            "Built tables: %d strings, %d custom formats, %d styles",
            len(self._strings), len(self._formats), len(self._style_formats),
        )
        return SharedResourceTables(
            strings=tuple(self._strings),
            formats=MappingProxyType(dict(self._formats)),
            style_formats=tuple(self._style_formats),
            epoch=self._epoch,
        )
