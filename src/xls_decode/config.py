"""Options for opening a workbook."""

from __future__ import annotations

from dataclasses import dataclass

from .models import DateEpoch


@dataclass
class ReadOptions:
    """Options for controlling how a workbook is decoded.

    Attributes:
        epoch: Force a date epoch instead of the one declared by the file
            (default: None = use the file's flag, 1900 when absent).
        int_inference: Decode numeric cells whose stored form is an integer
            (RK integers, XML values without fraction or exponent) as INT
            rather than FLOAT (default: True).
        max_warnings: Maximum number of decode warnings kept on the
            workbook (default: 1000, None = unlimited). Once reached, one
            final warning records that the list was limited.

    Example:
        >>> options = ReadOptions(
        ...     epoch=DateEpoch.EXCEL_1904,  # Legacy Mac workbook
        ...     int_inference=False,  # Every number is a float
        ... )
        >>> wb = open_workbook("old_mac_file.xls", options)
    """

    epoch: DateEpoch | None = None
    int_inference: bool = True
    max_warnings: int | None = 1000
