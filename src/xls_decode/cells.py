"""Turning raw serialized values into CellValues.

All decoders funnel numbers through :func:`numeric_cell` so that a number
formatted as a date becomes a DATETIME and a number formatted as an
elapsed time becomes a DURATION at decode time, whatever the source.
"""

from __future__ import annotations

import math
import re
import struct
from datetime import datetime, timedelta

from .models import CellValue, DateEpoch, ErrorType, NumberFormatKind

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Day 0 of each epoch. The 1900 system counts the non-existent 1900-02-29 as
# serial 60, so serials before it are shifted by one day.
EPOCH_ORIGINS = {
    DateEpoch.EXCEL_1900: datetime(1899, 12, 30),
    DateEpoch.EXCEL_1904: datetime(1904, 1, 1),
}
LOTUS_LEAP_SERIAL = 60

MS_PER_DAY = 86_400_000

# BIFF and XLSB store errors as a one-byte code
ERROR_CODES = {
    0x00: ErrorType.NULL,
    0x07: ErrorType.DIV,
    0x0F: ErrorType.VALUE,
    0x17: ErrorType.REF,
    0x1D: ErrorType.NAME,
    0x24: ErrorType.NUM,
    0x2A: ErrorType.NA,
    0x2B: ErrorType.GETTING_DATA,
}

_INTEGER_RE = re.compile(r"^[+-]?\d+$")


def serial_to_datetime(serial: float, epoch: DateEpoch) -> datetime:
    """Convert a serial date number to a datetime.

    Raises:
        ValueError: If the serial has no calendar equivalent (negative,
            the 1900 leap-year bug day, or beyond year 9999).
    """
    if math.isnan(serial) or math.isinf(serial) or serial < 0:
        raise ValueError(f"serial {serial!r} is out of range")
    if epoch is DateEpoch.EXCEL_1900:
        if LOTUS_LEAP_SERIAL <= serial < LOTUS_LEAP_SERIAL + 1:
            raise ValueError("serial 60 is 1900-02-29, which does not exist")
        if serial < LOTUS_LEAP_SERIAL:
            serial += 1
    try:
        return EPOCH_ORIGINS[epoch] + timedelta(milliseconds=round(serial * MS_PER_DAY))
    except OverflowError as exc:
        raise ValueError(f"serial {serial!r} is out of range") from exc


def serial_to_timedelta(serial: float) -> timedelta:
    """Convert a serial day count to an elapsed time, rounded to the ms."""
    if math.isnan(serial) or math.isinf(serial):
        raise ValueError(f"duration {serial!r} is out of range")
    try:
        return timedelta(milliseconds=round(serial * MS_PER_DAY))
    except OverflowError as exc:
        raise ValueError(f"duration {serial!r} is out of range") from exc


def numeric_cell(
    value: int | float,
    format_kind: NumberFormatKind,
    epoch: DateEpoch,
) -> CellValue:
    """Build the CellValue for a numeric cell given its format class.

    Raises:
        ValueError: If a temporal format is applied to a serial that cannot
            be represented. Callers turn this into an error cell.
    """
    if format_kind.is_temporal:
        return CellValue.timestamp(serial_to_datetime(float(value), epoch), format_kind)
    if format_kind is NumberFormatKind.DURATION:
        return CellValue.duration(serial_to_timedelta(float(value)))
    if isinstance(value, int):
        return CellValue.integer(value)
    return CellValue.number(value)


def parse_number(text: str, int_inference: bool = True) -> int | float:
    """Parse the text form of a number as stored in XML formats.

    Integral text without fraction or exponent becomes an ``int`` when
    ``int_inference`` is on and it fits in 64 bits.

    Raises:
        ValueError: If the text is not a number.
    """
    text = text.strip()
    if int_inference and _INTEGER_RE.match(text):
        number = int(text)
        if INT64_MIN <= number <= INT64_MAX:
            return number
    return float(text)


def decode_rk(raw: bytes, int_inference: bool = True) -> int | float:
    """Decode an RK number (BIFF RK/MULRK records, XLSB BrtCellRk).

    The two low bits flag "divide by 100" and "30-bit integer".

    Raises:
        ValueError: If ``raw`` is not exactly four bytes.
    """
    if len(raw) != 4:
        raise ValueError(f"RK value needs 4 bytes, got {len(raw)}")
    flags = raw[0]
    if flags & 0x02:
        number = int.from_bytes(raw, "little", signed=True) >> 2
        if flags & 0x01:
            return number / 100.0
        return number if int_inference else float(number)
    high = int.from_bytes(raw, "little") & 0xFFFFFFFC
    number = struct.unpack("<d", (high << 32).to_bytes(8, "little"))[0]
    if flags & 0x01:
        return number / 100.0
    return number

