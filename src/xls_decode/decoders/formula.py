"""Rendering of defined-name formulas stored as parsed tokens.

Binary formats keep the formula of a defined name as a token stream
(Ptgs) instead of text. Names almost always point at a cell or a range,
so only reference, constant and list tokens are rendered; anything else
raises FormulaError and the name is skipped by the caller.
"""

from __future__ import annotations

import re
import struct
from typing import Callable

from openpyxl.utils.cell import get_column_letter

from ..cells import ERROR_CODES

BIFF8 = "biff8"
XLSB = "xlsb"

_PLAIN_SHEET_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


class FormulaError(ValueError):
    """A name formula uses a token that cannot be rendered."""


def quote_sheet(name: str) -> str:
    """Sheet name as it appears in a reference."""
    if _PLAIN_SHEET_RE.match(name):
        return name
    return "'" + name.replace("'", "''") + "'"


def _cell(row: int, col_field: int) -> str:
    col = col_field & 0x3FFF
    col_abs = "" if col_field & 0x4000 else "$"
    row_abs = "" if col_field & 0x8000 else "$"
    return f"{col_abs}{get_column_letter(col + 1)}{row_abs}{row + 1}"


def render_name_formula(
    rgce: bytes,
    sheet_span: Callable[[int], str | None],
    dialect: str = BIFF8,
) -> str:
    """Render a name's token stream as reference text.

    Args:
        rgce: The token bytes.
        sheet_span: Maps an external sheet index to ``Sheet`` or
            ``First:Last``, or None when it does not resolve.
        dialect: BIFF8 uses 2-byte row numbers and byte-length strings;
            XLSB uses 4-byte rows and UTF-16 strings.

    Example:
        >>> render_name_formula(b"\\x3a\\x00\\x00\\x01\\x00\\x00\\x00", lambda i: "Data")
        'Data!$A$2'
    """
    row_fmt = "<I" if dialect == XLSB else "<H"
    row_size = struct.calcsize(row_fmt)
    stack: list[str] = []
    pos = 0

    def take(fmt: str):
        nonlocal pos
        try:
            values = struct.unpack_from(fmt, rgce, pos)
        except struct.error as exc:
            raise FormulaError(f"token cut short at offset {pos}") from exc
        pos += struct.calcsize(fmt)
        return values

    def prefix(ixti: int) -> str:
        span = sheet_span(ixti)
        if span is None:
            raise FormulaError(f"external sheet {ixti} does not resolve")
        return quote_sheet(span) + "!"

    while pos < len(rgce):
        ptg = rgce[pos]
        pos += 1
        # Operand tokens carry their class in bits 5-6; the rest are basic
        kind = ptg & 0x1F if ptg >= 0x20 else None

        if kind == 0x1A:
            (ixti,) = take("<H")
            (row,) = take(row_fmt)
            (col,) = take("<H")
            stack.append(prefix(ixti) + _cell(row, col))
        elif kind == 0x1B:
            (ixti,) = take("<H")
            (row1,) = take(row_fmt)
            (row2,) = take(row_fmt)
            col1, col2 = take("<HH")
            stack.append(f"{prefix(ixti)}{_cell(row1, col1)}:{_cell(row2, col2)}")
        elif kind == 0x1C:
            take(f"<H{row_size + 2}x")
            stack.append("#REF!")
        elif kind == 0x1D:
            take(f"<H{2 * row_size + 4}x")
            stack.append("#REF!")
        elif kind == 0x04:
            (row,) = take(row_fmt)
            (col,) = take("<H")
            stack.append(_cell(row, col))
        elif kind == 0x05:
            (row1,) = take(row_fmt)
            (row2,) = take(row_fmt)
            col1, col2 = take("<HH")
            stack.append(f"{_cell(row1, col1)}:{_cell(row2, col2)}")
        elif kind == 0x09:
            # tMemFunc: the subexpression follows inline
            take("<H")
        elif kind in (0x06, 0x07):
            # tMemArea, tMemErr
            take("<4xH")
        elif kind is not None:
            raise FormulaError(f"unsupported token 0x{ptg:02X}")
        elif ptg == 0x10:
            right, left = _pop(stack, 2)
            stack.append(f"{left},{right}")
        elif ptg == 0x11:
            right, left = _pop(stack, 2)
            stack.append(f"{left}:{right}")
        elif ptg == 0x15:
            (inner,) = _pop(stack, 1)
            stack.append(f"({inner})")
        elif ptg == 0x17:
            text, pos = _string_token(rgce, pos, dialect)
            stack.append(text)
        elif ptg == 0x1C:
            (code,) = take("<B")
            error = ERROR_CODES.get(code)
            if error is None:
                raise FormulaError(f"unknown error code 0x{code:02X}")
            stack.append(error.value)
        elif ptg == 0x1D:
            (flag,) = take("<B")
            stack.append("TRUE" if flag else "FALSE")
        elif ptg == 0x1E:
            (number,) = take("<H")
            stack.append(str(number))
        elif ptg == 0x1F:
            (number,) = take("<d")
            stack.append(str(int(number)) if number.is_integer() else repr(number))
        else:
            raise FormulaError(f"unsupported token 0x{ptg:02X}")

    if len(stack) != 1:
        raise FormulaError(f"formula leaves {len(stack)} values")
    return stack[0]


def _pop(stack: list[str], count: int) -> list[str]:
    if len(stack) < count:
        raise FormulaError("operator without operands")
    return [stack.pop() for _ in range(count)]


def _string_token(rgce: bytes, pos: int, dialect: str) -> tuple[str, int]:
    """Quoted string constant and the offset after it."""
    try:
        if dialect == XLSB:
            (nchars,) = struct.unpack_from("<H", rgce, pos)
            end = pos + 2 + 2 * nchars
            text = rgce[pos + 2:end].decode("utf_16_le")
        else:
            nchars, flags = struct.unpack_from("<BB", rgce, pos)
            end = pos + 2 + (nchars * 2 if flags & 0x01 else nchars)
            text = rgce[pos + 2:end].decode("utf_16_le" if flags & 0x01 else "latin_1")
    except (struct.error, UnicodeDecodeError) as exc:
        raise FormulaError(f"string token malformed: {exc}") from exc
    if end > len(rgce):
        raise FormulaError("string token cut short")
    return '"' + text.replace('"', '""') + '"', end
