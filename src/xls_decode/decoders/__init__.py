"""Per-format decoders behind one three-phase protocol."""

from ..models import FormatKind
from .base import BaseDecoder, DecoderState, WarningLog, make_row
from .ods import OdsDecoder
from .xls import XlsDecoder
from .xlsb import XlsbDecoder
from .xlsx import XlsxDecoder

# Decoder chosen once per workbook from the detected format
DECODERS: dict[FormatKind, type[BaseDecoder]] = {
    FormatKind.XLS: XlsDecoder,
    FormatKind.XLSX: XlsxDecoder,
    FormatKind.XLSB: XlsbDecoder,
    FormatKind.ODS: OdsDecoder,
}

__all__ = [
    "BaseDecoder",
    "DecoderState",
    "WarningLog",
    "make_row",
    "DECODERS",
    "XlsDecoder",
    "XlsxDecoder",
    "XlsbDecoder",
    "OdsDecoder",
]
