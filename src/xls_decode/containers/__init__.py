"""Container readers: zip packages, compound files and record streams."""

from .archive import ZipArchiveView
from .base import ContainerView, OpenedSource, Source, open_source
from .compound import CFB_SIGNATURE, CompoundFileView, RawStreamView
from .records import BiffRecordStream, RecordStream, RecordTruncatedError, XlsbRecordStream

__all__ = [
    "ContainerView",
    "OpenedSource",
    "Source",
    "open_source",
    "ZipArchiveView",
    "CompoundFileView",
    "RawStreamView",
    "CFB_SIGNATURE",
    "RecordStream",
    "BiffRecordStream",
    "XlsbRecordStream",
    "RecordTruncatedError",
]
