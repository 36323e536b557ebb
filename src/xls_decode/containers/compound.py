"""Compound file (OLE2) view for legacy binary workbooks, and a raw view for
BIFF streams stored without a compound file around them."""

from __future__ import annotations

import logging
import struct
from typing import BinaryIO

from xlrd.compdoc import SIGNATURE, CompDoc, CompDocError

from ..errors import ContainerError, MalformedContainerError
from .base import ContainerView

logger = logging.getLogger(__name__)

CFB_SIGNATURE = SIGNATURE

# Stream holding the workbook globals and sheets (BIFF8, then BIFF5)
WORKBOOK_STREAMS = ("Workbook", "Book")

# Directory entry type of a stream
STREAM_ENTRY = 2

# compdoc signals structural damage with assertions as well as CompDocError
COMPDOC_ERRORS = (CompDocError, AssertionError, IndexError, ValueError, struct.error)


class _DebugLog:
    """File-like sink sending compdoc diagnostics to the module logger."""

    def write(self, text: str) -> None:
        text = text.strip()
        if text:
            logger.debug("compdoc: %s", text)


class CompoundFileView(ContainerView):
    """Access to the streams of a compound file binary document."""

    kind = "cfb"

    def __init__(self, stream: BinaryIO):
        stream.seek(0)
        data = stream.read()
        try:
            self._doc = CompDoc(data, logfile=_DebugLog(), ignore_workbook_corruption=True)
        except COMPDOC_ERRORS as exc:
            raise MalformedContainerError(f"Not a readable compound file: {exc}") from exc
        logger.debug("Opened compound file with %d streams", len(self.list_entries()))

    def list_entries(self) -> list[str]:
        return [entry.name for entry in self._doc.dirlist if entry.etype == STREAM_ENTRY]

    def has_entry(self, name: str) -> bool:
        wanted = name.lower()
        return any(entry.lower() == wanted for entry in self.list_entries())

    def read_entry(self, name: str) -> bytes:
        try:
            mem, offset, size = self._doc.locate_named_stream(name)
        except COMPDOC_ERRORS as exc:
            raise MalformedContainerError(
                f"Could not read stream {name}: {exc}", details={"entry": name}
            ) from exc
        if mem is None:
            raise ContainerError(f"Stream not found in compound file: {name}", details={"entry": name})
        return bytes(mem[offset:offset + size])

    def workbook_stream_name(self) -> str | None:
        """Name of the BIFF workbook stream, if the file has one."""
        for name in WORKBOOK_STREAMS:
            if self.has_entry(name):
                return name
        return None

    def close(self) -> None:
        self._doc = None


class RawStreamView(ContainerView):
    """A bare BIFF record stream exposed as a single ``Workbook`` entry."""

    kind = "raw"

    def __init__(self, stream: BinaryIO):
        stream.seek(0)
        self._data = stream.read()

    def list_entries(self) -> list[str]:
        return [WORKBOOK_STREAMS[0]]

    def has_entry(self, name: str) -> bool:
        return name.lower() == WORKBOOK_STREAMS[0].lower()

    def read_entry(self, name: str) -> bytes:
        if not self.has_entry(name):
            raise ContainerError(f"Stream not found: {name}", details={"entry": name})
        return self._data

    def workbook_stream_name(self) -> str | None:
        return WORKBOOK_STREAMS[0]

    def close(self) -> None:
        self._data = b""
