"""Record streams for BIFF and XLSB.

Both dialects are a flat sequence of (type, length, payload) records. BIFF
uses fixed 2-byte type and length fields; XLSB uses variable-length
integers for both. A stream ends at the physical end of input; callers
decide which record marks the logical end.
"""

from __future__ import annotations

import struct
import zipfile
import zlib
from abc import ABC, abstractmethod
from typing import BinaryIO, Iterator

from ..errors import MalformedContainerError

BIFF_HEADER = struct.Struct("<HH")


class RecordTruncatedError(MalformedContainerError):
    """A record header or payload extends past the end of the input."""


class RecordStream(ABC):
    """Lazy, forward-only reader of (record_type, payload) pairs."""

    @abstractmethod
    def next_record(self) -> tuple[int, bytes] | None:
        """Next record, or None at the physical end of input.

        Raises:
            RecordTruncatedError: If the input ends inside a record.
        """

    @abstractmethod
    def tell(self) -> int:
        """Offset of the next record."""

    @abstractmethod
    def seek(self, offset: int) -> None:
        """Move to a record boundary seen earlier."""

    def __iter__(self) -> Iterator[tuple[int, bytes]]:
        while True:
            record = self.next_record()
            if record is None:
                return
            yield record


class BiffRecordStream(RecordStream):
    """Records of a BIFF workbook stream held in memory.

    The buffer is shared and never modified, so any number of streams can
    be created over it, one per open sheet.
    """

    def __init__(self, data: bytes, offset: int = 0):
        self._data = memoryview(data)
        self._pos = offset

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int) -> None:
        if not 0 <= offset <= len(self._data):
            raise RecordTruncatedError(f"record offset {offset} outside stream")
        self._pos = offset

    def peek_type(self) -> int | None:
        """Type of the next record without consuming it."""
        if len(self._data) - self._pos < BIFF_HEADER.size:
            return None
        return BIFF_HEADER.unpack_from(self._data, self._pos)[0]

    def next_record(self) -> tuple[int, bytes] | None:
        pos = self._pos
        remaining = len(self._data) - pos
        if remaining == 0:
            return None
        if remaining < BIFF_HEADER.size:
            raise RecordTruncatedError(f"partial record header at offset {pos}")
        rtype, length = BIFF_HEADER.unpack_from(self._data, pos)
        start = pos + BIFF_HEADER.size
        if start + length > len(self._data):
            raise RecordTruncatedError(
                f"record 0x{rtype:04X} at offset {pos} needs {length} bytes, "
                f"{len(self._data) - start} available"
            )
        self._pos = start + length
        return rtype, bytes(self._data[start:start + length])

    def next_record_if(self, rtype: int) -> bytes | None:
        """Consume the next record only if it has the given type."""
        if self.peek_type() != rtype:
            return None
        record = self.next_record()
        return record[1] if record else None


class XlsbRecordStream(RecordStream):
    """Records of an XLSB part, read incrementally from a binary stream."""

    READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError)

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._pos = 0

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int) -> None:
        self._stream.seek(offset)
        self._pos = offset

    def _read(self, size: int) -> bytes:
        try:
            data = self._stream.read(size)
        except self.READ_ERRORS as exc:
            raise RecordTruncatedError(f"part unreadable at offset {self._pos}: {exc}") from exc
        self._pos += len(data)
        return data

    def _read_varint(self, max_bytes: int, first: bytes | None = None) -> int:
        value = 0
        for i in range(max_bytes):
            byte = first if i == 0 and first is not None else self._read(1)
            if not byte:
                raise RecordTruncatedError(f"partial record header at offset {self._pos}")
            value |= (byte[0] & 0x7F) << (7 * i)
            if not byte[0] & 0x80:
                break
        return value

    def next_record(self) -> tuple[int, bytes] | None:
        start = self._pos
        first = self._read(1)
        if not first:
            return None
        rtype = self._read_varint(2, first)
        length = self._read_varint(4)
        payload = self._read(length)
        if len(payload) < length:
            raise RecordTruncatedError(
                f"record 0x{rtype:04X} at offset {start} needs {length} bytes, "
                f"{len(payload)} available"
            )
        return rtype, payload

    def close(self) -> None:
        self._stream.close()
