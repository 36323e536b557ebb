"""Container view protocol and input normalization."""

from __future__ import annotations

import io
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, BinaryIO, Union

from ..errors import ContainerError

Source = Union[str, "os.PathLike[str]", bytes, bytearray, memoryview, BinaryIO]


@dataclass
class OpenedSource:
    """A readable, seekable binary stream built from a caller's source.

    Attributes:
        stream: Binary stream positioned at 0.
        owned: Whether closing the workbook should close the stream.
        path: Filesystem path when the source was one.
    """

    stream: BinaryIO
    owned: bool
    path: Path | None = None

    def prefix(self, size: int) -> bytes:
        """First ``size`` bytes of the stream, leaving it at position 0."""
        self.stream.seek(0)
        head = self.stream.read(size)
        self.stream.seek(0)
        return head

    def close(self) -> None:
        if self.owned:
            self.stream.close()


def open_source(source: Source) -> OpenedSource:
    """Normalize a path, byte buffer or file object into a seekable stream.

    Raises:
        ContainerError: If the source cannot be read.
    """
    if isinstance(source, (str, os.PathLike)):
        path = Path(source)
        try:
            return OpenedSource(open(path, "rb"), owned=True, path=path)
        except OSError as exc:
            raise ContainerError(
                f"Could not open {path}: {exc.strerror or exc}",
                details={"path": str(path)},
            ) from exc
    if isinstance(source, (bytes, bytearray, memoryview)):
        return OpenedSource(io.BytesIO(bytes(source)), owned=True)
    if hasattr(source, "read"):
        try:
            seekable = bool(getattr(source, "seekable", lambda: False)())
            if seekable:
                source.seek(0)
                return OpenedSource(source, owned=False, path=_name_of(source))
            return OpenedSource(io.BytesIO(source.read()), owned=True, path=_name_of(source))
        except OSError as exc:
            raise ContainerError(f"Could not read source: {exc}") from exc
    raise ContainerError(f"Unsupported source type: {type(source).__name__}")


def _name_of(stream: IO[Any]) -> Path | None:
    name = getattr(stream, "name", None)
    return Path(name) if isinstance(name, str) else None


class ContainerView(ABC):
    """Named-entry access to a container (zip archive or compound file).

    Every ``open_entry`` call returns an independent stream, so several
    sheet cursors can read the same container without sharing a position.
    """

    kind: str = "base"

    @abstractmethod
    def list_entries(self) -> list[str]:
        """Names of all entries in the container."""

    @abstractmethod
    def has_entry(self, name: str) -> bool:
        """Whether an entry exists (case-insensitive)."""

    @abstractmethod
    def read_entry(self, name: str) -> bytes:
        """Whole content of an entry.

        Raises:
            ContainerError: If the entry is missing.
            MalformedContainerError: If the entry cannot be decoded.
        """

    def open_entry(self, name: str) -> BinaryIO:
        """Binary stream over an entry."""
        return io.BytesIO(self.read_entry(name))

    @abstractmethod
    def close(self) -> None:
        """Release the container handle."""

    def __enter__(self) -> ContainerView:
        return self

    def __exit__(self, exc_type, exc_value, exc_tb) -> None:
        self.close()
