"""Zip archive view for OOXML and OpenDocument packages."""

from __future__ import annotations

import logging
import zipfile
import zlib
from typing import BinaryIO

from ..errors import ContainerError, ZipError
from .base import ContainerView

logger = logging.getLogger(__name__)

# Errors zipfile raises for corrupt or truncated members
ZIP_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError)


class ZipArchiveView(ContainerView):
    """Random access to the members of a zip package.

    Part names in OOXML are case-insensitive, so lookups go through a
    lower-cased index of the central directory.
    """

    kind = "zip"

    def __init__(self, stream: BinaryIO):
        try:
            self._zip = zipfile.ZipFile(stream, "r")
        except (zipfile.BadZipFile, OSError, EOFError) as exc:
            raise ZipError(f"Not a readable zip archive: {exc}") from exc
        self._index = {info.filename.lower(): info for info in self._zip.infolist()}
        logger.debug("Opened zip archive with %d entries", len(self._index))

    def list_entries(self) -> list[str]:
        return self._zip.namelist()

    def has_entry(self, name: str) -> bool:
        return name.lstrip("/").lower() in self._index

    def _info(self, name: str) -> zipfile.ZipInfo:
        info = self._index.get(name.lstrip("/").lower())
        if info is None:
            raise ContainerError(f"Entry not found in archive: {name}", details={"entry": name})
        return info

    def read_entry(self, name: str) -> bytes:
        info = self._info(name)
        try:
            return self._zip.read(info)
        except ZIP_READ_ERRORS as exc:
            raise ZipError(f"Could not read {name}: {exc}", details={"entry": name}) from exc

    def open_entry(self, name: str) -> BinaryIO:
        info = self._info(name)
        try:
            return self._zip.open(info)
        except ZIP_READ_ERRORS as exc:
            raise ZipError(f"Could not open {name}: {exc}", details={"entry": name}) from exc

    def close(self) -> None:
        self._zip.close()
