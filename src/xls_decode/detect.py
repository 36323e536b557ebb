"""Format detection from container signatures.

Detection looks at a fixed window at the start of the input and, for zip
packages, at the names in the central directory. Cell content is never
inspected, and unknown signatures never fall back to a default format.
"""

from __future__ import annotations

import logging
import re
import struct
from enum import Enum
from typing import Collection

from .containers import (
    CFB_SIGNATURE,
    CompoundFileView,
    ContainerView,
    OpenedSource,
    RawStreamView,
    ZipArchiveView,
)
from .errors import ContainerError, PasswordError, UnsupportedFormatError
from .models import FormatKind

logger = logging.getLogger(__name__)

# Large enough for the ODF mimetype entry stored first in the package
SIGNATURE_WINDOW = 128

ZIP_SIGNATURE = b"PK\x03\x04"
ODS_MIMETYPE = b"application/vnd.oasis.opendocument.spreadsheet"
ODF_MIMETYPE_PREFIX = b"application/vnd.oasis.opendocument."

# BOF record types: BIFF5/8, BIFF4, BIFF3, BIFF2
BIFF_BOF = 0x0809
LEGACY_BIFF_BOFS = {0x0409: "BIFF4", 0x0209: "BIFF3", 0x0009: "BIFF2"}
BIFF_GLOBALS_VERSIONS = (0x0500, 0x0600)

XLSX_WORKBOOK_RE = re.compile(r"(^|/)workbook\.xml$", re.IGNORECASE)
XLSB_WORKBOOK_RE = re.compile(r"(^|/)workbook\.bin$", re.IGNORECASE)
ODS_CONTENT = "content.xml"
ODS_MIMETYPE_ENTRY = "mimetype"

ENCRYPTED_PACKAGE_STREAMS = ("EncryptedPackage", "EncryptionInfo")


class ContainerKind(Enum):
    """Outer structure of the input."""

    ZIP = "zip"
    CFB = "cfb"
    BIFF = "biff"


def detect_container(prefix: bytes) -> ContainerKind:
    """Identify the container from the first bytes of the input.

    Raises:
        UnsupportedFormatError: If no known signature matches.
    """
    head = prefix[:SIGNATURE_WINDOW]
    if head.startswith(CFB_SIGNATURE):
        return ContainerKind.CFB
    if head.startswith(ZIP_SIGNATURE):
        return ContainerKind.ZIP
    if len(head) >= 8:
        rtype, length, version = struct.unpack_from("<HHH", head)
        if rtype == BIFF_BOF and length >= 4 and version in BIFF_GLOBALS_VERSIONS:
            return ContainerKind.BIFF
        if rtype in LEGACY_BIFF_BOFS:
            raise UnsupportedFormatError(
                f"{LEGACY_BIFF_BOFS[rtype]} workbooks are not supported",
                details={"signature": head[:8].hex()},
            )
    raise UnsupportedFormatError(
        "Unrecognized file signature",
        details={"signature": head[:8].hex(), "length": len(head)},
    )


def _odf_mimetype(prefix: bytes) -> bytes | None:
    """Media type of an ODF package whose first member is ``mimetype``."""
    if len(prefix) < 30 or not prefix.startswith(ZIP_SIGNATURE):
        return None
    name_len, extra_len = struct.unpack_from("<HH", prefix, 26)
    name = prefix[30:30 + name_len]
    if name != b"mimetype":
        return None
    start = 30 + name_len + extra_len
    content = prefix[start:start + len(ODS_MIMETYPE)]
    if content.startswith(ODF_MIMETYPE_PREFIX):
        return content
    return None


def detect_format(prefix: bytes, entry_names: Collection[str] | None = None) -> FormatKind:
    """Select the decoder for an input.

    Args:
        prefix: The first bytes of the input (at most SIGNATURE_WINDOW
            are used).
        entry_names: Central directory names, required to tell xlsx from
            xlsb inside a zip package, and ods when its mimetype
            entry is not stored first.

    Raises:
        UnsupportedFormatError: If the signature is unknown, truncated, or
            the package lacks the required inner entry.
    """
    container = detect_container(prefix)
    if container in (ContainerKind.CFB, ContainerKind.BIFF):
        return FormatKind.XLS

    mimetype = _odf_mimetype(prefix[:SIGNATURE_WINDOW])
    if mimetype is not None:
        if mimetype == ODS_MIMETYPE:
            return FormatKind.ODS
        raise UnsupportedFormatError(
            "OpenDocument package is not a spreadsheet",
            details={"mimetype": mimetype.decode("ascii", "replace")},
        )
    if entry_names is None:
        raise UnsupportedFormatError("Zip package needs its entry list to be classified")
    if any(XLSB_WORKBOOK_RE.search(name) for name in entry_names):
        return FormatKind.XLSB
    if any(XLSX_WORKBOOK_RE.search(name) for name in entry_names):
        return FormatKind.XLSX
    # mimetype deflated or not stored first
    if ODS_CONTENT in entry_names:
        return FormatKind.ODS
    raise UnsupportedFormatError(
        "Zip package has no workbook part",
        details={"entries": len(entry_names)},
    )


def open_container(opened: OpenedSource) -> tuple[ContainerView, FormatKind]:
    """Open the container view matching the input's signature.

    Raises:
        UnsupportedFormatError: See detect_format.
        ContainerError: If the container structure is unreadable.
        PasswordError: If the input is an encrypted OOXML package.
    """
    prefix = opened.prefix(SIGNATURE_WINDOW)
    container = detect_container(prefix)

    if container is ContainerKind.BIFF:
        view: ContainerView = RawStreamView(opened.stream)
        return view, FormatKind.XLS

    if container is ContainerKind.CFB:
        cfb = CompoundFileView(opened.stream)
        if cfb.workbook_stream_name() is None:
            encrypted = all(cfb.has_entry(name) for name in ENCRYPTED_PACKAGE_STREAMS)
            cfb.close()
            if encrypted:
                raise PasswordError("Workbook is encrypted")
            raise UnsupportedFormatError("Compound file holds no workbook stream")
        return cfb, FormatKind.XLS

    archive = ZipArchiveView(opened.stream)
    try:
        kind = detect_format(prefix, archive.list_entries())
        if kind is FormatKind.ODS and archive.has_entry(ODS_MIMETYPE_ENTRY):
            mimetype = archive.read_entry(ODS_MIMETYPE_ENTRY).strip()
            if mimetype.startswith(ODF_MIMETYPE_PREFIX) and mimetype != ODS_MIMETYPE:
                raise UnsupportedFormatError(
                    "OpenDocument package is not a spreadsheet",
                    details={"mimetype": mimetype.decode("ascii", "replace")},
                )
    except (UnsupportedFormatError, ContainerError):
        archive.close()
        raise
    logger.debug("Detected %s package", kind.value)
    return archive, kind
