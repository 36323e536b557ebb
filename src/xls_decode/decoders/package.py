"""OOXML package plumbing shared by the xlsx and xlsb decoders."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass

from lxml import etree

from ..containers import ContainerView
from ..errors import ContainerError, XmlError
from ..models import SheetType

logger = logging.getLogger(__name__)

NS_PKG_REL = "http://schemas.openxmlformats.org/package/2006/relationships"

# Entities are never resolved; huge_tree lifts the size limits on text nodes
XML_PARSER = etree.XMLParser(resolve_entities=False, huge_tree=True)

# Last segment of the relationship type -> sheet type
SHEET_RELATIONSHIPS = {
    "worksheet": SheetType.WORKSHEET,
    "chartsheet": SheetType.CHARTSHEET,
    "dialogsheet": SheetType.DIALOGSHEET,
    "xlMacrosheet": SheetType.MACROSHEET,
    "xlIntlMacrosheet": SheetType.MACROSHEET,
}


@dataclass(frozen=True)
class Relationship:
    """One entry of a ``.rels`` part, with its target resolved to a part name."""

    id: str
    type: str
    target: str

    @property
    def kind(self) -> str:
        """Last segment of the relationship type URI."""
        return self.type.rsplit("/", 1)[-1]


def local_name(element: etree._Element) -> str:
    return etree.QName(element).localname


def parse_xml(data: bytes, part: str) -> etree._Element:
    """Parse a whole XML part.

    Raises:
        XmlError: If the part is not well formed.
    """
    try:
        return etree.fromstring(data, XML_PARSER)
    except etree.XMLSyntaxError as exc:
        raise XmlError(f"{part} is not well formed: {exc}", details={"entry": part}) from exc


def rels_part(part: str) -> str:
    """Name of the relationships part belonging to ``part``."""
    folder, name = posixpath.split(part)
    return posixpath.join(folder, "_rels", f"{name}.rels")


def resolve_part(source: str, target: str) -> str:
    """Resolve a relationship target against the part it belongs to."""
    if target.startswith("/"):
        return target.lstrip("/")
    return posixpath.normpath(posixpath.join(posixpath.dirname(source), target))


def read_relationships(container: ContainerView, part: str) -> dict[str, Relationship]:
    """Relationships of a part by id; empty when the part has none."""
    name = rels_part(part)
    if not container.has_entry(name):
        return {}
    root = parse_xml(container.read_entry(name), name)
    relationships = {}
    for rel in root.iter(f"{{{NS_PKG_REL}}}Relationship"):
        rid = rel.get("Id")
        if not rid or rel.get("TargetMode") == "External":
            continue
        relationships[rid] = Relationship(
            id=rid,
            type=rel.get("Type", ""),
            target=resolve_part(part, rel.get("Target", "")),
        )
    return relationships


def find_workbook_part(container: ContainerView, default: str) -> str:
    """Workbook part named by the package's officeDocument relationship.

    Raises:
        ContainerError: If neither the relationship target nor ``default``
            exists.
    """
    for rel in read_relationships(container, "").values():
        if rel.kind == "officeDocument" and container.has_entry(rel.target):
            return rel.target
    if container.has_entry(default):
        return default
    raise ContainerError(f"Package has no workbook part ({default})", details={"entry": default})


def related_part(
    container: ContainerView,
    relationships: dict[str, Relationship],
    kind: str,
    default: str,
) -> str | None:
    """Target of the first relationship of a kind, else ``default`` if present."""
    for rel in relationships.values():
        if rel.kind == kind and container.has_entry(rel.target):
            return rel.target
    if container.has_entry(default):
        return default
    return None
