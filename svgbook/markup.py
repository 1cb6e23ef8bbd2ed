"""
SVG Markup Helpers
==================
Parsing, serialization and element queries over ElementTree.

Every node is an ElementTree element owned by its parent, with its own
attribute map. Tag annotations live in the comma-joined `data-tags`
attribute and are read/written as sets through get_tags()/set_tags().
"""

from __future__ import annotations

import re
from typing import Iterator, Optional
from xml.etree import ElementTree as ET

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"

XLINK_HREF = f"{{{XLINK_NS}}}href"
TAG_ATTR = "data-tags"

# Prefixes kept stable on serialization
_NAMESPACES = {
    "": SVG_NS,
    "xlink": XLINK_NS,
    "inkscape": "http://www.inkscape.org/namespaces/inkscape",
    "sodipodi": "http://sodipodi.sourceforge.net/DTD/sodipodi-0.dtd",
    "cc": "http://creativecommons.org/ns#",
    "sketch": "http://www.bohemiancoding.com/sketch/ns",
}

for _prefix, _uri in _NAMESPACES.items():
    ET.register_namespace(_prefix, _uri)

_NUMBER_PATTERN = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


class MarkupError(ValueError):
    """Raised when text is not a well-formed SVG document."""


# ─── Parse / Serialize ────────────────────────────────────────────────────────


def parse_markup(text: str) -> ET.Element:
    """
    Parse SVG text into an element tree.

    Raises:
        MarkupError: If the text is malformed or not rooted at <svg>.
    """
    parser = ET.XMLParser(
        target=ET.TreeBuilder(insert_comments=True, insert_pis=True)
    )
    try:
        root = ET.fromstring(text, parser=parser)
    except ET.ParseError as e:
        raise MarkupError(f"Invalid SVG file format: {e}") from e

    if local_name(root) != "svg":
        raise MarkupError(
            f"Invalid SVG file format: root element is <{local_name(root)}>"
        )
    return root


def serialize_markup(root: ET.Element) -> str:
    """Serialize a tree back to SVG text."""
    return ET.tostring(root, encoding="unicode")


# ─── Element Queries ──────────────────────────────────────────────────────────


def local_name(element: ET.Element) -> str:
    """Tag name without namespace; empty for comments and PIs."""
    tag = element.tag
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def qualified(root: ET.Element, name: str) -> str:
    """Qualify a local name with the root element's namespace."""
    tag = root.tag
    if isinstance(tag, str) and tag.startswith("{"):
        return tag[: tag.index("}") + 1] + name
    return name


def iter_named(root: ET.Element, *names: str) -> Iterator[ET.Element]:
    """Iterate elements in document order whose local name is in names."""
    wanted = set(names)
    for element in root.iter():
        if local_name(element) in wanted:
            yield element


def find_by_id(root: ET.Element, element_id: str) -> Optional[ET.Element]:
    for element in root.iter():
        if element.get("id") == element_id:
            return element
    return None


def get_href(element: ET.Element) -> Optional[str]:
    """Return href, falling back to xlink:href."""
    return element.get("href") or element.get(XLINK_HREF)


def set_href(element: ET.Element, value: str) -> None:
    """Set href, keeping xlink:href in sync when present."""
    element.set("href", value)
    if XLINK_HREF in element.attrib:
        element.set(XLINK_HREF, value)


def style_property(element: ET.Element, prop: str) -> Optional[str]:
    """Read a single property out of an inline style attribute."""
    style = element.get("style")
    if not style:
        return None
    for declaration in style.split(";"):
        key, sep, value = declaration.partition(":")
        if sep and key.strip().lower() == prop:
            return value.strip() or None
    return None


def parse_number(value: Optional[str]) -> Optional[float]:
    """Leading numeric value of an attribute ("210mm" -> 210.0)."""
    if value is None:
        return None
    match = _NUMBER_PATTERN.match(value)
    if not match:
        return None
    return float(match.group(1))


# ─── Tag Annotations ──────────────────────────────────────────────────────────


def get_tags(element: ET.Element) -> list[str]:
    """Tag names on an element, in attribute order, without blanks or repeats."""
    raw = element.get(TAG_ATTR) or ""
    tags: list[str] = []
    for part in raw.split(","):
        name = part.strip()
        if name and name not in tags:
            tags.append(name)
    return tags


def set_tags(element: ET.Element, tags: list[str]) -> None:
    """Write tags back; an empty list removes the attribute."""
    if tags:
        element.set(TAG_ATTR, ",".join(tags))
    elif TAG_ATTR in element.attrib:
        del element.attrib[TAG_ATTR]


# ─── Stylesheets ──────────────────────────────────────────────────────────────

# url(...) tokens inside embedded stylesheet text; group 1 is the reference
CSS_URL_PATTERN = re.compile(r"url\s*\((?:'|\")?([^'\")]+)(?:'|\")?\)")
