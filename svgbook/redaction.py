"""
Redaction Transform
===================
Derives redaction purely from tag annotations: any element whose tags
contain "redact" (case-insensitive) is a target.

    - Images: share one Gaussian blur filter (#redact-blur) in <defs>
    - Text:   every non-whitespace character under a tagged <text>/<tspan>
              becomes a mask glyph; whitespace and lengths are preserved

Tags are read, never written. Output is deterministic for a given input.
"""

from __future__ import annotations

import re
from xml.etree import ElementTree as ET

from .markup import (
    find_by_id,
    get_tags,
    iter_named,
    parse_markup,
    qualified,
    serialize_markup,
)

FILTER_ID = "redact-blur"
FILTER_REFERENCE = f"url(#{FILTER_ID})"
BLUR_STD_DEVIATION = "150"
MASK_GLYPH = "▮"

TEXT_CONTAINERS = ("text", "tspan")

_NON_WHITESPACE = re.compile(r"\S")


def should_redact(element: ET.Element) -> bool:
    return any("redact" in tag.lower() for tag in get_tags(element))


def mask_text(text: str) -> str:
    """Replace each non-whitespace character with the mask glyph."""
    return _NON_WHITESPACE.sub(MASK_GLYPH, text)


def ensure_blur_filter(root: ET.Element) -> ET.Element:
    """Return the shared blur filter, creating <defs> and it once."""
    existing = find_by_id(root, FILTER_ID)
    if existing is not None:
        return existing

    defs = next(iter_named(root, "defs"), None)
    if defs is None:
        defs = ET.Element(qualified(root, "defs"))
        root.insert(0, defs)

    blur_filter = ET.SubElement(defs, qualified(root, "filter"), {
        "id": FILTER_ID,
        "x": "-50%",
        "y": "-50%",
        "width": "200%",
        "height": "200%",
    })
    ET.SubElement(blur_filter, qualified(root, "feGaussianBlur"), {
        "stdDeviation": BLUR_STD_DEVIATION,
    })
    return blur_filter


def _mask_leaves(container: ET.Element) -> None:
    # Text leaves inside a container: its own text plus text and tail of
    # every descendant. The container's own tail lies outside it.
    if container.text and container.text.strip():
        container.text = mask_text(container.text)
    for descendant in container.iter():
        if descendant is container:
            continue
        is_comment = not isinstance(descendant.tag, str)
        if not is_comment and descendant.text and descendant.text.strip():
            descendant.text = mask_text(descendant.text)
        if descendant.tail and descendant.tail.strip():
            descendant.tail = mask_text(descendant.tail)


def redact(root: ET.Element) -> ET.Element:
    """Apply image and text redaction in place and return the tree."""
    targets = [img for img in iter_named(root, "image") if should_redact(img)]
    if targets:
        ensure_blur_filter(root)
        for image in targets:
            image.set("filter", FILTER_REFERENCE)

    for container in list(iter_named(root, *TEXT_CONTAINERS)):
        if should_redact(container):
            _mask_leaves(container)

    return root


def redact_markup(content: str) -> str:
    """Pure text form: parse, redact a private tree, serialize."""
    return serialize_markup(redact(parse_markup(content)))
