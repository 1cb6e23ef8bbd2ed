"""
Tag Annotations
===============
Operations over `data-tags` annotations on markup elements.

    - find_tagged: enumerate annotated elements with their category
    - toggle_tags: per-tag exclusive-or against one element
    - apply_tags: add-only union onto every element of a category
    - apply_tags_to_collection: the same across many documents
    - clear_tags: strip every annotation from one tree

All mutations are synchronous and local to the tree they are given.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator
from xml.etree import ElementTree as ET

from .markup import TAG_ATTR, get_tags, iter_named, local_name, set_tags
from .models import BulkTagResult, Document, ElementCategory

logger = logging.getLogger(__name__)

# Element names each bulk category applies to
CATEGORY_ELEMENTS = {
    ElementCategory.IMAGE: ("image",),
    ElementCategory.TEXT: ("text",),
}


@dataclass(frozen=True)
class TaggedElement:
    """An annotated element together with its parsed tag set."""
    element: ET.Element
    tags: frozenset[str]
    category: ElementCategory


def category_of(element: ET.Element) -> ElementCategory:
    if local_name(element) == "image":
        return ElementCategory.IMAGE
    return ElementCategory.TEXT


def find_tagged(root: ET.Element) -> list[TaggedElement]:
    """Return every element carrying a non-empty tag annotation."""
    found: list[TaggedElement] = []
    for element in root.iter():
        if TAG_ATTR not in element.attrib:
            continue
        tags = get_tags(element)
        if tags:
            found.append(TaggedElement(element, frozenset(tags), category_of(element)))
    return found


def toggle_tags(element: ET.Element, active: Iterable[str]) -> frozenset[str]:
    """
    Toggle each active tag independently: present tags are removed,
    absent ones added. Returns the resulting tag set.
    """
    current = get_tags(element)
    additions: list[str] = []
    for tag in sorted(set(active)):
        if tag in current:
            current.remove(tag)
        else:
            additions.append(tag)
    current.extend(additions)
    set_tags(element, current)
    return frozenset(current)


def _elements_for(root: ET.Element, category: ElementCategory) -> Iterator[ET.Element]:
    return iter_named(root, *CATEGORY_ELEMENTS[ElementCategory(category)])


def apply_tags(root: ET.Element, category: ElementCategory, tags: Iterable[str]) -> bool:
    """
    Add tags (never remove) to every element of a category.
    Returns True if any element changed.
    """
    wanted = sorted(set(tags))
    if not wanted:
        return False

    modified = False
    for element in _elements_for(root, category):
        current = get_tags(element)
        merged = current + [t for t in wanted if t not in current]
        if merged != current:
            set_tags(element, merged)
            modified = True
    return modified


def apply_tags_to_collection(
    documents: Iterable[Document],
    category: ElementCategory,
    tags: Iterable[str],
    confirmed: bool = False,
) -> BulkTagResult:
    """
    Apply tags to every element of a category across documents.

    Without confirmation nothing is touched and the result asks the caller
    to confirm; the caller decides how to ask.
    """
    category = ElementCategory(category)
    wanted = sorted(set(tags))
    result = BulkTagResult(category=category, tags=wanted)

    if not wanted:
        return result
    if not confirmed:
        result.requires_confirmation = True
        return result

    for document in documents:
        root = document.tree()
        if apply_tags(root, category, wanted):
            document.commit(root)
            result.updated_ids.append(document.id)

    logger.info(
        f"Applied tags {wanted} to {category.value} elements in "
        f"{len(result.updated_ids)} document(s)"
    )
    return result


def clear_tags(root: ET.Element) -> int:
    """Remove every tag annotation in the tree. Returns elements cleared."""
    cleared = 0
    for element in root.iter():
        if TAG_ATTR in element.attrib:
            del element.attrib[TAG_ATTR]
            cleared += 1
    return cleared


class TagRegistry:
    """
    Append-only, ordered set of known tag names shared by all documents.
    """

    def __init__(self, names: Iterable[str] = ()):
        self._names: list[str] = []
        for name in names:
            self.add(name)

    def add(self, name: str) -> bool:
        """Register a tag name. Returns False if blank or already known."""
        name = name.strip()
        if not name or name in self._names:
            return False
        self._names.append(name)
        return True

    def merge(self, root: ET.Element) -> int:
        """Register every tag already used in a tree. Returns names added."""
        return sum(
            self.add(tag)
            for tagged in find_tagged(root)
            for tag in sorted(tagged.tags)
        )

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self):
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)
