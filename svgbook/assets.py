"""
Asset Helpers
=============
Filename derivation, kind detection, MIME mapping and the shared
filename-keyed asset pool supplied by intake.
"""

from __future__ import annotations

import mimetypes
import re
from pathlib import PurePosixPath
from typing import Iterator, Mapping, Optional
from urllib.parse import urlsplit

from .models import AssetKind

FONT_EXTENSIONS = ("woff", "woff2", "ttf", "otf", "eot")
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "svg")

_FONT_PATTERN = re.compile(r"\.(woff|woff2|ttf|otf|eot)$", re.IGNORECASE)
_IMAGE_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)$", re.IGNORECASE)

DEFAULT_MIME = "application/octet-stream"

FONT_MIME_TYPES = {
    "woff2": "font/woff2",
    "woff": "font/woff",
    "ttf": "font/ttf",
    "otf": "application/font-sfnt",
    "eot": "application/vnd.ms-fontobject",
}

IMAGE_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}

# Content-Type (lowercase, no parameters) -> extension
_CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "font/woff2": "woff2",
    "font/woff": "woff",
    "application/font-woff": "woff",
    "application/font-woff2": "woff2",
    "font/ttf": "ttf",
    "application/x-font-ttf": "ttf",
    "font/otf": "otf",
    "font/sfnt": "otf",
    "application/font-sfnt": "otf",
    "application/x-font-opentype": "otf",
    "application/vnd.ms-fontobject": "eot",
}


def get_filename(reference: str) -> str:
    """Last path segment of a URL or relative path, query/fragment stripped."""
    path = urlsplit(reference).path
    return PurePosixPath(path).name if path and not path.endswith("/") else ""


def extension_of(name: str) -> str:
    suffix = PurePosixPath(name).suffix
    return suffix[1:].lower() if suffix else ""


def is_font_file(name: str) -> bool:
    return bool(_FONT_PATTERN.search(name))


def is_image_file(name: str) -> bool:
    return bool(_IMAGE_PATTERN.search(name))


def kind_for_name(name: str) -> AssetKind:
    """Archive category of a filename: fonts by extension, images otherwise."""
    return AssetKind.FONT if is_font_file(name) else AssetKind.IMAGE


def is_network_reference(reference: str) -> bool:
    return urlsplit(reference).scheme.lower() in ("http", "https")


def font_mime_type(name: str) -> str:
    return FONT_MIME_TYPES.get(extension_of(name), DEFAULT_MIME)


def image_mime_type(name: str) -> str:
    ext = extension_of(name)
    if ext in IMAGE_MIME_TYPES:
        return IMAGE_MIME_TYPES[ext]
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or DEFAULT_MIME


def extension_for_content_type(content_type: Optional[str]) -> Optional[str]:
    """Sniff a file extension from an HTTP Content-Type header."""
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    if mime in _CONTENT_TYPE_EXTENSIONS:
        return _CONTENT_TYPE_EXTENSIONS[mime]
    guessed = mimetypes.guess_extension(mime)
    return guessed[1:] if guessed else None


class AssetPool:
    """
    Filename -> bytes pool of caller-supplied assets.

    Merge-only: adding a name again replaces its payload; nothing is
    ever removed.
    """

    def __init__(self, assets: Optional[Mapping[str, bytes]] = None):
        self._assets: dict[str, bytes] = {}
        for name, data in (assets or {}).items():
            self.add(name, data)

    def add(self, name: str, data: bytes) -> None:
        self._assets[name] = bytes(data)

    def get(self, name: str) -> Optional[bytes]:
        return self._assets.get(name)

    def items(self) -> Iterator[tuple[str, bytes]]:
        return iter(self._assets.items())

    def __contains__(self, name: object) -> bool:
        return name in self._assets

    def __len__(self) -> int:
        return len(self._assets)
