"""
Archive Exporter
================
Packages tagged pages and their assets into a portable zip bundle:

    <page>.svg          # tag-preserving markup, redaction not baked in
    images/<name>       # image-like assets
    fonts/<name>        # font files (woff, woff2, ttf, otf, eot)

Asset filenames are unique across the whole archive; the first asset
written under a name wins and later ones are skipped.
"""

from __future__ import annotations

import io
import logging
import zipfile
from typing import Iterable, Iterator, Optional

from .assets import AssetPool, get_filename, is_font_file, is_image_file, kind_for_name
from .markup import CSS_URL_PATTERN, MarkupError, get_href, iter_named
from .models import AssetKind, Document
from .paginate import ExportError
from .resolver import BUNDLE_FOLDERS, is_bundle_reference

logger = logging.getLogger(__name__)

__all__ = ["ArchiveExporter", "ExportError"]


def _bundle_references(document: Document) -> Iterator[str]:
    """Filenames the markup already points at via images/ or fonts/ paths."""
    try:
        root = document.tree()
    except MarkupError:
        return
    for image in iter_named(root, "image"):
        href = get_href(image)
        if href and is_bundle_reference(href, AssetKind.IMAGE):
            yield get_filename(href)
    for style in iter_named(root, "style"):
        for match in CSS_URL_PATTERN.finditer(style.text or ""):
            url = match.group(1).strip()
            if is_bundle_reference(url, AssetKind.FONT):
                yield get_filename(url)


class ArchiveExporter:
    """Writes exportable documents and their assets into a zip archive."""

    def __init__(self, include_pool_assets: bool = False):
        self.include_pool_assets = include_pool_assets

    def export(self, documents: Iterable[Document], pool: Optional[AssetPool] = None) -> bytes:
        """
        Build the archive in memory.

        Only documents awaiting bundling or fully bundled are written;
        documents mid-resolution or failed are skipped.

        Raises:
            ExportError: If the archive cannot be assembled.
        """
        pool = pool or AssetPool()
        buffer = io.BytesIO()
        written_assets: set[str] = set()
        written_pages: set[str] = set()

        def add_asset(
            archive: zipfile.ZipFile,
            filename: str,
            data: bytes,
            kind: Optional[AssetKind] = None,
        ) -> None:
            if filename in written_assets:
                return
            # Extension decides the folder; unrecognized names keep their kind
            if kind is None or is_font_file(filename) or is_image_file(filename):
                kind = kind_for_name(filename)
            folder = BUNDLE_FOLDERS[kind]
            archive.writestr(f"{folder}/{filename}", data)
            written_assets.add(filename)

        try:
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                if self.include_pool_assets:
                    for filename, data in pool.items():
                        add_asset(archive, filename, data)

                for document in documents:
                    if not document.is_exportable:
                        logger.debug(
                            f"Skipping {document.name} ({document.status.value})"
                        )
                        continue

                    if document.name in written_pages:
                        logger.warning(f"Duplicate page name skipped: {document.name}")
                    else:
                        archive.writestr(document.name, document.content)
                        written_pages.add(document.name)

                    for asset in document.assets:
                        add_asset(archive, asset.local_name, asset.data, asset.kind)

                    # Pool files the markup already points at in bundle form
                    for filename in _bundle_references(document):
                        data = pool.get(filename)
                        if data is not None:
                            add_asset(archive, filename, data)
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            raise ExportError(f"Failed to create archive: {e}") from e

        logger.info(
            f"Archive built: {len(written_pages)} page(s), "
            f"{len(written_assets)} asset(s)"
        )
        return buffer.getvalue()
