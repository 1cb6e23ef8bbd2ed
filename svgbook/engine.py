"""
Book Engine
===========
Orchestrates intake, bundling and export for one collection of pages.

Usage:
    engine = BookEngine(BookConfig(log_level="DEBUG"))
    engine.load(["pages/", "assets/"])
    engine.bundle_all()
    engine.export_pdf("out/photo_book.pdf")

Architecture:
    files → DocumentCollection + AssetPool → AssetResolver (per page) →
    ArchiveExporter | PaginatedExporter (→ Redaction on private copies)

Everything runs sequentially: one page is bundled at a time and pages
export strictly in collection order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import __version__
from .archive import ArchiveExporter
from .assets import AssetPool
from .collection import DocumentCollection
from .fetch import Fetcher, HttpFetcher, OfflineFetcher
from .models import (
    BulkTagResult,
    BundleReport,
    Document,
    DocumentStatus,
    ElementCategory,
    ExportResult,
)
from .paginate import DEFAULT_PAGE_SIZE, PAGE_WIDTH_MM, PaginatedExporter
from .resolver import AssetResolver
from .storage import load_inputs, save_output
from .tagging import TagRegistry, apply_tags_to_collection, clear_tags
from .validator import BundleValidator

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class BookConfig:
    """Configuration for the book engine."""

    # Page layout
    page_width_mm: float = PAGE_WIDTH_MM
    default_page_size: tuple[float, float] = DEFAULT_PAGE_SIZE

    # Rasterization
    pixel_scale: float = 12.0
    jpeg_quality: int = 95

    # Network
    allow_network: bool = True
    fetch_timeout: Optional[float] = 30.0
    user_agent: str = f"svgbook/{__version__}"

    # Output
    include_pool_assets: bool = False
    pdf_name: str = "photo_book.pdf"
    archive_name: str = "photo_book_tagged.zip"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class BookEngine:
    """
    Holds one book: its ordered pages, shared asset pool and tag names.
    """

    def __init__(
        self,
        config: Optional[BookConfig] = None,
        fetcher: Optional[Fetcher] = None,
    ):
        self.config = config or BookConfig()
        self._setup_logging()

        self.collection = DocumentCollection()
        self.pool = AssetPool()
        self.tags = TagRegistry()

        if fetcher is None:
            fetcher = (
                HttpFetcher(timeout=self.config.fetch_timeout, user_agent=self.config.user_agent)
                if self.config.allow_network
                else OfflineFetcher()
            )
        self.resolver = AssetResolver(fetcher)

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        package_logger = logging.getLogger("svgbook")
        package_logger.setLevel(log_level)

        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            package_logger.addHandler(console)

        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.config.log_file, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            package_logger.addHandler(file_handler)

    # ─── Intake ───────────────────────────────────────────────────────────

    def load(self, paths: Iterable[str | Path]) -> list[tuple[str, str]]:
        """Load pages and assets from disk. Returns rejected pages."""
        rejected = load_inputs(paths, self.collection, self.pool)
        for document in self.collection:
            self.tags.merge(document.tree())
        return rejected

    def add_page(self, name: str, text: str) -> Document:
        document = self.collection.add_markup(name, text)
        self.tags.merge(document.tree())
        return document

    def add_asset(self, name: str, data: bytes) -> None:
        self.pool.add(name, data)

    # ─── Bundling ─────────────────────────────────────────────────────────

    def bundle(
        self,
        doc_id: str,
        on_progress: Optional[Callable[[Document], None]] = None,
    ) -> Document:
        """
        Resolve one page's references, updating its status in place.

        A page whose resolution raises is marked failed with the message
        as its only error; per-reference problems leave it resolved.
        """
        document = self.collection.require(doc_id)
        document.status = DocumentStatus.RESOLVING
        document.progress = 0

        def report(percent: int) -> None:
            document.progress = max(document.progress, percent)
            if on_progress:
                on_progress(document)

        try:
            result = self.resolver.resolve(document.content, self.pool, on_progress=report)
        except Exception as e:
            logger.error(f"Bundling failed for {document.name}: {e}")
            document.status = DocumentStatus.FAILED
            document.progress = 100
            document.errors = [str(e)]
            return document

        known = {a.local_name for a in document.assets}
        document.assets.extend(a for a in result.assets if a.local_name not in known)
        document.content = result.content
        document.errors = result.errors
        document.progress = 100
        document.status = DocumentStatus.RESOLVED

        logger.info(
            f"Bundled {document.name}: {len(result.assets)} new asset(s), "
            f"{len(result.errors)} error(s)"
        )
        return document

    def bundle_all(
        self,
        on_progress: Optional[Callable[[Document], None]] = None,
    ) -> BundleReport:
        """Bundle every pending page, one at a time, then validate."""
        for document in self.collection.pending():
            self.bundle(document.id, on_progress=on_progress)
        return self.validate()

    def validate(self) -> BundleReport:
        return BundleValidator().validate(self.collection)

    # ─── Tagging ──────────────────────────────────────────────────────────

    def apply_tags_to_book(
        self,
        category: ElementCategory,
        tags: Iterable[str],
        confirmed: bool = False,
    ) -> BulkTagResult:
        """Bulk-apply tags across every page; see apply_tags_to_collection."""
        tags = list(tags)
        for tag in tags:
            self.tags.add(tag)
        return apply_tags_to_collection(self.collection, category, tags, confirmed=confirmed)

    def clear_all_tags(self) -> int:
        """Strip every annotation from every page. Returns elements cleared."""
        cleared = 0
        for document in self.collection:
            root = document.tree()
            count = clear_tags(root)
            if count:
                document.commit(root)
                cleared += count
        logger.info(f"Cleared tags from {cleared} element(s)")
        return cleared

    # ─── Export ───────────────────────────────────────────────────────────

    def export_archive(self, path: Optional[str | Path] = None) -> bytes:
        """Build the tagged archive; also write it when a path is given."""
        exporter = ArchiveExporter(include_pool_assets=self.config.include_pool_assets)
        data = exporter.export(self.collection.exportable(), self.pool)
        if path is not None:
            save_output(data, path)
        return data

    def export_pdf(
        self,
        path: Optional[str | Path] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> ExportResult:
        """Build the paginated PDF; also write it when a path is given."""
        exporter = PaginatedExporter(
            page_width_mm=self.config.page_width_mm,
            default_page_size=self.config.default_page_size,
            pixel_scale=self.config.pixel_scale,
            jpeg_quality=self.config.jpeg_quality,
        )
        result = exporter.export(
            self.collection.exportable(),
            self.pool,
            progress_callback=progress_callback,
        )
        if path is not None:
            save_output(result.data, path)
        return result
