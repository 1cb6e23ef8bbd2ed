"""
Paginated Export Pipeline
=========================
Turns an ordered list of pages into one raster-backed PDF using PyMuPDF.

Each page runs, on a private copy, through:
    START → REDACT → EMBED → MEASURE → LAYOUT → RASTERIZE → APPEND → SUCCESS

A failure at any stage appends a diagnostic placeholder page instead and
the run continues. After the first page succeeds in a multi-page export,
a blank inside-cover page shaped like the second page is inserted.
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Callable, Iterable, Optional
from urllib.parse import unquote_to_bytes
from xml.etree import ElementTree as ET

import fitz  # PyMuPDF

from .assets import (
    AssetPool,
    font_mime_type,
    get_filename,
    image_mime_type,
    is_font_file,
)
from .markup import (
    CSS_URL_PATTERN,
    XLINK_HREF,
    MarkupError,
    get_href,
    iter_named,
    parse_number,
    serialize_markup,
    style_property,
)
from .models import (
    Document,
    ExportResult,
    Orientation,
    PageLayout,
    PageReport,
    PageStage,
)
from .redaction import FILTER_REFERENCE, redact

logger = logging.getLogger(__name__)

PAGE_WIDTH_MM = 210.0
DEFAULT_PAGE_SIZE = (210.0, 297.0)
PIXELS_PER_MM = 12.0
JPEG_QUALITY = 95

MM_PER_INCH = 25.4
POINTS_PER_INCH = 72.0

# Placeholder label offset from the top-left corner
PLACEHOLDER_MARGIN_MM = 10.0

SVG_MIME = "image/svg+xml"

_HEX_COLOR = re.compile(r"^#([0-9a-f]{3,4}|[0-9a-f]{6}|[0-9a-f]{8})$")
_RGB_COLOR = re.compile(r"^rgba?\(([^)]*)\)$")


class ExportError(RuntimeError):
    """Raised when an export produces no valid output."""


def mm_to_pt(value: float) -> float:
    return value * POINTS_PER_INCH / MM_PER_INCH


# ─── Measure / Layout ─────────────────────────────────────────────────────────


def measure(
    root: ET.Element,
    default: tuple[float, float] = DEFAULT_PAGE_SIZE,
) -> tuple[float, float]:
    """
    Intrinsic page size: viewBox width/height if both positive, else the
    numeric width/height attributes if both positive, else the default.
    """
    view_box = root.get("viewBox")
    if view_box:
        parts = [p for p in re.split(r"[\s,]+", view_box.strip()) if p]
        if len(parts) == 4:
            try:
                width, height = float(parts[2]), float(parts[3])
            except ValueError:
                width = height = 0.0
            if width > 0 and height > 0:
                return width, height

    width = parse_number(root.get("width"))
    height = parse_number(root.get("height"))
    if width and height and width > 0 and height > 0:
        return width, height

    return default


def compute_layout(
    intrinsic: tuple[float, float],
    page_width_mm: float = PAGE_WIDTH_MM,
) -> PageLayout:
    """Fixed physical width; height follows the intrinsic aspect ratio."""
    width, height = intrinsic
    page_height_mm = page_width_mm / (width / height)
    orientation = (
        Orientation.LANDSCAPE if page_width_mm > page_height_mm
        else Orientation.PORTRAIT
    )
    return PageLayout(
        width_mm=page_width_mm,
        height_mm=page_height_mm,
        orientation=orientation,
    )


# ─── Background Detection ─────────────────────────────────────────────────────


def detect_background_color(root: ET.Element) -> Optional[str]:
    """
    Background color of a page: the root's style background, else the
    fill of the first full-bleed <rect> (100% x 100%, or equal to the
    root's declared width/height).
    """
    background = (
        style_property(root, "background-color")
        or style_property(root, "background")
    )
    if background:
        return background

    width, height = root.get("width"), root.get("height")
    for rect in iter_named(root, "rect"):
        rect_w, rect_h = rect.get("width"), rect.get("height")
        full_percent = rect_w == "100%" and rect_h == "100%"
        matches_page = (
            width is not None and height is not None
            and rect_w == width and rect_h == height
        )
        if full_percent or matches_page:
            return rect.get("fill") or style_property(rect, "fill")
    return None


def parse_color(value: Optional[str]) -> Optional[tuple[float, float, float]]:
    """
    CSS color to an RGB float triple. Returns None for none/transparent
    or unparseable values; unknown names resolve to white.
    """
    if not value:
        return None
    color = value.strip().lower()
    if color in ("none", "transparent", "inherit", "currentcolor"):
        return None

    hex_match = _HEX_COLOR.match(color)
    if hex_match:
        digits = hex_match.group(1)
        if len(digits) in (3, 4):
            digits = "".join(c * 2 for c in digits)
        if len(digits) == 8 and int(digits[6:8], 16) == 0:
            return None
        return tuple(int(digits[i:i + 2], 16) / 255.0 for i in (0, 2, 4))

    rgb_match = _RGB_COLOR.match(color)
    if rgb_match:
        parts = [p.strip() for p in re.split(r"[\s,/]+", rgb_match.group(1)) if p.strip()]
        if len(parts) < 3:
            return None
        channels = []
        for part in parts[:3]:
            number = parse_number(part)
            if number is None:
                return None
            scaled = number / 100.0 if part.endswith("%") else number / 255.0
            channels.append(min(1.0, max(0.0, scaled)))
        if len(parts) > 3 and _alpha(parts[3]) == 0:
            return None
        return tuple(channels)

    if color.startswith("url("):
        return None
    return tuple(fitz.utils.getColor(color))


def _alpha(part: str) -> Optional[float]:
    number = parse_number(part)
    if number is None:
        return None
    return number / 100.0 if part.endswith("%") else number


def is_white(rgb: tuple[float, float, float]) -> bool:
    return all(channel >= 0.999 for channel in rgb)


# ─── Embed ────────────────────────────────────────────────────────────────────


def _data_uri(mime: str, data: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def _find_payload(reference: str, document: Document, pool: AssetPool) -> Optional[bytes]:
    name = get_filename(reference)
    if not name:
        return None
    asset = document.find_asset(name)
    if asset is not None:
        return asset.data
    return pool.get(name)


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """
    Split a data: URI into its MIME type and payload.

    Raises:
        ValueError: If the URI is malformed or its base64 is invalid.
    """
    header, sep, payload = uri[len("data:"):].partition(",")
    if not sep:
        raise ValueError("Malformed data URI")
    params = header.split(";")
    mime = params[0].strip().lower() or "text/plain"
    if "base64" in (p.strip().lower() for p in params[1:]):
        return mime, base64.b64decode(re.sub(r"\s+", "", payload), validate=True)
    return mime, unquote_to_bytes(payload)


def _load_pixmap(data: bytes, mime: Optional[str]) -> fitz.Pixmap:
    if mime == SVG_MIME or data.lstrip().startswith((b"<svg", b"<?xml")):
        with fitz.open(stream=data, filetype="svg") as svg:
            return svg[0].get_pixmap(alpha=False)
    return fitz.Pixmap(data)


def obscure_image(data: bytes, mime: Optional[str] = None) -> bytes:
    """
    Average an image payload down to a few pixels so redaction survives
    rasterization. SVG payloads are rasterized first.
    Raises if the payload cannot be decoded.
    """
    pix = _load_pixmap(data, mime)
    if pix.colorspace is not None and pix.colorspace.n > 3:
        pix = fitz.Pixmap(fitz.csRGB, pix)

    # Average down until the short side is one pixel, close to what the
    # wide blur filter would show
    factor = (min(pix.width, pix.height) - 1).bit_length()
    if factor > 0:
        pix.shrink(factor)
    return pix.tobytes("png")


def embed_assets(root: ET.Element, document: Document, pool: AssetPool) -> ET.Element:
    """
    Inline every resolvable image and font reference as base64 data.
    Operates on the given (private) tree only.
    """
    for image in iter_named(root, "image"):
        href = get_href(image)
        redacted = image.get("filter") == FILTER_REFERENCE
        if not href or href.startswith("#"):
            continue

        if href.startswith("data:"):
            # Already inline; only redaction needs a rewrite
            if not redacted:
                continue
            mime, data = decode_data_uri(href)
        else:
            data = _find_payload(href, document, pool)
            if data is None:
                continue
            mime = image_mime_type(get_filename(href))

        if redacted:
            uri = _data_uri("image/png", obscure_image(data, mime))
        else:
            uri = _data_uri(mime, data)
        image.set("href", uri)
        # MuPDF reads xlink:href; keep both pointing at the inline payload
        image.set(XLINK_HREF, uri)

    for style in iter_named(root, "style"):
        css = style.text or ""
        pieces: list[str] = []
        cursor = 0
        for match in CSS_URL_PATTERN.finditer(css):
            url = match.group(1).strip()
            if not is_font_file(url):
                continue
            data = _find_payload(url, document, pool)
            if data is None:
                continue
            pieces.append(css[cursor:match.start(1)])
            pieces.append(_data_uri(font_mime_type(url), data))
            cursor = match.end(1)
        if cursor:
            pieces.append(css[cursor:])
            style.text = "".join(pieces)

    return root


# ─── Exporter ─────────────────────────────────────────────────────────────────


class PaginatedExporter:
    """
    Builds a paginated PDF from resolved pages.

    Stateless between calls; safe to construct per export.
    """

    def __init__(
        self,
        page_width_mm: float = PAGE_WIDTH_MM,
        default_page_size: tuple[float, float] = DEFAULT_PAGE_SIZE,
        pixel_scale: float = PIXELS_PER_MM,
        jpeg_quality: int = JPEG_QUALITY,
    ):
        self.page_width_mm = page_width_mm
        self.default_page_size = default_page_size
        self.pixel_scale = pixel_scale
        self.jpeg_quality = jpeg_quality

    def export(
        self,
        documents: Iterable[Document],
        pool: Optional[AssetPool] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> ExportResult:
        """
        Render documents, in order, into one PDF.

        Args:
            documents: Ordered pages to export. They are never modified.
            pool: Shared asset pool used when a page's own assets lack a file.
            progress_callback: Callback(current, total) after each page.

        Returns:
            ExportResult with the PDF bytes and one report per output page.

        Raises:
            ExportError: If no page renders or the PDF cannot be assembled.
        """
        pages = list(documents)
        pool = pool or AssetPool()
        if not pages:
            raise ExportError("No pages to export")

        out = fitz.open()
        reports: list[PageReport] = []
        succeeded = 0

        try:
            for index, document in enumerate(pages):
                report = self._render_page(out, document, pool)
                reports.append(report)

                if report.succeeded:
                    succeeded += 1
                    if index == 0 and len(pages) > 1:
                        reports.append(self._append_inside_cover(out, pages[1]))

                if progress_callback:
                    progress_callback(index + 1, len(pages))

            if succeeded == 0:
                raise ExportError("No pages could be rendered")

            try:
                data = out.tobytes(garbage=3, deflate=True)
            except Exception as e:
                raise ExportError(f"Failed to assemble PDF: {e}") from e
        finally:
            out.close()

        logger.info(
            f"Exported {len(reports)} page(s): {succeeded} rendered, "
            f"{len(pages) - succeeded} placeholder(s)"
        )
        return ExportResult(data=data, pages=reports)

    # ─── Page stages ───

    def _render_page(self, out: fitz.Document, document: Document, pool: AssetPool) -> PageReport:
        stage = PageStage.START
        layout: Optional[PageLayout] = None
        try:
            stage = PageStage.REDACT
            root = redact(document.tree())

            stage = PageStage.EMBED
            embed_assets(root, document, pool)

            stage = PageStage.MEASURE
            intrinsic = measure(root, self.default_page_size)

            stage = PageStage.LAYOUT
            layout = compute_layout(intrinsic, self.page_width_mm)

            stage = PageStage.RASTERIZE
            jpeg = self.rasterize(serialize_markup(root), layout)

            stage = PageStage.APPEND
            self._append_image_page(out, layout, jpeg)

        except Exception as e:
            logger.error(
                f"Failed to process page {document.name} "
                f"at stage '{stage.value}': {e}"
            )
            self._append_placeholder(out, document.name)
            return PageReport(
                index=out.page_count - 1,
                document_name=document.name,
                stage=PageStage.FAILED,
                failed_stage=stage,
                error=str(e) or e.__class__.__name__,
            )

        return PageReport(
            index=out.page_count - 1,
            document_name=document.name,
            stage=PageStage.SUCCESS,
            layout=layout,
        )

    def rasterize(self, svg_text: str, layout: PageLayout) -> bytes:
        """Render SVG onto a white canvas at pixel_scale px/mm; return JPEG."""
        pixel_w = max(1, round(layout.width_mm * self.pixel_scale))
        pixel_h = max(1, round(layout.height_mm * self.pixel_scale))

        with fitz.open(stream=svg_text.encode("utf-8"), filetype="svg") as svg:
            page = svg[0]
            matrix = fitz.Matrix(pixel_w / page.rect.width, pixel_h / page.rect.height)
            pix = page.get_pixmap(matrix=matrix, alpha=False)
            return pix.tobytes("jpeg", jpg_quality=self.jpeg_quality)

    def _append_image_page(self, out: fitz.Document, layout: PageLayout, jpeg: bytes) -> None:
        page = out.new_page(width=layout.width_pt, height=layout.height_pt)
        try:
            page.insert_image(page.rect, stream=jpeg)
        except Exception:
            out.delete_page(page.number)
            raise

    def _append_placeholder(self, out: fitz.Document, name: str) -> None:
        width, height = self.default_page_size
        page = out.new_page(width=mm_to_pt(width), height=mm_to_pt(height))
        page.insert_text(
            fitz.Point(mm_to_pt(PLACEHOLDER_MARGIN_MM), mm_to_pt(PLACEHOLDER_MARGIN_MM)),
            f"Error processing page: {name}",
            fontsize=11,
        )

    def _append_inside_cover(self, out: fitz.Document, next_document: Document) -> PageReport:
        """Blank page shaped like the next page, filled with its background."""
        try:
            root = next_document.tree()
            layout = compute_layout(measure(root, self.default_page_size), self.page_width_mm)
            color = detect_background_color(root)
        except MarkupError:
            layout = compute_layout(self.default_page_size, self.page_width_mm)
            color = None

        page = out.new_page(width=layout.width_pt, height=layout.height_pt)

        rgb = parse_color(color)
        filled = rgb is not None and not is_white(rgb)
        if filled:
            page.draw_rect(page.rect, color=None, fill=rgb, width=0)

        return PageReport(
            index=out.page_count - 1,
            document_name=None,
            stage=PageStage.SUCCESS,
            layout=layout,
            inside_cover=True,
            fill_color=color if filled else None,
        )
