"""
Test Suite for Paginated Export and CLI
=======================================
Measurement, layout, background detection, PDF assembly with PyMuPDF,
and the click command line.
"""

from __future__ import annotations

import base64
import io
import statistics
import zipfile

import fitz  # PyMuPDF
import pytest
from click.testing import CliRunner

from svgbook.assets import AssetPool
from svgbook.cli import cli
from svgbook.markup import TAG_ATTR, XLINK_HREF, get_href, iter_named, parse_markup
from svgbook.models import Asset, Document, Orientation, PageStage
from svgbook.paginate import (
    DEFAULT_PAGE_SIZE,
    ExportError,
    PaginatedExporter,
    compute_layout,
    detect_background_color,
    embed_assets,
    measure,
    mm_to_pt,
    obscure_image,
    parse_color,
)

NS = 'xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink"'


def page(width: int, height: int, body: str = "", style: str = "") -> str:
    style_attr = f' style="{style}"' if style else ""
    return (
        f'<svg {NS} width="{width}" height="{height}" '
        f'viewBox="0 0 {width} {height}"{style_attr}>{body}</svg>'
    )


def png_bytes(side: int = 64) -> bytes:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, side, side), False)
    pix.set_rect(pix.irect, (200, 30, 30))
    return pix.tobytes("png")


def checkerboard_png(side: int = 128) -> bytes:
    half = side // 2
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, side, side), False)
    pix.set_rect(pix.irect, (255, 255, 255))
    pix.set_rect(fitz.IRect(0, 0, half, half), (0, 0, 0))
    pix.set_rect(fitz.IRect(half, half, side, side), (0, 0, 0))
    return pix.tobytes("png")


def inline(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def first_page_variance(pdf_bytes: bytes) -> float:
    with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
        pix = pdf[0].get_pixmap(matrix=fitz.Matrix(0.25, 0.25), alpha=False)
    return statistics.pvariance(pix.samples)


def exporter() -> PaginatedExporter:
    # Low density keeps rasterization fast
    return PaginatedExporter(pixel_scale=1.0, jpeg_quality=60)


# ═══════════════════════════════════════════════════════════════════════════════
# MEASURE / LAYOUT TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestMeasure:
    """Test intrinsic size fallbacks."""

    def test_view_box_wins(self):
        root = parse_markup(f'<svg {NS} width="10" height="10" viewBox="0 0 400 200"/>')
        assert measure(root) == (400.0, 200.0)

    def test_degenerate_view_box_falls_back_to_attributes(self):
        root = parse_markup(f'<svg {NS} width="300mm" height="150" viewBox="0 0 0 0"/>')
        assert measure(root) == (300.0, 150.0)

    def test_comma_separated_view_box(self):
        root = parse_markup(f'<svg {NS} viewBox="0,0,50,25"/>')
        assert measure(root) == (50.0, 25.0)

    def test_missing_dimensions_use_default(self):
        root = parse_markup(f'<svg {NS} width="auto"/>')
        assert measure(root) == DEFAULT_PAGE_SIZE
        assert measure(root, (100.0, 50.0)) == (100.0, 50.0)


class TestComputeLayout:
    """Test fixed-width pagination."""

    def test_landscape(self):
        layout = compute_layout((400, 200), 210)
        assert layout.width_mm == 210
        assert layout.height_mm == pytest.approx(105)
        assert layout.orientation == Orientation.LANDSCAPE

    def test_portrait(self):
        layout = compute_layout((100, 200), 210)
        assert layout.height_mm == pytest.approx(420)
        assert layout.orientation == Orientation.PORTRAIT

    def test_square_is_portrait(self):
        layout = compute_layout((100, 100), 210)
        assert layout.height_mm == pytest.approx(210)
        assert layout.orientation == Orientation.PORTRAIT

    def test_points(self):
        layout = compute_layout((210, 297), 210)
        assert layout.width_pt == pytest.approx(mm_to_pt(210))
        assert layout.height_pt == pytest.approx(mm_to_pt(297))


# ═══════════════════════════════════════════════════════════════════════════════
# BACKGROUND COLOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestBackgroundColor:
    """Test inside-cover color detection and parsing."""

    def test_root_style_background(self):
        root = parse_markup(page(10, 10, style="background-color: #112233"))
        assert detect_background_color(root) == "#112233"

    def test_root_style_background_shorthand(self):
        root = parse_markup(page(10, 10, style="background: navy"))
        assert detect_background_color(root) == "navy"

    def test_full_bleed_percent_rect(self):
        root = parse_markup(page(10, 10, '<rect width="100%" height="100%" fill="#ff0000"/>'))
        assert detect_background_color(root) == "#ff0000"

    def test_rect_matching_page_size_uses_style_fill(self):
        root = parse_markup(page(
            10, 10,
            '<rect width="5" height="5" fill="#000000"/>'
            '<rect width="10" height="10" style="fill: #00ff00"/>',
        ))
        assert detect_background_color(root) == "#00ff00"

    def test_no_background(self):
        root = parse_markup(page(10, 10, '<rect width="5" height="5" fill="#000"/>'))
        assert detect_background_color(root) is None

    def test_parse_hex_and_rgb(self):
        assert parse_color("#fff") == (1.0, 1.0, 1.0)
        assert parse_color("#ff0000") == (1.0, 0.0, 0.0)
        assert parse_color("rgb(255, 0, 0)") == (1.0, 0.0, 0.0)
        assert parse_color("rgba(0, 0, 255, 0.5)") == (0.0, 0.0, 1.0)

    def test_parse_named_color(self):
        assert parse_color("red") == pytest.approx((1.0, 0.0, 0.0))

    def test_transparent_values(self):
        assert parse_color("none") is None
        assert parse_color("transparent") is None
        assert parse_color("url(#grad)") is None
        assert parse_color(None) is None

    def test_zero_alpha_is_transparent(self):
        assert parse_color("rgba(0, 0, 0, 0)") is None
        assert parse_color("rgba(0 0 0 / 0%)") is None
        assert parse_color("#0000") is None
        assert parse_color("#00000000") is None
        assert parse_color("#000000ff") == (0.0, 0.0, 0.0)


# ═══════════════════════════════════════════════════════════════════════════════
# EMBED TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestEmbedAssets:
    """Test inlining of bundled payloads for rasterization."""

    def test_document_asset_is_inlined(self):
        doc = Document.from_markup("p.svg", page(10, 10, '<image href="images/a.png"/>'))
        doc.assets = [Asset(original_url="a.png", local_name="a.png", data=b"\x89PNG")]
        root = embed_assets(doc.tree(), doc, AssetPool())
        image = next(iter_named(root, "image"))
        assert get_href(image).startswith("data:image/png;base64,")
        assert image.get(XLINK_HREF) == image.get("href")

    def test_pool_fallback_and_fonts(self):
        doc = Document.from_markup(
            "p.svg",
            page(10, 10, "<style>@font-face { src: url(fonts/Brand.woff2); }</style>"),
        )
        pool = AssetPool({"Brand.woff2": b"wOF2"})
        root = embed_assets(doc.tree(), doc, pool)
        css = next(iter_named(root, "style")).text
        assert "url(data:font/woff2;base64," in css

    def test_unknown_reference_left_alone(self):
        doc = Document.from_markup("p.svg", page(10, 10, '<image href="images/none.png"/>'))
        root = embed_assets(doc.tree(), doc, AssetPool())
        assert get_href(next(iter_named(root, "image"))) == "images/none.png"

    def test_obscure_image_downsamples(self):
        pix = fitz.Pixmap(obscure_image(png_bytes(64)))
        assert (pix.width, pix.height) == (1, 1)

    def test_obscure_image_rasterizes_svg(self):
        logo = page(40, 20, '<rect width="20" height="20" fill="#000"/>').encode("utf-8")
        for mime in ("image/svg+xml", None):
            pix = fitz.Pixmap(obscure_image(logo, mime))
            assert min(pix.width, pix.height) == 1
            assert pix.width <= 3

    def test_inline_image_left_alone_unless_redacted(self):
        uri = inline(png_bytes(8))
        doc = Document.from_markup("p.svg", page(10, 10, f'<image href="{uri}"/>'))
        root = embed_assets(doc.tree(), doc, AssetPool())
        assert get_href(next(iter_named(root, "image"))) == uri

    def test_redacted_inline_image_is_obscured(self):
        uri = inline(checkerboard_png())
        doc = Document.from_markup(
            "p.svg", page(10, 10, f'<image href="{uri}" filter="url(#redact-blur)"/>'),
        )
        root = embed_assets(doc.tree(), doc, AssetPool())
        href = get_href(next(iter_named(root, "image")))
        assert href != uri
        payload = base64.b64decode(href.split(",", 1)[1])
        assert fitz.Pixmap(payload).width == 1

    def test_obscure_image_rejects_garbage(self):
        with pytest.raises(Exception):
            obscure_image(b"definitely not an image")


# ═══════════════════════════════════════════════════════════════════════════════
# PAGINATED EXPORT TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPaginatedExporter:
    """Test page assembly, inside cover and failure placeholders."""

    def test_inside_cover_matches_second_page(self):
        docs = [
            Document.from_markup("one.svg", page(100, 100, '<rect width="50" height="50"/>')),
            Document.from_markup("two.svg", page(400, 200, style="background-color: #336699")),
            Document.from_markup("three.svg", page(100, 200)),
        ]
        result = exporter().export(docs)

        assert result.page_count == 4
        assert [p.document_name for p in result.pages] == ["one.svg", None, "two.svg", "three.svg"]
        cover = result.pages[1]
        assert cover.inside_cover
        assert cover.layout == compute_layout((400, 200), 210)
        assert cover.layout.orientation == Orientation.LANDSCAPE
        assert cover.fill_color == "#336699"

        with fitz.open(stream=result.data, filetype="pdf") as pdf:
            assert pdf.page_count == 4
            assert pdf[1].rect.width == pytest.approx(mm_to_pt(210), abs=0.01)
            assert pdf[1].rect.height == pytest.approx(mm_to_pt(105), abs=0.01)
            assert pdf[1].rect.height == pytest.approx(pdf[2].rect.height, abs=0.01)
            assert pdf[3].rect.height == pytest.approx(mm_to_pt(420), abs=0.01)

    def test_white_background_leaves_cover_unfilled(self):
        docs = [
            Document.from_markup("one.svg", page(10, 10)),
            Document.from_markup("two.svg", page(10, 10, '<rect width="100%" height="100%" fill="white"/>')),
        ]
        result = exporter().export(docs)
        assert result.pages[1].inside_cover
        assert result.pages[1].fill_color is None

    def test_single_page_has_no_inside_cover(self):
        result = exporter().export([Document.from_markup("one.svg", page(10, 10))])
        assert result.page_count == 1
        assert not result.pages[0].inside_cover

    def test_failed_page_becomes_placeholder(self):
        pool = AssetPool({"bad.png": b"garbage"})
        good = Document.from_markup("good.svg", page(100, 100))
        bad = Document.from_markup(
            "bad.svg",
            page(100, 100, '<image href="images/bad.png" width="10" height="10" data-tags="redact"/>'),
        )
        result = exporter().export([good, bad], pool)

        assert result.page_count == 3
        failed = result.pages[2]
        assert failed.stage == PageStage.FAILED
        assert failed.failed_stage == PageStage.EMBED
        assert failed.document_name == "bad.svg"
        assert result.failed_pages == 1

        with fitz.open(stream=result.data, filetype="pdf") as pdf:
            assert "Error processing page: bad.svg" in pdf[2].get_text()
            width, height = DEFAULT_PAGE_SIZE
            assert pdf[2].rect.height == pytest.approx(mm_to_pt(height), abs=0.01)

    def test_failed_first_page_skips_inside_cover(self):
        pool = AssetPool({"bad.png": b"garbage"})
        bad = Document.from_markup(
            "bad.svg",
            page(100, 100, '<image href="bad.png" data-tags="redact"/>'),
        )
        good = Document.from_markup("good.svg", page(100, 100))
        result = exporter().export([bad, good], pool)
        assert result.page_count == 2
        assert not any(p.inside_cover for p in result.pages)

    def test_redacted_image_renders(self):
        doc = Document.from_markup(
            "p.svg",
            page(100, 100, '<image href="images/photo.png" width="100" height="100" data-tags="redact"/>'),
        )
        doc.assets = [Asset(original_url="photo.png", local_name="photo.png", data=png_bytes(128))]
        result = exporter().export([doc])
        assert result.pages[0].succeeded

    def test_redacted_inline_image_is_obscured_in_pdf(self):
        uri = inline(checkerboard_png())
        body = f'<image href="{uri}" width="100" height="100"%s/>'
        plain = Document.from_markup("plain.svg", page(100, 100, body % ""))
        hidden = Document.from_markup("hidden.svg", page(100, 100, body % ' data-tags="redact"'))

        plain_variance = first_page_variance(exporter().export([plain]).data)
        hidden_result = exporter().export([hidden])

        assert hidden_result.pages[0].succeeded
        assert plain_variance > 1000
        assert first_page_variance(hidden_result.data) < plain_variance / 4

    def test_undecodable_inline_redacted_image_fails_page(self):
        good = Document.from_markup("good.svg", page(10, 10))
        bad = Document.from_markup(
            "bad.svg",
            page(10, 10, '<image href="data:image/png;base64,bm90IGFuIGltYWdl" data-tags="redact"/>'),
        )
        result = exporter().export([good, bad])
        assert result.pages[-1].failed_stage == PageStage.EMBED

    def test_redacted_svg_asset_renders(self):
        logo = page(40, 20, '<rect width="20" height="20" fill="#000"/>').encode("utf-8")
        doc = Document.from_markup(
            "p.svg",
            page(100, 100, '<image href="images/logo.svg" width="50" height="25" data-tags="redact"/>'),
        )
        result = exporter().export([doc], AssetPool({"logo.svg": logo}))
        assert result.pages[0].succeeded

    def test_transparent_background_leaves_cover_unfilled(self):
        docs = [
            Document.from_markup("one.svg", page(10, 10)),
            Document.from_markup(
                "two.svg", page(10, 10, '<rect width="100%" height="100%" fill="rgba(0,0,0,0)"/>'),
            ),
        ]
        result = exporter().export(docs)
        assert result.pages[1].inside_cover
        assert result.pages[1].fill_color is None

    def test_source_documents_are_not_modified(self):
        doc = Document.from_markup("p.svg", page(10, 10, '<text data-tags="redact">Secret</text>'))
        before = doc.content
        exporter().export([doc])
        assert doc.content == before

    def test_progress_callback(self):
        calls = []
        docs = [Document.from_markup(f"{i}.svg", page(10, 10)) for i in range(3)]
        exporter().export(docs, progress_callback=lambda current, total: calls.append((current, total)))
        assert calls == [(1, 3), (2, 3), (3, 3)]

    def test_empty_export_raises(self):
        with pytest.raises(ExportError):
            exporter().export([])

    def test_all_pages_failing_raises(self):
        pool = AssetPool({"bad.png": b"garbage"})
        bad = Document.from_markup("bad.svg", page(10, 10, '<image href="bad.png" data-tags="redact"/>'))
        with pytest.raises(ExportError, match="No pages"):
            exporter().export([bad], pool)


# ═══════════════════════════════════════════════════════════════════════════════
# CLI TESTS
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def book_dir(tmp_path):
    pages = tmp_path / "pages"
    pages.mkdir()
    (pages / "a.svg").write_text(
        page(100, 100, '<image href="shared.png" width="10" height="10"/><text>Hi</text>'),
        encoding="utf-8",
    )
    (pages / "b.svg").write_text(
        page(200, 100, '<text data-tags="redact">Secret</text>'),
        encoding="utf-8",
    )
    (pages / "shared.png").write_bytes(png_bytes(8))
    return pages


class TestCli:
    """Test the command line with click's runner."""

    def test_info(self, book_dir):
        result = CliRunner().invoke(cli, ["info", str(book_dir)])
        assert result.exit_code == 0, result.output

    def test_bundle_writes_archive(self, book_dir, tmp_path):
        out = tmp_path / "book.zip"
        result = CliRunner().invoke(
            cli, ["bundle", str(book_dir), "-o", str(out), "--no-network"],
        )
        assert result.exit_code == 0, result.output
        with zipfile.ZipFile(io.BytesIO(out.read_bytes())) as archive:
            names = archive.namelist()
        assert {"a.svg", "b.svg", "images/shared.png"} <= set(names)

    def test_pdf_writes_document(self, book_dir, tmp_path):
        out = tmp_path / "book.pdf"
        result = CliRunner().invoke(
            cli,
            ["pdf", str(book_dir), "-o", str(out), "--pixel-scale", "1", "--no-network"],
        )
        assert result.exit_code == 0, result.output
        with fitz.open(str(out)) as pdf:
            assert pdf.page_count == 3

    def test_tag_requires_confirmation(self, book_dir, tmp_path):
        out = tmp_path / "tagged"
        result = CliRunner().invoke(
            cli, ["tag", str(book_dir), "--tag", "cover", "--category", "image", "-o", str(out)],
        )
        assert result.exit_code == 1
        assert not out.exists()

    def test_tag_with_yes_writes_pages(self, book_dir, tmp_path):
        out = tmp_path / "tagged"
        result = CliRunner().invoke(
            cli,
            ["tag", str(book_dir), "-t", "cover", "-c", "image", "-o", str(out), "--yes"],
        )
        assert result.exit_code == 0, result.output
        root = parse_markup((out / "a.svg").read_text(encoding="utf-8"))
        assert next(iter_named(root, "image")).get(TAG_ATTR) == "cover"

    def test_clear_strips_tags(self, book_dir, tmp_path):
        out = tmp_path / "clean"
        result = CliRunner().invoke(cli, ["clear", str(book_dir), "-o", str(out)])
        assert result.exit_code == 0, result.output
        assert TAG_ATTR not in (out / "b.svg").read_text(encoding="utf-8")

    def test_no_pages_is_an_error(self, tmp_path):
        (tmp_path / "only.png").write_bytes(b"x")
        result = CliRunner().invoke(cli, ["info", str(tmp_path)])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_missing_input_is_rejected(self, tmp_path):
        result = CliRunner().invoke(cli, ["info", str(tmp_path / "nope")])
        assert result.exit_code == 2
