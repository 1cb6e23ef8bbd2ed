"""
Filesystem Storage
==================
Reads pages and assets from disk into a collection and pool, and writes
export artifacts back out.

Input Layout:
    <inputs...>
    ├── *.svg            # pages, in argument order (directories sorted)
    └── anything else    # asset pool, keyed by filename
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .assets import AssetPool
from .collection import DocumentCollection
from .markup import MarkupError
from .models import Document

logger = logging.getLogger(__name__)

PAGE_SUFFIXES = (".svg",)


def collect_inputs(paths: Iterable[str | Path]) -> tuple[list[Path], list[Path]]:
    """
    Split input paths into page files and asset files.
    Directories are walked recursively in sorted order.

    Raises:
        FileNotFoundError: If an input path does not exist.
    """
    pages: list[Path] = []
    assets: list[Path] = []

    for raw in paths:
        path = Path(raw)
        if not path.exists():
            raise FileNotFoundError(f"Input not found: {path}")

        files = sorted(p for p in path.rglob("*") if p.is_file()) if path.is_dir() else [path]
        for file in files:
            if file.name.startswith("."):
                continue
            if file.suffix.lower() in PAGE_SUFFIXES:
                pages.append(file)
            else:
                assets.append(file)

    return pages, assets


def read_markup(path: Path) -> str:
    return path.read_bytes().decode("utf-8-sig")


def load_inputs(
    paths: Iterable[str | Path],
    collection: DocumentCollection,
    pool: AssetPool,
) -> list[tuple[str, str]]:
    """
    Load pages into the collection and other files into the pool.

    Pages that fail to parse are rejected and never enter the collection.

    Returns:
        (filename, reason) for every rejected page.
    """
    page_paths, asset_paths = collect_inputs(paths)
    rejected: list[tuple[str, str]] = []

    for asset_path in asset_paths:
        pool.add(asset_path.name, asset_path.read_bytes())

    for page_path in page_paths:
        try:
            collection.add_markup(page_path.name, read_markup(page_path))
        except (MarkupError, UnicodeDecodeError) as e:
            logger.warning(f"Rejected {page_path.name}: {e}")
            rejected.append((page_path.name, str(e)))

    logger.info(
        f"Loaded {len(collection)} page(s) and {len(pool)} asset(s) "
        f"({len(rejected)} rejected)"
    )
    return rejected


def save_output(data: bytes, path: str | Path) -> Path:
    """Write an export artifact, creating parent directories."""
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(data)
    logger.info(f"Saved: {dest}")
    return dest


def write_pages(documents: Iterable[Document], directory: str | Path) -> list[Path]:
    """Write each page's current markup under its name."""
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for document in documents:
        dest = out_dir / document.name
        dest.write_text(document.content, encoding="utf-8")
        written.append(dest)
    return written
