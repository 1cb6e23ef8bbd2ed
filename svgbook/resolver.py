"""
Asset Resolver
==============
Rewrites a page's external image and font references into local bundle
paths (`images/<name>`, `fonts/<name>`), adopting payloads from the asset
pool or fetching them over the network.

References are processed strictly in discovery order so the dedup map and
the progress counter stay consistent. Failures are collected per reference
and never abort the call.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from .assets import (
    AssetPool,
    extension_for_content_type,
    extension_of,
    get_filename,
    is_font_file,
    is_image_file,
    is_network_reference,
)
from .fetch import Fetcher, FetchError, HttpFetcher
from .markup import (
    CSS_URL_PATTERN,
    get_href,
    iter_named,
    parse_markup,
    serialize_markup,
    set_href,
)
from .models import Asset, AssetKind, ResolutionResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

BUNDLE_FOLDERS = {
    AssetKind.IMAGE: "images",
    AssetKind.FONT: "fonts",
}


def bundle_path(kind: AssetKind, local_name: str) -> str:
    return f"{BUNDLE_FOLDERS[kind]}/{local_name}"


def is_bundle_reference(reference: str, kind: AssetKind) -> bool:
    """True for references already rewritten to `images/x` or `fonts/x`."""
    prefix = BUNDLE_FOLDERS[kind] + "/"
    rest = reference[len(prefix):]
    return reference.startswith(prefix) and bool(rest) and "/" not in rest


def is_skipped_reference(reference: str, kind: AssetKind) -> bool:
    """Inline data, same-document fragments and bundle paths are left alone."""
    return (
        reference.startswith("data:")
        or reference.startswith("#")
        or is_bundle_reference(reference, kind)
    )


@dataclass
class _ResolutionRun:
    """Mutable state of one resolve() call."""
    pool: AssetPool
    total: int
    on_progress: Optional[ProgressCallback] = None
    names: dict[str, str] = field(default_factory=dict)
    assets: list[Asset] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    processed: int = 0
    modified: bool = False

    @property
    def taken(self) -> set[str]:
        return {a.local_name for a in self.assets}

    def adopt(self, reference: str, local_name: str, data: bytes, kind: AssetKind) -> str:
        if local_name not in self.taken:
            self.assets.append(Asset(
                original_url=reference,
                local_name=local_name,
                data=data,
                kind=kind,
            ))
        self.names[reference] = local_name
        return local_name

    def fail(self, reference: str, reason: str) -> None:
        message = f"Failed to load {reference}: {reason}"
        logger.warning(message)
        self.errors.append(message)

    def advance(self) -> None:
        self.processed += 1
        if self.on_progress and self.total > 0:
            self.on_progress(self.processed * 100 // self.total)


class AssetResolver:
    """
    Stateless resolution service; construct one per caller or share it.

    Usage:
        resolver = AssetResolver(HttpFetcher(timeout=30))
        result = resolver.resolve(svg_text, pool, on_progress=print)
    """

    def __init__(self, fetcher: Optional[Fetcher] = None):
        self.fetcher = fetcher or HttpFetcher()

    def resolve(
        self,
        content: str,
        pool: AssetPool,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ResolutionResult:
        """
        Resolve every image and font reference in a page.

        Args:
            content: SVG markup text.
            pool: Caller-supplied filename -> bytes assets.
            on_progress: Called with a floored percentage after each unit.

        Returns:
            ResolutionResult with rewritten markup (the input text verbatim
            when nothing changed), newly resolved assets and errors.

        Raises:
            MarkupError: If the content does not parse.
        """
        root = parse_markup(content)

        images = list(iter_named(root, "image"))
        stylesheets = []
        for style in iter_named(root, "style"):
            css = style.text or ""
            matches = [
                m for m in CSS_URL_PATTERN.finditer(css)
                if is_font_file(m.group(1).strip())
            ]
            if matches:
                stylesheets.append((style, css, matches))

        total = len(images) + sum(len(m) for _, _, m in stylesheets)
        run = _ResolutionRun(pool=pool, total=total, on_progress=on_progress)

        # ─── 1. Images ───
        for image in images:
            href = get_href(image)
            if href:
                local_name = self._resolve_reference(run, href.strip(), AssetKind.IMAGE)
                if local_name:
                    set_href(image, bundle_path(AssetKind.IMAGE, local_name))
                    run.modified = True
            run.advance()

        # ─── 2. Fonts inside stylesheets ───
        for style, css, matches in stylesheets:
            pieces: list[str] = []
            cursor = 0
            for match in matches:
                url = match.group(1).strip()
                local_name = self._resolve_reference(run, url, AssetKind.FONT)
                if local_name:
                    pieces.append(css[cursor:match.start(1)])
                    pieces.append(bundle_path(AssetKind.FONT, local_name))
                    cursor = match.end(1)
                run.advance()
            if cursor:
                pieces.append(css[cursor:])
                style.text = "".join(pieces)
                run.modified = True

        logger.info(
            f"Resolved {len(run.names)} reference(s) into "
            f"{len(run.assets)} asset(s), {len(run.errors)} error(s)"
        )

        return ResolutionResult(
            content=serialize_markup(root) if run.modified else content,
            assets=run.assets,
            errors=run.errors,
        )

    def _resolve_reference(
        self, run: _ResolutionRun, reference: str, kind: AssetKind
    ) -> Optional[str]:
        """Return the local name for a reference, or None if left untouched."""
        if is_skipped_reference(reference, kind):
            return None

        # 1. Dedup within this call
        if reference in run.names:
            return run.names[reference]

        # 2. Caller's asset pool
        filename = get_filename(reference)
        if filename and filename in run.pool:
            return run.adopt(reference, filename, run.pool.get(filename), kind)

        # 3. Remote fetch
        if is_network_reference(reference):
            try:
                resource = self.fetcher.fetch(reference)
            except FetchError as e:
                run.fail(reference, str(e))
                return None
            local_name = self._name_for_fetch(run, filename, kind, resource.content_type)
            logger.debug(f"Fetched {reference} as {local_name}")
            return run.adopt(reference, local_name, resource.content, kind)

        # 4. Relative reference with no pool match
        run.fail(reference, "not found in asset pool")
        return None

    def _name_for_fetch(
        self,
        run: _ResolutionRun,
        filename: str,
        kind: AssetKind,
        content_type: str,
    ) -> str:
        """Keep a trustworthy derived filename, else synthesize one."""
        recognized = is_font_file(filename) if kind == AssetKind.FONT else is_image_file(filename)
        taken = run.taken
        if filename and recognized and filename not in taken:
            return filename

        ext = (
            extension_for_content_type(content_type)
            or extension_of(filename)
            or "bin"
        )
        while True:
            candidate = f"asset_{uuid.uuid4().hex[:6]}.{ext}"
            if candidate not in taken:
                return candidate
