"""
Data Models
===========
Pydantic models for documents, assets and export outcomes.
Markup itself is carried as serialized text; the element tree is
obtained on demand with Document.tree() and written back with commit().
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional
from xml.etree import ElementTree as ET

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .markup import parse_markup, serialize_markup


# ─── Enums ────────────────────────────────────────────────────────────────────


class DocumentStatus(str, Enum):
    """Lifecycle status of a page during bundling."""
    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"


class AssetKind(str, Enum):
    """Category of a bundled binary asset."""
    IMAGE = "image"
    FONT = "font"


class ElementCategory(str, Enum):
    """Category of a tagged markup element."""
    IMAGE = "image"
    TEXT = "text"


class Orientation(str, Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


class PageStage(str, Enum):
    """Stages a page passes through during paginated export."""
    START = "start"
    REDACT = "redact"
    EMBED = "embed"
    MEASURE = "measure"
    LAYOUT = "layout"
    RASTERIZE = "rasterize"
    APPEND = "append"
    SUCCESS = "success"
    FAILED = "failed"


# Statuses that may be exported (awaiting bundle or bundle complete)
EXPORTABLE_STATUSES = frozenset({DocumentStatus.UNRESOLVED, DocumentStatus.RESOLVED})


def _new_id() -> str:
    return uuid.uuid4().hex[:9]


# ─── Asset / Document ─────────────────────────────────────────────────────────


class Asset(BaseModel):
    """A named binary resource referenced by a page."""
    model_config = ConfigDict(ser_json_bytes="base64")

    original_url: str = Field(description="Reference string as found in the markup")
    local_name: str = Field(description="Filename inside the bundle")
    data: bytes = Field(repr=False)
    kind: AssetKind = AssetKind.IMAGE

    @computed_field
    @property
    def size(self) -> int:
        return len(self.data)

    @computed_field
    @property
    def bundle_path(self) -> str:
        folder = "fonts" if self.kind == AssetKind.FONT else "images"
        return f"{folder}/{self.local_name}"


class Document(BaseModel):
    """
    A single SVG page inside a collection.

    Status, progress, assets and errors are owned by the resolver;
    content is changed by tag-edit operations through commit().
    """
    id: str = Field(default_factory=_new_id)
    name: str
    content: str = Field(repr=False)
    status: DocumentStatus = DocumentStatus.UNRESOLVED
    progress: int = Field(default=0, ge=0, le=100)
    errors: list[str] = Field(default_factory=list)
    assets: list[Asset] = Field(default_factory=list)

    @classmethod
    def from_markup(cls, name: str, text: str) -> "Document":
        """Create a document, rejecting markup that does not parse."""
        parse_markup(text)
        return cls(name=name, content=text)

    def tree(self) -> ET.Element:
        """Parse the current content into a fresh element tree."""
        return parse_markup(self.content)

    def commit(self, root: ET.Element) -> None:
        """Serialize an edited tree back into this document."""
        self.content = serialize_markup(root)

    def find_asset(self, local_name: str) -> Optional[Asset]:
        for asset in self.assets:
            if asset.local_name == local_name:
                return asset
        return None

    @property
    def is_exportable(self) -> bool:
        return self.status in EXPORTABLE_STATUSES


# ─── Resolution / Tagging ─────────────────────────────────────────────────────


class ResolutionResult(BaseModel):
    """Output of one resolver call."""
    content: str
    assets: list[Asset] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class BulkTagResult(BaseModel):
    """
    Outcome of applying tags across a collection.
    When requires_confirmation is set nothing was modified.
    """
    requires_confirmation: bool = False
    category: ElementCategory
    tags: list[str] = Field(default_factory=list)
    updated_ids: list[str] = Field(default_factory=list)


# ─── Export ───────────────────────────────────────────────────────────────────


class PageLayout(BaseModel):
    """Physical size of one output page in millimetres."""
    width_mm: float = Field(gt=0)
    height_mm: float = Field(gt=0)
    orientation: Orientation

    @property
    def width_pt(self) -> float:
        return self.width_mm * 72.0 / 25.4

    @property
    def height_pt(self) -> float:
        return self.height_mm * 72.0 / 25.4


class PageReport(BaseModel):
    """Outcome for one output page."""
    index: int = Field(ge=0, description="Position in the output PDF")
    document_name: Optional[str] = None
    stage: PageStage
    failed_stage: Optional[PageStage] = None
    layout: Optional[PageLayout] = None
    inside_cover: bool = False
    fill_color: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.stage == PageStage.SUCCESS


class ExportResult(BaseModel):
    """Complete output of a paginated export run."""
    model_config = ConfigDict(ser_json_bytes="base64")

    data: bytes = Field(repr=False)
    pages: list[PageReport] = Field(default_factory=list)

    @computed_field
    @property
    def page_count(self) -> int:
        return len(self.pages)

    @computed_field
    @property
    def failed_pages(self) -> int:
        return sum(1 for p in self.pages if p.stage == PageStage.FAILED)


# ─── Validation ───────────────────────────────────────────────────────────────


class BundleReport(BaseModel):
    """Post-bundle summary across a collection."""
    total_documents: int = 0
    status_counts: dict[str, int] = Field(default_factory=dict)
    documents_with_errors: list[str] = Field(default_factory=list)
    total_errors: int = 0
    unique_assets: int = 0
    tag_usage: dict[str, int] = Field(default_factory=dict)
    redaction_targets: int = 0
    clean_documents: int = 0

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.total_documents == 0:
            return 0.0
        return round(self.clean_documents / self.total_documents * 100, 2)
