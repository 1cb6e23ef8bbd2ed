"""
SVG Book Bundler
================
Bundles collections of SVG pages into portable archives or paginated PDFs.

Architecture:
    - Markup: ElementTree parsing/serialization of SVG pages
    - Tagging: data-tags annotations (toggle, bulk apply, clear)
    - Asset Resolver: Rewrites image/font references into local bundle paths
    - Redaction: Blurs tagged images and masks tagged text
    - Paginated Exporter: Rasterizes pages into a single PDF via PyMuPDF
    - Archive Exporter: Zips tagged pages plus categorized assets

Version: 1.0.0
"""

__version__ = "1.0.0"
