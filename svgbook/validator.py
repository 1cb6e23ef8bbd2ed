"""
Validation Engine
=================
Post-bundle report over a collection:
    - Documents per status
    - Documents with resolution errors
    - Unique bundled assets
    - Tag usage and redaction targets

Never silently ignores failures.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from .markup import MarkupError
from .models import BundleReport, Document, DocumentStatus
from .redaction import should_redact
from .tagging import find_tagged

logger = logging.getLogger(__name__)


class BundleValidator:
    """Summarizes the state of a set of documents."""

    def validate(self, documents: Iterable[Document]) -> BundleReport:
        report = BundleReport()
        documents = list(documents)

        if not documents:
            logger.warning("No documents to validate")
            return report

        report.total_documents = len(documents)
        status_counts = Counter(d.status.value for d in documents)
        report.status_counts = dict(status_counts)

        asset_names: set[str] = set()
        tag_usage: Counter = Counter()

        for doc in documents:
            if doc.errors:
                report.documents_with_errors.append(doc.name)
                report.total_errors += len(doc.errors)
            elif doc.status == DocumentStatus.RESOLVED:
                report.clean_documents += 1

            asset_names.update(a.local_name for a in doc.assets)

            try:
                tagged = find_tagged(doc.tree())
            except MarkupError as e:
                logger.warning(f"Cannot inspect tags of {doc.name}: {e}")
                continue
            for item in tagged:
                tag_usage.update(item.tags)
                if should_redact(item.element):
                    report.redaction_targets += 1

        report.unique_assets = len(asset_names)
        report.tag_usage = dict(sorted(tag_usage.items()))

        logger.info("=" * 60)
        logger.info("BUNDLE REPORT")
        logger.info("=" * 60)
        logger.info(f"Total Documents: {report.total_documents}")
        for status, count in sorted(report.status_counts.items()):
            logger.info(f"  • {status}: {count}")
        logger.info(
            f"Bundled Cleanly: {report.clean_documents} ({report.success_rate}%)"
        )
        logger.info(
            f"Documents With Errors: {len(report.documents_with_errors)} "
            f"({report.total_errors} error(s))"
        )
        logger.info(f"Unique Assets: {report.unique_assets}")
        logger.info(f"Redaction Targets: {report.redaction_targets}")
        logger.info("=" * 60)

        return report
