"""Prometheus metric definitions for billing-package generation."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

billing_packages_total = Counter(
    "billing_packages_total",
    "Total billing package generation attempts by outcome.",
    labelnames=["status"],
)

package_generation_seconds = Histogram(
    "package_generation_seconds",
    "Duration of a full billing package generation in seconds.",
)

pdf_consolidation_seconds = Histogram(
    "pdf_consolidation_seconds",
    "Time spent merging the documents of a single order.",
)

bundle_skipped_files_total = Counter(
    "bundle_skipped_files_total",
    "Consolidated documents left out of an archive because they could not be read.",
)

__all__ = [
    "billing_packages_total",
    "bundle_skipped_files_total",
    "package_generation_seconds",
    "pdf_consolidation_seconds",
]
