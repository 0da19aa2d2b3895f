"""
Filesystem collection and packaging for the diagnostic bundle.

This module provides:
- Age-filtered mirroring of log directories
- Retention-bounded extraction of integration assets
- Packaging of the staging tree into a checksummed archive

Design Patterns:
- Strategy Pattern: All vs LastN retention policies
- Builder Pattern: Bundle metadata and manifest assembled during archiving
"""

from xcs_diag.storage.bundle import BundleArchiver, BundleManifest, BundleMetadata
from xcs_diag.storage.copier import (
    AgeFilteredCopier,
    CopyReport,
    age_in_days,
    copy_preserving,
    copy_recent,
    is_metadata_marker,
    iter_tree_files,
)
from xcs_diag.storage.retention import (
    ASSET_SUFFIXES,
    AssetFileClass,
    AssetRetentionSelector,
    ExtractionReport,
    RetentionMode,
    RetentionPolicy,
    classify_asset,
    parse_run_number,
    run_sort_key,
    select_and_extract,
)

__all__ = [
    "ASSET_SUFFIXES",
    # Copier
    "AgeFilteredCopier",
    # Retention
    "AssetFileClass",
    "AssetRetentionSelector",
    # Bundle
    "BundleArchiver",
    "BundleManifest",
    "BundleMetadata",
    "CopyReport",
    "ExtractionReport",
    "RetentionMode",
    "RetentionPolicy",
    "age_in_days",
    "classify_asset",
    "copy_preserving",
    "copy_recent",
    "is_metadata_marker",
    "iter_tree_files",
    "parse_run_number",
    "run_sort_key",
    "select_and_extract",
]
