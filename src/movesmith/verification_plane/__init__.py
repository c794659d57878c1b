"""Verification-plane public API: Move source model extraction and structural validation."""

from movesmith.verification_plane.source_model import (
    STANDARD_DEPENDENCIES,
    count_braces,
    extract_model,
    strip_comments,
    summarize_model,
    validate_model,
)

__all__ = [
    "STANDARD_DEPENDENCIES",
    "count_braces",
    "extract_model",
    "strip_comments",
    "summarize_model",
    "validate_model",
]
