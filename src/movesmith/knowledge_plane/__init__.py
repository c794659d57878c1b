"""
movesmith — knowledge plane public API.

File: src/movesmith/knowledge_plane/__init__.py

Purpose
- Knowledge plane: the local candidate store, the GitHub remote source, reference
  documentation, and aggregation of candidates for an intent.

Functional requirements
- Must serve the pipeline's fetching-context and generating stages.
"""

from movesmith.knowledge_plane.aggregator import (
    ContractSourceAggregator,
    FetchOptions,
    RemoteContractSource,
)
from movesmith.knowledge_plane.candidate_store import (
    DEFAULT_CATALOG_PATH,
    CandidateStore,
    StoreStats,
    load_catalog,
)
from movesmith.knowledge_plane.reference_docs import (
    ContextService,
    DocVariant,
    ReferenceDocs,
    is_domain_query,
    select_variant,
)
from movesmith.knowledge_plane.remote_source import GitHubContractSource, category_for_path

__all__ = [
    "DEFAULT_CATALOG_PATH",
    "CandidateStore",
    "ContextService",
    "ContractSourceAggregator",
    "DocVariant",
    "FetchOptions",
    "GitHubContractSource",
    "ReferenceDocs",
    "RemoteContractSource",
    "StoreStats",
    "category_for_path",
    "is_domain_query",
    "load_catalog",
    "select_variant",
]
