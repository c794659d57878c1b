"""Stable constants shared across movesmith planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
CATALOG_SCHEMA_VERSION: Final[int] = 1

# Token estimation and context budgets.
DEFAULT_CHARS_PER_TOKEN: Final[int] = 4
DEFAULT_CONTEXT_MAX_TOKENS: Final[int] = 4000
RESERVED_OUTPUT_TOKENS: Final[int] = 8000
MAX_CONTEXT_TOKENS: Final[int] = 100_000

# Intent classification heuristics.
DEFAULT_CONFIDENCE_SCALE: Final[float] = 2.0
DEFAULT_RELATED_THRESHOLD: Final[float] = 0.3
MAX_SUGGESTED_CONTRACTS: Final[int] = 5

# Candidate aggregation.
MIN_LOCAL_CANDIDATES: Final[int] = 3
MAX_CANDIDATES: Final[int] = 5
DEFAULT_REMOTE_RELEVANCE: Final[float] = 0.7

# Cache lifetimes in seconds.
REMOTE_CACHE_TTL_SECONDS: Final[float] = 3600.0
REMOTE_CACHE_MAX_ENTRIES: Final[int] = 256
DOCS_CACHE_TTL_SECONDS: Final[float] = 86400.0

# Pipeline orchestration.
PIPELINE_TIMEOUT_SECONDS: Final[float] = 30.0
PROGRESS_BUFFER_SIZE: Final[int] = 64
PROGRESS_DRAIN_SECONDS: Final[float] = 2.0
DEFAULT_NETWORK: Final[str] = "devnet"
NETWORKS: Final[tuple[str, ...]] = ("devnet", "testnet", "mainnet")

# Generated project layout.
SOURCES_DIR: Final[str] = "sources"
MOVE_TOML_FILENAME: Final[str] = "Move.toml"

__all__ = [
    "CATALOG_SCHEMA_VERSION",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CHARS_PER_TOKEN",
    "DEFAULT_CONFIDENCE_SCALE",
    "DEFAULT_CONTEXT_MAX_TOKENS",
    "DEFAULT_NETWORK",
    "DEFAULT_RELATED_THRESHOLD",
    "DEFAULT_REMOTE_RELEVANCE",
    "DOCS_CACHE_TTL_SECONDS",
    "MAX_CANDIDATES",
    "MAX_CONTEXT_TOKENS",
    "MAX_SUGGESTED_CONTRACTS",
    "MIN_LOCAL_CANDIDATES",
    "MOVE_TOML_FILENAME",
    "NETWORKS",
    "PIPELINE_TIMEOUT_SECONDS",
    "PROGRESS_BUFFER_SIZE",
    "PROGRESS_DRAIN_SECONDS",
    "RESERVED_OUTPUT_TOKENS",
    "REMOTE_CACHE_MAX_ENTRIES",
    "REMOTE_CACHE_TTL_SECONDS",
    "SOURCES_DIR",
]
