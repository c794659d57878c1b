"""
movesmith — prompt-to-contract pipeline

File: src/movesmith/__init__.py

Purpose
- Package root. Turns a natural-language request into a customized, validated Move
  source bundle with optional hand-off to an external build/deploy service.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.3.0"

__all__ = ["__version__"]
