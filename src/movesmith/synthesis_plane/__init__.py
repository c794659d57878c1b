"""
movesmith — synthesis plane public API.

File: src/movesmith/synthesis_plane/__init__.py

Purpose
- Synthesis plane: intent classification, token-budgeted context assembly, source
  customization and repair, and rendering of generated project files.

Non-functional requirements
- Deterministic and free of network access.
"""

from movesmith.synthesis_plane.context_budget import (
    SECTION_SEPARATOR,
    ContextBudgetManager,
    estimate_tokens,
    split_sections,
)
from movesmith.synthesis_plane.customizer import (
    CustomizationOptions,
    customize,
    normalize_address,
    repair_source,
    sanitize_module_name,
)
from movesmith.synthesis_plane.intent_classifier import CategoryScore, IntentClassifier
from movesmith.synthesis_plane.prompt_templates import (
    PromptTemplateError,
    RenderedTemplate,
    TemplateRenderer,
    generate_move_toml,
    render_prompt_bundle,
)

__all__ = [
    "SECTION_SEPARATOR",
    "CategoryScore",
    "ContextBudgetManager",
    "CustomizationOptions",
    "IntentClassifier",
    "PromptTemplateError",
    "RenderedTemplate",
    "TemplateRenderer",
    "customize",
    "estimate_tokens",
    "generate_move_toml",
    "normalize_address",
    "render_prompt_bundle",
    "repair_source",
    "sanitize_module_name",
    "split_sections",
]
