"""
movesmith — Move source model extraction and structural validation.

File: src/movesmith/verification_plane/source_model.py

Purpose
- Scan contract source text into a ``SourceModel`` (module identity, imports, structs,
  functions, events, error constants) and run structural rule checks over it.

Functional requirements
- ``extract_model`` is pure and never raises; malformed input yields ``is_valid=False``
  with diagnostics.
- Declarations are read from the module body only; comments are ignored.
- Fatal rules: module name, module address, balanced braces, at least one function.
- Warning rules (validity unchanged): no standard/framework import, duplicate error codes.

Non-functional requirements
- This is a heuristic structural scanner, not a parser. Callers depend only on
  ``extract_model`` / ``validate_model`` so it can be replaced by a tokenizer later.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Final

from movesmith.domain.models import SourceModel

MODULE_HEADER_PATTERN: Final[re.Pattern[str]] = re.compile(r"module\s+([\w@:]+)::(\w+)\s*\{")
_IMPORT_PATTERN: Final[re.Pattern[str]] = re.compile(r"\buse\s+([\w:]+?)(?:::\{([^}]*)\})?\s*;")
_STRUCT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\bstruct\s+(\w+)\s*(?:<[^>]*>)?\s*(?:has\s+[^{]+)?\{"
)
_FUNCTION_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?:\bpublic(?:\(\w+\))?\s+)?(?:\bentry\s+)?\bfun\s+(\w+)"
)
_EVENT_PATTERN: Final[re.Pattern[str]] = re.compile(r"#\[event\]\s*(?:public\s+)?struct\s+(\w+)")
_ERROR_CONST_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\bconst\s+(E\w+)\s*:\s*u64\s*=\s*(\d+)\s*;"
)

# Strings are matched first so comment markers inside literals survive.
_COMMENT_OR_STRING: Final[re.Pattern[str]] = re.compile(
    r'"(?:\\.|[^"\\])*"|//[^\n]*|/\*.*?\*/', re.DOTALL
)

STANDARD_DEPENDENCIES: Final[frozenset[str]] = frozenset(
    {"std", "aptos_framework", "aptos_std", "aptos_token", "aptos_token_objects", "0x1"}
)

DIAG_MISSING_DECLARATION: Final[str] = "Missing module declaration"
DIAG_MISSING_NAME: Final[str] = "Missing module name"
DIAG_MISSING_ADDRESS: Final[str] = "Missing module address"
DIAG_NO_FUNCTIONS: Final[str] = "No functions found"
WARN_NO_STD_IMPORTS: Final[str] = "Warning: No standard library imports found"
WARN_DUPLICATE_ERROR_CODES: Final[str] = "Warning: Duplicate error codes found"


def strip_comments(source: str) -> str:
    """Remove ``//`` and ``/* */`` comments, leaving string literals intact."""

    def _keep_strings(match: re.Match[str]) -> str:
        token = match.group(0)
        return token if token.startswith('"') else ""

    return _COMMENT_OR_STRING.sub(_keep_strings, source)


def extract_model(source: str, *, validate: bool = True) -> SourceModel:
    """Scan ``source`` and return its structural summary.

    With ``validate=False`` the unvalidated scan is returned (``is_valid`` is always
    false and there are no diagnostics); otherwise ``validate_model`` runs on it.
    """

    text = strip_comments(source if isinstance(source, str) else "")
    header = MODULE_HEADER_PATTERN.search(text)
    if header is None:
        model = SourceModel(address="", module_name="")
        return validate_model(model, source) if validate else model

    body = text[header.end() :]
    imports: list[str] = []
    dependencies: list[str] = []
    for match in _IMPORT_PATTERN.finditer(body):
        path = match.group(1).rstrip(":")
        if not path:
            continue
        imports.append(path)
        root = path.split("::", 1)[0]
        if root and root not in dependencies:
            dependencies.append(root)

    model = SourceModel(
        address=header.group(1).strip(":"),
        module_name=header.group(2),
        imports=tuple(imports),
        dependencies=tuple(dependencies),
        structs=tuple(match.group(1) for match in _STRUCT_PATTERN.finditer(body)),
        functions=tuple(match.group(1) for match in _FUNCTION_PATTERN.finditer(body)),
        events=tuple(match.group(1) for match in _EVENT_PATTERN.finditer(body)),
        errors=tuple(
            (match.group(1), int(match.group(2))) for match in _ERROR_CONST_PATTERN.finditer(body)
        ),
    )
    return validate_model(model, source) if validate else model


def validate_model(model: SourceModel, source: str) -> SourceModel:
    """Apply structural rules and return a copy carrying validity and diagnostics."""

    diagnostics: list[str] = []
    fatal = False

    if not model.module_name and not model.address:
        diagnostics.append(DIAG_MISSING_DECLARATION)
        fatal = True
    else:
        if not model.module_name:
            diagnostics.append(DIAG_MISSING_NAME)
            fatal = True
        if not model.address:
            diagnostics.append(DIAG_MISSING_ADDRESS)
            fatal = True

    opened, closed = count_braces(source)
    if opened != closed:
        diagnostics.append(f"Unbalanced braces: {opened} open, {closed} close")
        fatal = True

    if not model.functions:
        diagnostics.append(DIAG_NO_FUNCTIONS)
        fatal = True

    if not any(dep in STANDARD_DEPENDENCIES for dep in model.dependencies):
        diagnostics.append(WARN_NO_STD_IMPORTS)

    codes = [code for _, code in model.errors]
    if len(codes) != len(set(codes)):
        diagnostics.append(WARN_DUPLICATE_ERROR_CODES)

    return replace(model, is_valid=not fatal, diagnostics=tuple(diagnostics))


def count_braces(source: str) -> tuple[int, int]:
    """Return ``(open, close)`` brace counts outside comments and string literals."""

    text = _COMMENT_OR_STRING.sub("", source)
    return text.count("{"), text.count("}")


def summarize_model(model: SourceModel) -> str:
    """One-line human summary used in step details and prompt bundles."""

    if not model.module_name:
        return "unrecognized module"
    return (
        f"{model.qualified_name}: {len(model.structs)} structs, "
        f"{len(model.functions)} functions, {len(model.events)} events"
    )


__all__ = [
    "DIAG_MISSING_ADDRESS",
    "DIAG_MISSING_DECLARATION",
    "DIAG_MISSING_NAME",
    "DIAG_NO_FUNCTIONS",
    "MODULE_HEADER_PATTERN",
    "STANDARD_DEPENDENCIES",
    "WARN_DUPLICATE_ERROR_CODES",
    "WARN_NO_STD_IMPORTS",
    "count_braces",
    "extract_model",
    "strip_comments",
    "summarize_model",
    "validate_model",
]
