"""
movesmith — best-effort Move source customization.

File: src/movesmith/synthesis_plane/customizer.py

Purpose
- Rewrite template contract sources for a target project: rename and re-address the
  module, inject constants and imports, and comment out unwanted feature functions.
- Provide the single repair pass applied to candidates that fail validation.

Functional requirements
- Rewrites run in a fixed order (rename, re-address, constants, imports, feature removal)
  so later rewrites see the effects of earlier ones.
- Feature removal comments code out and never deletes it.
- Rename and re-address are no-ops once the source already reflects the options.

Non-functional requirements
- Purely textual. Unusual formatting can defeat the rewrites; this is accepted.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Final

from movesmith.verification_plane.source_model import (
    DIAG_MISSING_DECLARATION,
    MODULE_HEADER_PATTERN,
)

ConstantValue = str | int | float | bool

_INVALID_IDENTIFIER_CHARS: Final[re.Pattern[str]] = re.compile(r"[^a-zA-Z0-9_]")
_CAMEL_CASE_BOUNDARY: Final[re.Pattern[str]] = re.compile(r"([a-z0-9])([A-Z])")
_REPEATED_UNDERSCORES: Final[re.Pattern[str]] = re.compile(r"_+")
_LEADING_LETTER: Final[re.Pattern[str]] = re.compile(r"[A-Za-z]")
_HEX_PREFIX_RUN: Final[re.Pattern[str]] = re.compile(r"^(?:0x)+", re.IGNORECASE)
_USE_STATEMENT: Final[re.Pattern[str]] = re.compile(r"\buse\s+[\w:]+(?:::\{[^}]*\})?\s*;")
_COMMENT_SPAN: Final[re.Pattern[str]] = re.compile(
    r'"(?:\\.|[^"\\])*"|//[^\n]*|/\*.*?\*/', re.DOTALL
)

_LINE_REFERENCE: Final[re.Pattern[str]] = re.compile(r"line\s+(\d+)", re.IGNORECASE)
_UNBOUND_MODULE: Final[re.Pattern[str]] = re.compile(
    r"unbound module[^\w]*'?([\w:]+)'?", re.IGNORECASE
)
_NOT_VISIBLE: Final[re.Pattern[str]] = re.compile(
    r"'?(\w+)'?\s+is not (?:visible|public)", re.IGNORECASE
)
_BARE_HEX_ADDRESS: Final[re.Pattern[str]] = re.compile(r"@(?!0x)([0-9a-fA-F]+)\b")
_UNBALANCED: Final[re.Pattern[str]] = re.compile(r"Unbalanced braces: (\d+) open, (\d+) close")

KNOWN_IMPORT_PATHS: Final[Mapping[str, str]] = {
    "signer": "std::signer",
    "account": "aptos_framework::account",
    "coin": "aptos_framework::coin",
    "event": "aptos_framework::event",
    "timestamp": "aptos_framework::timestamp",
    "string": "std::string",
    "vector": "std::vector",
    "option": "std::option",
    "token": "aptos_token::token",
    "collection": "aptos_token_objects::collection",
    "fungible_asset": "aptos_framework::fungible_asset",
    "object": "aptos_framework::object",
}


@dataclass(frozen=True, slots=True)
class CustomizationOptions:
    """What to change in a template source for one target project."""

    project_name: str
    module_name: str | None = None
    address: str | None = None
    remove_features: tuple[str, ...] = ()
    constants: Mapping[str, ConstantValue] | tuple[tuple[str, ConstantValue], ...] = ()
    extra_imports: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.project_name.strip():
            raise ValueError("project_name must not be empty")
        if isinstance(self.constants, Mapping):
            object.__setattr__(self, "constants", tuple(self.constants.items()))
        for name, _ in self.constants:
            if not re.fullmatch(r"[A-Za-z_]\w*", name):
                raise ValueError(f"invalid constant name {name!r}")
        object.__setattr__(self, "remove_features", tuple(self.remove_features))
        object.__setattr__(self, "extra_imports", tuple(self.extra_imports))


def sanitize_module_name(name: str) -> str:
    """Turn arbitrary text into a snake_case Move identifier starting with a letter."""

    sanitized = _INVALID_IDENTIFIER_CHARS.sub("_", name.strip())
    if not _LEADING_LETTER.match(sanitized):
        sanitized = f"module_{sanitized}"
    sanitized = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", sanitized).lower()
    sanitized = _REPEATED_UNDERSCORES.sub("_", sanitized).strip("_")
    return sanitized or "module"


def normalize_address(address: str) -> str:
    """Strip a leading ``@`` and collapse repeated ``0x`` prefixes."""

    normalized = address.strip().lstrip("@")
    return _HEX_PREFIX_RUN.sub("0x", normalized)


def customize(source: str, options: CustomizationOptions) -> str:
    """Apply ``options`` to ``source`` and return the rewritten text."""

    text = source
    if options.module_name:
        text = rename_module(text, options.module_name)
    if options.address:
        text = readdress_module(text, options.address)
    if options.constants:
        text = inject_constants(text, options.constants)
    if options.extra_imports:
        text = inject_imports(text, options.extra_imports)
    for feature in options.remove_features:
        text = comment_out_feature(text, feature)
    return text


def rename_module(source: str, module_name: str) -> str:
    new_name = sanitize_module_name(module_name)
    return MODULE_HEADER_PATTERN.sub(
        lambda match: f"module {match.group(1)}::{new_name} {{", source, count=1
    )


def readdress_module(source: str, address: str) -> str:
    header = MODULE_HEADER_PATTERN.search(source)
    if header is None:
        return source
    old_address = header.group(1)
    new_address = normalize_address(address)
    if not new_address or old_address == new_address:
        return source

    rewritten = (
        source[: header.start()]
        + f"module {new_address}::{header.group(2)} {{"
        + source[header.end() :]
    )
    return re.sub(rf"@{re.escape(old_address)}\b", f"@{new_address}", rewritten)


def render_constant(name: str, value: ConstantValue) -> str:
    if isinstance(value, bool):
        return f"const {name}: bool = {'true' if value else 'false'};"
    if isinstance(value, (int, float)):
        return f"const {name}: u64 = {int(value)};"
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'const {name}: vector<u8> = b"{escaped}";'


def inject_constants(source: str, constants: Iterable[tuple[str, ConstantValue]]) -> str:
    header = MODULE_HEADER_PATTERN.search(source)
    if header is None:
        return source
    block = "".join(f"\n    {render_constant(name, value)}" for name, value in constants)
    if not block:
        return source
    return source[: header.end()] + block + "\n" + source[header.end() :]


def inject_imports(source: str, imports: Iterable[str]) -> str:
    present = {_normalize_use(match.group(0)) for match in _USE_STATEMENT.finditer(source)}
    missing: list[str] = []
    for item in imports:
        path = item.strip().removeprefix("use ").rstrip(";").strip()
        if path and path not in present and path not in missing:
            missing.append(path)
    if not missing:
        return source

    block = "".join(f"\n    use {path};" for path in missing)
    last_use = None
    for match in _USE_STATEMENT.finditer(source):
        last_use = match
    if last_use is not None:
        return source[: last_use.end()] + block + source[last_use.end() :]

    header = MODULE_HEADER_PATTERN.search(source)
    if header is None:
        return source
    return source[: header.end()] + block + source[header.end() :]


def comment_out_feature(source: str, feature: str) -> str:
    """Wrap every function named after ``feature`` in a block comment.

    Matching is by name prefix so ``mint`` also covers ``mint_batch``. The function
    block is located by counting braces from the first ``{`` after the signature,
    ignoring braces inside strings and comments.
    """

    name = feature.strip()
    if not name:
        return source
    signature = re.compile(
        rf"(?:#\[[^\]]*\]\s*)*(?:\bpublic(?:\(\w+\))?\s+)?(?:\bentry\s+)?\bfun\s+{re.escape(name)}\w*"
    )

    text = source
    search_from = 0
    while True:
        protected = _comment_spans(text)
        match = signature.search(text, search_from)
        if match is None:
            return text
        if _inside(match.start(), protected):
            search_from = match.end()
            continue
        body_start = _find_body_start(text, match.end())
        if body_start is None:
            search_from = match.end()
            continue
        body_end = _find_block_end(text, body_start)
        if body_end is None:
            return text
        commented = f"/* {text[match.start() : body_end + 1]} */"
        text = text[: match.start()] + commented + text[body_end + 1 :]
        search_from = match.start() + len(commented)


def repair_source(
    source: str,
    diagnostics: Iterable[str],
    *,
    address: str | None = None,
    module_name: str | None = None,
) -> str:
    """Run one best-effort repair pass keyed on validation or compiler diagnostics."""

    text = source
    for diagnostic in diagnostics:
        lowered = diagnostic.lower()
        if "expected ';'" in lowered or "expected `;`" in lowered:
            text = _add_missing_semicolon(text, diagnostic)
        elif "invalid address" in lowered:
            text = _BARE_HEX_ADDRESS.sub(lambda m: f"@0x{m.group(1)}", text)
        elif "unbound module" in lowered:
            text = _add_missing_import(text, diagnostic)
        elif "not visible" in lowered or "not public" in lowered:
            text = _make_function_public(text, diagnostic)
        elif diagnostic.startswith("Unbalanced braces"):
            text = _balance_braces(text, diagnostic)
        elif diagnostic == DIAG_MISSING_DECLARATION and address and module_name:
            text = _wrap_in_module(text, normalize_address(address), module_name)
    return text


def _normalize_use(statement: str) -> str:
    inner = statement.strip().removeprefix("use").strip().rstrip(";").strip()
    return re.sub(r"\s+", " ", inner)


def _comment_spans(text: str) -> list[tuple[int, int]]:
    return [
        (match.start(), match.end())
        for match in _COMMENT_SPAN.finditer(text)
        if not match.group(0).startswith('"')
    ]


def _inside(index: int, spans: list[tuple[int, int]]) -> bool:
    return any(start <= index < end for start, end in spans)


def _find_body_start(text: str, index: int) -> int | None:
    brace = text.find("{", index)
    semicolon = text.find(";", index)
    if brace < 0 or (0 <= semicolon < brace):
        return None
    return brace


def _find_block_end(text: str, open_index: int) -> int | None:
    depth = 0
    index = open_index
    length = len(text)
    while index < length:
        char = text[index]
        if char == '"':
            index = _skip_string(text, index)
            continue
        if text.startswith("//", index):
            newline = text.find("\n", index)
            index = length if newline < 0 else newline
            continue
        if text.startswith("/*", index):
            close = text.find("*/", index + 2)
            index = length if close < 0 else close + 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
        index += 1
    return None


def _skip_string(text: str, index: int) -> int:
    index += 1
    while index < len(text):
        if text[index] == "\\":
            index += 2
            continue
        if text[index] == '"':
            return index + 1
        index += 1
    return index


def _add_missing_semicolon(text: str, diagnostic: str) -> str:
    match = _LINE_REFERENCE.search(diagnostic)
    if match is None:
        return text
    lines = text.split("\n")
    line_index = int(match.group(1)) - 1
    if not 0 <= line_index < len(lines):
        return text
    stripped = lines[line_index].rstrip()
    if stripped and stripped[-1] not in ";{}":
        lines[line_index] = stripped + ";"
    return "\n".join(lines)


def _add_missing_import(text: str, diagnostic: str) -> str:
    match = _UNBOUND_MODULE.search(diagnostic)
    if match is None:
        return text
    module = match.group(1).split("::")[-1]
    path = KNOWN_IMPORT_PATHS.get(module)
    if path is None:
        return text
    return inject_imports(text, (path,))


def _make_function_public(text: str, diagnostic: str) -> str:
    match = _NOT_VISIBLE.search(diagnostic)
    if match is None:
        return text
    name = re.escape(match.group(1))
    visible = rf"(?<!public )(?<!entry )(?<!public\(friend\) )\bfun\s+{name}\b"
    return re.sub(visible, f"public fun {match.group(1)}", text)


def _balance_braces(text: str, diagnostic: str) -> str:
    match = _UNBALANCED.search(diagnostic)
    if match is None:
        return text
    opened, closed = int(match.group(1)), int(match.group(2))
    if opened > closed:
        return text.rstrip() + "\n" + "}\n" * (opened - closed)
    trimmed = text.rstrip()
    for _ in range(closed - opened):
        if not trimmed.endswith("}"):
            break
        trimmed = trimmed[:-1].rstrip()
    return trimmed + "\n"


def _wrap_in_module(text: str, address: str, module_name: str) -> str:
    name = sanitize_module_name(module_name)
    body = "\n".join(f"    {line}" if line.strip() else "" for line in text.strip().split("\n"))
    return f"module {address}::{name} {{\n{body}\n}}\n"


__all__ = [
    "ConstantValue",
    "CustomizationOptions",
    "KNOWN_IMPORT_PATHS",
    "comment_out_feature",
    "customize",
    "inject_constants",
    "inject_imports",
    "normalize_address",
    "readdress_module",
    "rename_module",
    "render_constant",
    "repair_source",
    "sanitize_module_name",
]
