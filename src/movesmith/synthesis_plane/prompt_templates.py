"""
movesmith — template rendering for generated project files and prompt bundles.

File: src/movesmith/synthesis_plane/prompt_templates.py

Purpose
- Render ``Move.toml`` manifests and the enhanced prompt bundle handed to an external
  LLM, from jinja2 templates shipped under ``synthesis_plane/templates/``.

Functional requirements
- Must render deterministically for the same inputs.
- Missing template variables are errors, never silently blank.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound, UndefinedError

from movesmith.synthesis_plane.customizer import normalize_address, sanitize_module_name

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from movesmith.domain.models import ContractIntent, Message

MOVE_TOML_TEMPLATE: Final[str] = "move_toml.j2"
PROMPT_BUNDLE_TEMPLATE: Final[str] = "prompt_bundle.md.j2"

_APTOS_CORE_GIT: Final[str] = "https://github.com/aptos-labs/aptos-core.git"
_FRAMEWORK_PACKAGES: Final[dict[str, tuple[str, str]]] = {
    "aptos_framework": ("AptosFramework", "aptos-move/framework/aptos-framework"),
    "aptos_std": ("AptosStdlib", "aptos-move/framework/aptos-stdlib"),
    "aptos_token": ("AptosToken", "aptos-move/framework/aptos-token"),
    "aptos_token_objects": ("AptosTokenObjects", "aptos-move/framework/aptos-token-objects"),
}
_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]+$")


class PromptTemplateError(RuntimeError):
    """Raised when a template is missing or cannot be rendered."""


@dataclass(frozen=True, slots=True)
class RenderedTemplate:
    template_name: str
    text: str
    text_hash: str


class TemplateRenderer:
    """Deterministic renderer over a template directory."""

    def __init__(self, *, template_root: Path | str | None = None) -> None:
        root = Path(template_root) if template_root is not None else _default_template_root()
        resolved_root = root.resolve()
        if not resolved_root.is_dir():
            raise PromptTemplateError(f"template root is not a directory: {resolved_root}")
        self._template_root = resolved_root
        self._environment = Environment(
            loader=FileSystemLoader(str(resolved_root)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    @property
    def template_root(self) -> Path:
        return self._template_root

    def render(self, template_name: str, **variables: object) -> RenderedTemplate:
        try:
            template = self._environment.get_template(template_name)
            text = template.render(**variables)
        except TemplateNotFound as exc:
            raise PromptTemplateError(f"template not found: {template_name!r}") from exc
        except UndefinedError as exc:
            raise PromptTemplateError(f"template {template_name!r}: {exc.message}") from exc
        text_hash = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return RenderedTemplate(template_name=template_name, text=text, text_hash=text_hash)


def dependency_line(dependency: str) -> str:
    """Return the ``[dependencies]`` entry for one import root."""

    package = _FRAMEWORK_PACKAGES.get(dependency)
    if package is not None:
        name, subdir = package
        return f'{name} = {{ git = "{_APTOS_CORE_GIT}", subdir = "{subdir}", rev = "mainnet" }}'
    if dependency == "std":
        return "# std is included by default"
    return f'# {dependency} = {{ git = "...", subdir = "...", rev = "..." }}'


def generate_move_toml(
    project_name: str,
    dependencies: Iterable[str],
    *,
    address: str | None = None,
    renderer: TemplateRenderer | None = None,
) -> str:
    """Render a ``Move.toml`` for ``project_name`` with framework git dependencies.

    Named addresses are left as ``"_"`` for the deployer to bind. A literal hex address
    is bound to a named address equal to the package name.
    """

    package_name = sanitize_module_name(project_name)
    resolved = normalize_address(address) if address else package_name
    if _HEX_ADDRESS.match(resolved):
        address_name, address_value = package_name, resolved
    else:
        address_name, address_value = resolved, "_"

    ordered: list[str] = []
    for dep in dependencies:
        if dep and dep not in ordered:
            ordered.append(dep)

    engine = renderer or TemplateRenderer()
    return engine.render(
        MOVE_TOML_TEMPLATE,
        package_name=package_name,
        version="1.0.0",
        address_name=address_name,
        address_value=address_value,
        dependency_lines=[dependency_line(dep) for dep in ordered],
    ).text


def render_prompt_bundle(
    *,
    project_name: str,
    prompt: str,
    intent: ContractIntent,
    context: str,
    modules: Sequence[str],
    history: Sequence[Message] = (),
    renderer: TemplateRenderer | None = None,
) -> RenderedTemplate:
    """Render the enhanced prompt handed to an external code-generation model."""

    engine = renderer or TemplateRenderer()
    return engine.render(
        PROMPT_BUNDLE_TEMPLATE,
        project_name=project_name,
        prompt=prompt.strip(),
        categories=", ".join(str(item) for item in intent.categories) or "custom",
        features=", ".join(sorted(intent.features)) or "none detected",
        confidence=f"{intent.confidence:.2f}",
        context=context,
        modules=list(modules),
        history=[
            {"role": message.role, "content": message.serialized_content()} for message in history
        ],
    )


def _default_template_root() -> Path:
    return Path(__file__).resolve().parent / "templates"


__all__ = [
    "MOVE_TOML_TEMPLATE",
    "PROMPT_BUNDLE_TEMPLATE",
    "PromptTemplateError",
    "RenderedTemplate",
    "TemplateRenderer",
    "dependency_line",
    "generate_move_toml",
    "render_prompt_bundle",
]
