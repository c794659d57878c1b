"""
movesmith — configuration schema and validation.

File: src/movesmith/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers and redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded secrets; credentials are referenced through ``*_env`` names.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from movesmith.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_CHARS_PER_TOKEN,
    DEFAULT_CONFIDENCE_SCALE,
    DEFAULT_CONTEXT_MAX_TOKENS,
    DEFAULT_NETWORK,
    DEFAULT_RELATED_THRESHOLD,
    DOCS_CACHE_TTL_SECONDS,
    MAX_CANDIDATES,
    MAX_CONTEXT_TOKENS,
    MAX_SUGGESTED_CONTRACTS,
    MIN_LOCAL_CANDIDATES,
    NETWORKS,
    PIPELINE_TIMEOUT_SECONDS,
    PROGRESS_BUFFER_SIZE,
    REMOTE_CACHE_TTL_SECONDS,
    RESERVED_OUTPUT_TOKENS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_URL_PATTERN = re.compile(r"^https?://[^\s]+$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "apikey",
        "private",
        "credential",
        "credentials",
        "auth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "private_key",
    "password",
    "secret",
)

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "catalog"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class ClassifierConfig(TypedDict):
    confidence_scale: float
    related_threshold: float
    max_suggestions: int


class ContextConfig(TypedDict):
    chars_per_token: int
    max_tokens: int
    reserved_output_tokens: int
    max_context_tokens: int
    cache_ttl_seconds: float
    docs_full_url: str
    docs_small_url: str


class AggregatorConfig(TypedDict):
    min_local_candidates: int
    max_candidates: int
    use_remote: bool


class RemoteConfig(TypedDict):
    base_url: str
    owner: str
    repo: str
    branch: str
    token_env: str
    cache_ttl_seconds: float
    timeout_seconds: float


class PipelineConfig(TypedDict):
    timeout_seconds: float
    progress_buffer_size: int
    default_network: Literal["devnet", "testnet", "mainnet"]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    redact_secrets: bool


class PathsConfig(TypedDict):
    catalog: NotRequired[str]


class MovesmithConfig(TypedDict):
    meta: MetaConfig
    classifier: ClassifierConfig
    context: ContextConfig
    aggregator: AggregatorConfig
    remote: RemoteConfig
    pipeline: PipelineConfig
    observability: ObservabilityConfig
    paths: PathsConfig


DEFAULT_CONFIG: Final[MovesmithConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "classifier": {
        "confidence_scale": DEFAULT_CONFIDENCE_SCALE,
        "related_threshold": DEFAULT_RELATED_THRESHOLD,
        "max_suggestions": MAX_SUGGESTED_CONTRACTS,
    },
    "context": {
        "chars_per_token": DEFAULT_CHARS_PER_TOKEN,
        "max_tokens": DEFAULT_CONTEXT_MAX_TOKENS,
        "reserved_output_tokens": RESERVED_OUTPUT_TOKENS,
        "max_context_tokens": MAX_CONTEXT_TOKENS,
        "cache_ttl_seconds": DOCS_CACHE_TTL_SECONDS,
        "docs_full_url": "https://aptos.dev/llms-full.txt",
        "docs_small_url": "https://aptos.dev/llms-small.txt",
    },
    "aggregator": {
        "min_local_candidates": MIN_LOCAL_CANDIDATES,
        "max_candidates": MAX_CANDIDATES,
        "use_remote": False,
    },
    "remote": {
        "base_url": "https://api.github.com",
        "owner": "aptos-labs",
        "repo": "move-by-examples",
        "branch": "main",
        "token_env": "MOVESMITH_GITHUB_TOKEN",
        "cache_ttl_seconds": REMOTE_CACHE_TTL_SECONDS,
        "timeout_seconds": 10.0,
    },
    "pipeline": {
        "timeout_seconds": PIPELINE_TIMEOUT_SECONDS,
        "progress_buffer_size": PROGRESS_BUFFER_SIZE,
        "default_network": DEFAULT_NETWORK,  # type: ignore[typeddict-item]
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "redact_secrets": True,
    },
    "paths": {},
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Normalized config, or ``None`` plus every issue found in one pass."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


class _Invalid(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


_FieldKind = Literal["int", "float", "bool", "str", "url", "env", "path", "enum"]


@dataclass(frozen=True, slots=True)
class _Rule:
    kind: _FieldKind
    minimum: float | None = None
    maximum: float | None = None
    exclusive_minimum: bool = False
    choices: tuple[str, ...] = ()
    required: bool = True

    def check(self, value: object) -> object:
        """Return the normalized value or raise ``_Invalid``."""

        if self.kind == "bool":
            if not isinstance(value, bool):
                raise _Invalid(f"expected boolean, got {type(value).__name__}")
            return value
        if self.kind == "int":
            if isinstance(value, bool) or not isinstance(value, int):
                raise _Invalid(f"expected integer, got {type(value).__name__}")
            if self.minimum is not None and value < self.minimum:
                raise _Invalid(f"must be >= {int(self.minimum)}")
            return value
        if self.kind == "float":
            return self._check_number(value)
        return self._check_text(value)

    def _check_number(self, value: object) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _Invalid(f"expected number, got {type(value).__name__}")
        number = float(value)
        if not math.isfinite(number):
            raise _Invalid("must be finite")
        if self.minimum is not None:
            if self.exclusive_minimum and number <= self.minimum:
                raise _Invalid(f"must be > {self.minimum}")
            if number < self.minimum:
                raise _Invalid(f"must be >= {self.minimum}")
        if self.maximum is not None and number > self.maximum:
            raise _Invalid(f"must be <= {self.maximum}")
        return number

    def _check_text(self, value: object) -> str:
        if not isinstance(value, str):
            raise _Invalid(f"expected string, got {type(value).__name__}")
        text = value.strip()
        if not text:
            raise _Invalid("must not be empty")
        if self.kind == "url":
            if not _URL_PATTERN.fullmatch(text):
                raise _Invalid("must be an http(s) URL")
            return text.rstrip("/")
        if self.kind == "env" and not _ENV_NAME_PATTERN.fullmatch(text):
            raise _Invalid("must be an env var name (example: MOVESMITH_GITHUB_TOKEN)")
        if self.kind == "path" and "\x00" in text:
            raise _Invalid("must not contain NUL bytes")
        if self.kind == "enum" and text not in self.choices:
            raise _Invalid(
                f"invalid value {text!r}; expected one of: {', '.join(sorted(self.choices))}"
            )
        return text


_SECTION_RULES: Final[dict[str, dict[str, _Rule]]] = {
    "meta": {
        "schema_version": _Rule("int", minimum=1),
    },
    "classifier": {
        "confidence_scale": _Rule("float", minimum=0.0, exclusive_minimum=True),
        "related_threshold": _Rule("float", minimum=0.0, maximum=1.0),
        "max_suggestions": _Rule("int", minimum=1),
    },
    "context": {
        "chars_per_token": _Rule("int", minimum=1),
        "max_tokens": _Rule("int", minimum=1),
        "reserved_output_tokens": _Rule("int", minimum=0),
        "max_context_tokens": _Rule("int", minimum=1),
        "cache_ttl_seconds": _Rule("float", minimum=0.0, exclusive_minimum=True),
        "docs_full_url": _Rule("url"),
        "docs_small_url": _Rule("url"),
    },
    "aggregator": {
        "min_local_candidates": _Rule("int", minimum=0),
        "max_candidates": _Rule("int", minimum=1),
        "use_remote": _Rule("bool"),
    },
    "remote": {
        "base_url": _Rule("url"),
        "owner": _Rule("str"),
        "repo": _Rule("str"),
        "branch": _Rule("str"),
        "token_env": _Rule("env"),
        "cache_ttl_seconds": _Rule("float", minimum=0.0, exclusive_minimum=True),
        "timeout_seconds": _Rule("float", minimum=0.0, exclusive_minimum=True),
    },
    "pipeline": {
        "timeout_seconds": _Rule("float", minimum=0.0, exclusive_minimum=True),
        "progress_buffer_size": _Rule("int", minimum=1),
        "default_network": _Rule("enum", choices=NETWORKS),
    },
    "observability": {
        "log_level": _Rule("enum", choices=("DEBUG", "INFO", "WARNING", "ERROR")),
        "log_dir": _Rule("path"),
        "redact_secrets": _Rule("bool"),
    },
    "paths": {
        "catalog": _Rule("path", required=False),
    },
}

_DECLARED_FIELDS: Final[frozenset[str]] = frozenset(
    key for rules in _SECTION_RULES.values() for key in rules
)


def default_config() -> MovesmithConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def field_kinds() -> dict[tuple[str, str], str]:
    """Declared value kind for every ``(section, key)``, e.g. ``("aggregator", "use_remote")``."""

    return {
        (section, key): rule.kind
        for section, rules in _SECTION_RULES.items()
        for key, rule in rules.items()
    }


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade movesmith.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the movesmith runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; nested mappings merge key by key."""

    merged = {key: _copied(base[key]) for key in sorted(base)}
    for key in sorted(overlay):
        value = overlay[key]
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = _copied(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Check ``config`` against the section rules and collect every issue.

    Issues are ordered by section and key so that repeated runs report identically.
    """

    issues: list[ConfigValidationIssue] = []
    if not isinstance(config, Mapping):
        issues.append(ConfigValidationIssue("<root>", _not_an_object(config)))
        return ConfigValidationResult(config=None, issues=tuple(issues))

    _check_keys(config, _SECTION_RULES, "", issues)
    normalized: dict[str, Any] = {}
    for section in sorted(_SECTION_RULES):
        payload = config.get(section)
        if payload is None:
            continue
        if not isinstance(payload, Mapping):
            issues.append(ConfigValidationIssue(section, _not_an_object(payload)))
            continue
        normalized[section] = _validate_section(section, payload, issues)
    issues.extend(_cross_field_issues(normalized))

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy ``config`` for display with ``*_env`` names and secret-looking keys masked."""

    if not isinstance(config, Mapping):
        return {}
    return _redacted_mapping(config)


def _validate_section(
    section: str, payload: Mapping[str, object], issues: list[ConfigValidationIssue]
) -> dict[str, Any]:
    rules = _SECTION_RULES[section]
    _check_keys(payload, rules, section, issues)
    values: dict[str, Any] = {}
    for key in sorted(rules):
        if key not in payload:
            continue
        try:
            values[key] = rules[key].check(payload[key])
        except _Invalid as exc:
            issues.append(ConfigValidationIssue(f"{section}.{key}", exc.message))

    version = values.get("schema_version")
    if section == "meta" and version is not None and version != ConfigSchemaVersion:
        issues.append(
            ConfigValidationIssue("meta.schema_version", migration_guidance(version))
        )
    return values


def _check_keys(
    payload: Mapping[object, object],
    rules: Mapping[str, object],
    prefix: str,
    issues: list[ConfigValidationIssue],
) -> None:
    location = prefix or "<root>"
    for key in payload:
        if not isinstance(key, str):
            message = f"object key must be string, got {type(key).__name__}"
            issues.append(ConfigValidationIssue(location, message))
    for key in sorted(k for k in payload if isinstance(k, str) and k not in rules):
        message = (
            "embedded secret values are forbidden; use an *_env key with an env var name"
            if _looks_sensitive_key(key)
            else "unknown field"
        )
        issues.append(ConfigValidationIssue(_join(prefix, key), message))
    for key in sorted(rules):
        rule = rules[key]
        required = rule.required if isinstance(rule, _Rule) else True
        if required and key not in payload:
            issues.append(ConfigValidationIssue(_join(prefix, key), "missing required field"))


def _cross_field_issues(config: Mapping[str, Any]) -> list[ConfigValidationIssue]:
    found: list[ConfigValidationIssue] = []
    context = config.get("context", {})
    reserved = context.get("reserved_output_tokens")
    window = context.get("max_context_tokens")
    if reserved is not None and window is not None and reserved >= window:
        found.append(
            ConfigValidationIssue(
                "context.reserved_output_tokens", "must be smaller than context.max_context_tokens"
            )
        )
    aggregator = config.get("aggregator", {})
    minimum = aggregator.get("min_local_candidates")
    maximum = aggregator.get("max_candidates")
    if minimum is not None and maximum is not None and minimum > maximum:
        found.append(
            ConfigValidationIssue(
                "aggregator.min_local_candidates", "must not exceed aggregator.max_candidates"
            )
        )
    return found


def _not_an_object(value: object) -> str:
    return f"expected object, got {type(value).__name__}"


def _join(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def _copied(value: object) -> object:
    if isinstance(value, Mapping):
        return merge_config({}, value)
    return copy.deepcopy(value)


def _key_words(key: str) -> str:
    spaced = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", spaced.lower()).strip("_")


def _looks_sensitive_key(key: str) -> bool:
    words = _key_words(key)
    if words.endswith("_env"):
        return False
    if any(phrase in words for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    return not _SENSITIVE_KEY_TOKENS.isdisjoint(words.split("_"))


def _redacted_mapping(payload: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(payload):
        value = payload[key]
        if _key_words(key).endswith("_env") or (
            key not in _DECLARED_FIELDS and _looks_sensitive_key(key)
        ):
            out[key] = "<redacted>"
        elif isinstance(value, Mapping):
            out[key] = _redacted_mapping(value)
        elif isinstance(value, (list, tuple)):
            out[key] = [
                _redacted_mapping(item) if isinstance(item, Mapping) else item for item in value
            ]
        else:
            out[key] = value
    return out


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "MovesmithConfig",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "field_kinds",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
