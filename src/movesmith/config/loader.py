"""
movesmith — runtime config loader.

File: src/movesmith/config/loader.py

Purpose
- Resolve the effective config from four layers, later layers winning: built-in defaults,
  the TOML file, ``MOVESMITH_<SECTION>_<KEY>`` environment variables, and CLI overrides.

Functional requirements
- Environment values are coerced by the field kind the schema declares.
- Relative paths are anchored at the config file's directory.
- The result is validated after the file layer and again after all overrides.
- The remote source token never lives in config; ``remote.token_env`` names the variable.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from movesmith.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    field_kinds,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "movesmith.toml"
ENV_PREFIX: Final[str] = "MOVESMITH_"

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """The config file is missing or unreadable, or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    ``config_path`` defaults to ``./movesmith.toml``, which may be absent; an explicit
    path must exist. ``cli_overrides`` uses dotted keys (``"pipeline.timeout_seconds"``).
    """

    path = _config_file(config_path)
    config = assert_valid_config(
        merge_config(default_config(), _read_toml(path, required=config_path is not None))
    )
    config = merge_config(config, env_overrides(os.environ if environ is None else environ))
    config = merge_config(config, _nest_dotted(cli_overrides or {}))
    config = assert_valid_config(config)
    return assert_valid_config(normalize_paths(config, base_dir=path.parent))


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``MOVESMITH_<SECTION>_<KEY>`` variables as a nested override layer."""

    overrides: dict[str, Any] = {}
    for (section, key), kind in sorted(field_kinds().items()):
        name = f"{ENV_PREFIX}{section.upper()}_{key.upper()}"
        raw = environ.get(name)
        if raw is not None:
            overrides.setdefault(section, {})[key] = _coerce(raw.strip(), kind, name, section, key)
    return overrides


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Copy ``config`` with every path field made absolute, relative ones under ``base_dir``."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        values = normalized.get(section)
        if isinstance(values, dict) and isinstance(values.get(key), str):
            values[key] = _anchor(values[key], base_dir)
    return normalized


def resolve_remote_token(
    config: Mapping[str, object], environ: Mapping[str, str] | None = None
) -> str | None:
    remote = config.get("remote")
    env_name = remote.get("token_env") if isinstance(remote, Mapping) else None
    if not isinstance(env_name, str) or not env_name:
        return None
    source = os.environ if environ is None else environ
    return source.get(env_name, "").strip() or None


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _config_file(config_path: str | Path | None) -> Path:
    if config_path is None:
        return Path(DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from None
        return {}
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc
    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc


def _coerce(raw: str, kind: str, name: str, section: str, key: str) -> object:
    target = f"{name} -> {section}.{key}"
    if kind == "int":
        try:
            return int(raw)
        except ValueError:
            raise ConfigLoadError(f"{target} must be an integer, got {raw!r}") from None
    if kind == "float":
        try:
            return float(raw)
        except ValueError:
            raise ConfigLoadError(f"{target} must be a number, got {raw!r}") from None
    if kind == "bool":
        lowered = raw.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ConfigLoadError(f"{target} must be a boolean (true/false, yes/no, on/off, 1/0)")
    return raw


def _nest_dotted(overrides: Mapping[str, object]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for dotted in sorted(overrides):
        parts = [part for part in dotted.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        layer: dict[str, Any] = {parts[-1]: overrides[dotted]}
        for part in reversed(parts[:-1]):
            layer = {part: layer}
        nested = merge_config(nested, layer)
    return nested


def _anchor(raw: str, base_dir: Path) -> str:
    path = Path(os.path.expandvars(raw)).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return Path(os.path.normpath(path)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "normalize_paths",
    "resolve_remote_token",
]
