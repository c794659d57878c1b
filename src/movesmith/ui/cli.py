"""Command-line interface router for movesmith."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from movesmith.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from movesmith.constants import NETWORKS
from movesmith.control_plane import PipelineRequest, PipelineResult, build_runtime
from movesmith.domain.ids import generate_session_id
from movesmith.domain.models import ProgressRecord
from movesmith.knowledge_plane.candidate_store import CandidateStore
from movesmith.observability import configure_structlog, setup_logging, shutdown_logging
from movesmith.synthesis_plane.intent_classifier import IntentClassifier


class CLIError(RuntimeError):
    """User-facing CLI failure carrying the process exit code."""

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="movesmith",
        description=(
            "movesmith — prompt-to-Move-contract pipeline.\n\n"
            "Common workflows:\n"
            '  movesmith classify "an nft collection"        Show the detected intent\n'
            '  movesmith generate "a token" --project coin   Build a contract bundle\n'
            "  movesmith templates                          List catalog templates\n"
            "  movesmith config                             Show effective config\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to movesmith TOML config (default: ./movesmith.toml if present).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    classify_parser = subparsers.add_parser(
        "classify",
        parents=[common],
        help="Classify a prompt into contract categories and features",
    )
    classify_parser.add_argument("prompt", help="Natural-language contract request")
    classify_parser.set_defaults(handler=_cmd_classify)

    generate_parser = subparsers.add_parser(
        "generate",
        parents=[common],
        help="Run the pipeline and emit progress records plus the final result",
    )
    generate_parser.add_argument("prompt", help="Natural-language contract request")
    generate_parser.add_argument("--project", required=True, help="Project (package) name")
    generate_parser.add_argument("--address", default=None, help="Named address value")
    generate_parser.add_argument(
        "--network", choices=NETWORKS, default=None, help="Target network for explorer links"
    )
    generate_parser.add_argument(
        "--remote",
        action="store_true",
        default=False,
        help="Allow the remote example repository when local candidates are scarce",
    )
    generate_parser.add_argument(
        "--output",
        default=None,
        help="Directory to write the generated package into",
    )
    generate_parser.set_defaults(handler=_cmd_generate)

    templates_parser = subparsers.add_parser(
        "templates",
        parents=[common],
        help="List the local template catalog",
    )
    templates_parser.add_argument("--category", default=None, help="Only list one category")
    templates_parser.set_defaults(handler=_cmd_templates)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the effective (redacted) configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    configure_structlog()
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_classify(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    classifier_cfg = config["classifier"]
    classifier = IntentClassifier(
        confidence_scale=classifier_cfg["confidence_scale"],
        related_threshold=classifier_cfg["related_threshold"],
        max_suggestions=classifier_cfg["max_suggestions"],
    )
    intent = classifier.detect_intent(_require_prompt(args))
    ambiguity = classifier.assess(intent)
    payload: dict[str, object] = {"command": "classify", "intent": intent.to_dict()}
    if ambiguity is not None:
        payload["warning"] = ambiguity.message
    _emit_json(payload)
    return 0


def _cmd_generate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    handle = setup_logging(config["observability"], session_id=generate_session_id())
    try:
        result = asyncio.run(_generate(args, config))
    finally:
        shutdown_logging(handle)

    output = getattr(args, "output", None)
    if result.success and result.bundle is not None and output:
        _write_bundle(result, Path(output))

    _emit_json({"command": "generate", "result": result.to_dict()})
    return 0 if result.success else 1


async def _generate(args: argparse.Namespace, config: Mapping[str, Any]) -> PipelineResult:
    overrides: dict[str, Any] = {}
    if getattr(args, "remote", False):
        overrides = {"aggregator": {**config["aggregator"], "use_remote": True}}
    effective = {**config, **overrides}

    async with build_runtime(effective) as runtime:
        try:
            request = PipelineRequest(
                prompt=_require_prompt(args),
                project_name=str(args.project),
                address=args.address,
                network=args.network or runtime.default_network,
                use_remote=runtime.use_remote,
                credentials=runtime.remote_token,
            )
        except ValueError as exc:
            raise CLIError(str(exc), exit_code=2) from exc

        channel = runtime.orchestrator.new_channel()
        channel.subscribe(_emit_progress)
        return await runtime.orchestrator.execute(request, channel=channel)


def _cmd_templates(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    store = CandidateStore.from_catalog(config["paths"].get("catalog"))
    category = getattr(args, "category", None)
    candidates = store.by_category(category) if category else store.all()
    _emit_json(
        {
            "command": "templates",
            "stats": store.stats().to_dict(),
            "templates": [item.to_dict() for item in candidates],
        }
    )
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _emit_json({"command": "config", "config": json.loads(dump_effective_config(config))})
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _emit_progress(record: ProgressRecord) -> None:
    _emit_json({"progress": record.to_dict()})


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = getattr(args, "config_path", None)
    try:
        return load_config(config_path)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _require_prompt(args: argparse.Namespace) -> str:
    prompt = getattr(args, "prompt", None)
    if not isinstance(prompt, str) or not prompt.strip():
        raise CLIError("prompt must be a non-empty string", exit_code=2)
    return prompt


def _write_bundle(result: PipelineResult, output_dir: Path) -> None:
    if result.bundle is None:
        return
    root = output_dir.expanduser().resolve()
    for item in result.bundle.files:
        target = root / item.path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(item.content, encoding="utf-8")


__all__ = ["CLIError", "build_parser", "run_cli"]
