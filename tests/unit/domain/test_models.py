"""
movesmith — unit tests for domain models

File: tests/unit/domain/test_models.py

Purpose
- Validate dataclass invariants for intents, candidates and execution state.

What this test file should cover
- Construction-time validation of bounded numeric fields.
- Forward-only stage machine with monotonic progress and append-only steps.
- JSON-serializable progress records and summaries.
"""

from __future__ import annotations

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from movesmith.domain.errors import (
    ClassificationAmbiguous,
    PipelineTimeoutError,
    RemoteNotFoundError,
    SourceFetchError,
    ValidationFailure,
)
from movesmith.domain.models import (
    CandidateOrigin,
    ContractBundle,
    ContractCandidate,
    ContractCategory,
    ContractIntent,
    GeneratedFile,
    Message,
    PipelineExecution,
    PipelineStage,
    SourceModel,
    StepStatus,
)


def _candidate(**overrides: object) -> ContractCandidate:
    payload: dict[str, object] = {
        "id": "nft_collection",
        "origin": CandidateOrigin.LOCAL,
        "category": "nft",
        "relevance": 1.0,
        "source": "module 0x1::nft {}",
        "path": "nft/nft_collection.move",
    }
    payload.update(overrides)
    return ContractCandidate(**payload)  # type: ignore[arg-type]


def test_intent_confidence_bounds() -> None:
    ContractIntent(categories=(), features=frozenset(), confidence=0.0)
    ContractIntent(categories=(ContractCategory.NFT,), features=frozenset(), confidence=1.0)
    with pytest.raises(ValueError, match="confidence"):
        ContractIntent(categories=(), features=frozenset(), confidence=1.5)


def test_intent_rejects_repeated_categories() -> None:
    with pytest.raises(ValueError, match="must not repeat"):
        ContractIntent(
            categories=(ContractCategory.NFT, ContractCategory.NFT),
            features=frozenset(),
            confidence=0.5,
        )


def test_intent_to_dict_sorts_features() -> None:
    intent = ContractIntent(
        categories=(ContractCategory.TOKEN,),
        features=frozenset({"mint", "burn"}),
        confidence=0.4,
    )
    assert intent.primary_category is ContractCategory.TOKEN
    assert intent.to_dict()["features"] == ["burn", "mint"]


def test_candidate_relevance_and_id_validation() -> None:
    with pytest.raises(ValueError, match="relevance"):
        _candidate(relevance=1.2)
    with pytest.raises(ValueError, match="id must not be empty"):
        _candidate(id="  ")


def test_candidate_base_name_prefers_path_stem() -> None:
    assert _candidate().base_name == "nft_collection"
    assert _candidate(path="", name="fungible").base_name == "fungible"
    assert _candidate(path="", name="", id="remote-x").base_name == "remote-x"


def test_candidate_to_dict_omits_source_by_default() -> None:
    payload = _candidate().to_dict()
    assert "source" not in payload
    assert _candidate().to_dict(include_source=True)["source"].startswith("module")


def test_valid_source_model_requires_identity() -> None:
    with pytest.raises(ValueError, match="requires both address and module name"):
        SourceModel(address="", module_name="x", is_valid=True)
    model = SourceModel(
        address="0x1",
        module_name="coin",
        errors=(("E_NOT_OWNER", 1),),
        diagnostics=("Warning: no events", "Missing function"),
        is_valid=True,
    )
    assert model.qualified_name == "0x1::coin"
    assert model.error_codes == {"E_NOT_OWNER": 1}
    assert model.warnings == ("Warning: no events",)


def test_execution_moves_forward_only() -> None:
    execution = PipelineExecution(execution_id="exec-1")
    execution.enter(PipelineStage.ANALYZING, 10)
    execution.enter(PipelineStage.GENERATING, 40)

    with pytest.raises(RuntimeError, match="revisit"):
        execution.enter(PipelineStage.FETCHING_CONTEXT, 50)
    with pytest.raises(RuntimeError, match="must not decrease"):
        execution.advance(30)
    with pytest.raises(ValueError, match="use fail"):
        execution.enter(PipelineStage.FAILED, 50)


def test_failed_resets_progress_and_terminates() -> None:
    execution = PipelineExecution(execution_id="exec-1")
    execution.enter(PipelineStage.GENERATING, 55)
    execution.fail()

    assert execution.stage is PipelineStage.FAILED
    assert execution.progress == 0
    assert execution.finished_at is not None
    with pytest.raises(RuntimeError, match="already terminated"):
        execution.enter(PipelineStage.COMPLETED, 100)
    with pytest.raises(RuntimeError, match="already terminated"):
        execution.fail()


@settings(max_examples=100, deadline=None)
@given(st.lists(st.integers(min_value=0, max_value=100), max_size=30))
def test_recorded_progress_never_decreases(updates: list[int]) -> None:
    execution = PipelineExecution(execution_id="exec-prop")
    for value in updates:
        try:
            execution.advance(value)
        except RuntimeError:
            continue
        execution.record("step", StepStatus.RUNNING, f"at {value}")

    recorded = [step.progress_percent for step in execution.steps]
    assert recorded == sorted(recorded)
    assert execution.progress == (max(updates) if updates else 0)


def test_steps_and_snapshot_are_json_serializable() -> None:
    execution = PipelineExecution(execution_id="exec-1")
    execution.enter(PipelineStage.ANALYZING, 10)
    execution.record("analyzing", StepStatus.RUNNING, "Analyzing request")
    execution.advance(20)
    execution.record("analyzing", StepStatus.COMPLETED, "done", details={"categories": ["nft"]})

    record = execution.snapshot("Analyzing request")
    payload = json.loads(json.dumps(record.to_dict()))

    assert payload["stage"] == "analyzing"
    assert payload["progress_percent"] == 20
    assert [step["progress_percent"] for step in payload["steps"]] == [10, 20]
    assert payload["steps"][0]["timestamp"].endswith("Z")
    assert "error_kind" not in payload

    summary = execution.summary()
    assert summary["total_steps"] == 2
    assert summary["completed_steps"] == 1
    assert summary["failed_steps"] == 0


def test_message_serializes_structured_content() -> None:
    assert Message("user", "hello").serialized_content() == "hello"
    assert Message("user", {"b": 1, "a": [1]}).serialized_content() == '{"a":[1],"b":1}'


def test_bundle_file_lookup() -> None:
    bundle = ContractBundle(
        project_name="demo",
        address="0xcafe",
        files=(GeneratedFile("Move.toml", "[package]"),),
        modules=("demo_nft",),
        dependencies=(),
    )
    assert bundle.file("Move.toml") is not None
    assert bundle.file("missing") is None
    assert bundle.to_dict()["files"] == [{"path": "Move.toml", "content": "[package]"}]


def test_error_kinds_are_stable() -> None:
    assert SourceFetchError("x").kind == "source_fetch"
    assert RemoteNotFoundError("x", path="a.move").path == "a.move"
    assert isinstance(RemoteNotFoundError("x"), SourceFetchError)
    assert PipelineTimeoutError("slow").kind == "timeout"
    assert isinstance(PipelineTimeoutError("slow"), TimeoutError)

    failure = ValidationFailure("nft", ("Missing module declaration",))
    assert failure.kind == "validation"
    assert "Missing module declaration" in str(failure)


def test_ambiguity_message_varies_with_matches() -> None:
    none_matched = ClassificationAmbiguous(confidence=0.0, threshold=0.3, matched_categories=0)
    weak = ClassificationAmbiguous(confidence=0.1, threshold=0.3, matched_categories=1)
    assert none_matched.message == "no contract category matched the request"
    assert "0.10" in weak.message and "0.30" in weak.message
