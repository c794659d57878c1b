"""Unit tests for the console entrypoint's exit-code mapping."""

from __future__ import annotations

from collections.abc import Sequence

import pytest

from movesmith import main
from movesmith.config import ConfigLoadError
from movesmith.domain.errors import SourceFetchError
from movesmith.ui import cli


def _raising(exc: BaseException):
    def fake_run_cli(argv: Sequence[str] | None = None) -> int:
        raise exc

    return fake_run_cli


def test_handler_return_codes_pass_through(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "run_cli", lambda argv=None: 1)
    assert main.cli_entrypoint([]) == main.ExitCode.PIPELINE_FAILED

    monkeypatch.setattr(cli, "run_cli", lambda argv=None: 17)
    assert main.cli_entrypoint([]) == main.ExitCode.INTERNAL_ERROR


def test_argparse_usage_error_maps_to_config_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert main.cli_entrypoint(["no-such-command"]) == main.ExitCode.CONFIG_ERROR
    assert "invalid choice" in capsys.readouterr().err


def test_wrapped_config_error_maps_to_config_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    try:
        raise ConfigLoadError("config file not found: /nowhere.toml")
    except ConfigLoadError as cause:
        wrapped = RuntimeError("startup failed")
        wrapped.__cause__ = cause
    monkeypatch.setattr(cli, "run_cli", _raising(wrapped))

    assert main.cli_entrypoint([]) == main.ExitCode.CONFIG_ERROR
    assert capsys.readouterr().err == "error: startup failed\n"


def test_pipeline_error_maps_to_pipeline_failed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "run_cli", _raising(SourceFetchError("tree listing failed")))

    assert main.cli_entrypoint([]) == main.ExitCode.PIPELINE_FAILED


def test_unexpected_error_prints_traceback(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cli, "run_cli", _raising(KeyError("boom")))

    assert main.cli_entrypoint([]) == main.ExitCode.INTERNAL_ERROR
    assert "Traceback" in capsys.readouterr().err


def test_cli_exports_resolve() -> None:
    missing = [name for name in cli.__all__ if not hasattr(cli, name)]
    assert missing == []
