"""Console-script entrypoint for ``movesmith``; maps every outcome onto a fixed exit code."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    PIPELINE_FAILED = 1
    CONFIG_ERROR = 2
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return an ``ExitCode`` value.

    argparse usage errors surface as ``SystemExit(2)``. Anything that escapes the
    command handlers is classified by walking its cause chain: config and input
    problems map to ``CONFIG_ERROR``, pipeline errors to ``PIPELINE_FAILED``, and
    the rest print a traceback and map to ``INTERNAL_ERROR``.
    """

    from movesmith.ui.cli import run_cli

    try:
        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _as_exit_code(exc.code)
    except KeyboardInterrupt:
        sys.stderr.write("interrupted\n")
        return int(ExitCode.PIPELINE_FAILED)
    except Exception as exc:  # noqa: BLE001 - process boundary
        code = _classify(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            sys.stderr.write(f"error: {str(exc).strip() or type(exc).__name__}\n")
        return int(code)


def _as_exit_code(raw: object) -> int:
    if raw is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw, int):
        return raw if raw in ExitCode._value2member_map_ else int(ExitCode.INTERNAL_ERROR)
    # SystemExit("message") prints nothing on its own when intercepted.
    text = str(raw).strip()
    if text:
        sys.stderr.write(text + "\n")
    return int(ExitCode.INTERNAL_ERROR)


def _classify(exc: BaseException) -> ExitCode:
    from movesmith.config import ConfigLoadError, ConfigValidationError
    from movesmith.domain.errors import MovesmithError

    for link in _causes(exc):
        if isinstance(link, MovesmithError):
            return ExitCode.PIPELINE_FAILED
        if isinstance(link, (ConfigLoadError, ConfigValidationError, OSError, ValueError)):
            return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in seen:
        seen.add(id(link))
        yield link
        link = link.__cause__ or (None if link.__suppress_context__ else link.__context__)


__all__ = ["ExitCode", "cli_entrypoint"]
