"""Structured logging for movesmith sessions.

Every component logs with ``structlog.get_logger(__name__)``. :func:`configure_structlog`
hands those events to stdlib logging, where one :class:`LogSession` per CLI invocation
queues records off the caller's thread and writes them as redacted JSON lines to
``<log_dir>/<session_id>/movesmith.jsonl``. Correlation ids bound with
:func:`correlation_scope` are captured at enqueue time and written as top-level keys.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

REDACTED: Final[str] = "***REDACTED***"
LOG_FILENAME: Final[str] = "movesmith.jsonl"
ROOT_LOGGER_NAME: Final[str] = "movesmith"

CORRELATION_KEYS: Final[tuple[str, ...]] = ("session_id", "execution_id", "stage", "candidate_id")

# Attributes every LogRecord carries; anything else on a record is an extra field.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation"}

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "movesmith_log_correlation", default=()
)


class SecretScrubber:
    """Masks credential-looking values by key name and by token shape in free text."""

    KEY_TERMS: Final[tuple[str, ...]] = (
        "secret", "token", "password", "api_key", "apikey", "authorization", "credential",
        "private_key",
    )
    TEXT_RULES: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
        (
            re.compile(
                r"(?i)\b(api[_-]?key|token|password|secret|private[_-]?key|authorization)\b"
                r"(\s*[:=]\s*)[^\s,;]+"
            ),
            rf"\1\2{REDACTED}",
        ),
        (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {REDACTED}"),
        (re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})\b"), REDACTED),
        (re.compile(r"(?i)\btoken\s+[A-Za-z0-9_]{20,}\b"), f"token {REDACTED}"),
    )

    def is_sensitive_key(self, key: str) -> bool:
        lowered = key.lower()
        return any(term in lowered for term in self.KEY_TERMS)

    def scrub_text(self, text: str) -> str:
        for pattern, replacement in self.TEXT_RULES:
            text = pattern.sub(replacement, text)
        return text

    def scrub(self, value: JSONValue, key: str | None = None) -> JSONValue:
        if key is not None and self.is_sensitive_key(key):
            return REDACTED
        if isinstance(value, str):
            return self.scrub_text(value)
        if isinstance(value, list):
            return [self.scrub(item) for item in value]
        if isinstance(value, dict):
            return {name: self.scrub(item, name) for name, item in value.items()}
        return value


_SCRUBBER: Final[SecretScrubber] = SecretScrubber()


def redact_text(text: str) -> str:
    return _SCRUBBER.scrub_text(text)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how one session writes its JSON log; validated on construction."""

    session_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = LOG_FILENAME
    redact: bool = True

    def __post_init__(self) -> None:
        if not self.session_id.strip():
            raise ValueError("session_id must not be empty")
        if not self.logger_name.strip():
            raise ValueError("logger_name must not be empty")
        if self.queue_size <= 0:
            raise ValueError("queue_size must be > 0")
        if not self.log_filename or Path(self.log_filename).name != self.log_filename:
            raise ValueError("log_filename must be a bare file name")
        _level_number(self.level)

    @property
    def log_path(self) -> Path:
        return Path(self.base_log_dir) / self.session_id.strip() / self.log_filename


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Enqueues without blocking, counting records lost to a full queue."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The contextvar is not visible from the listener thread.
        context = get_correlation_context()
        prepared = super().prepare(record)
        if context:
            prepared.correlation = context
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, *, session_id: str, scrubber: SecretScrubber | None) -> None:
        super().__init__()
        self._session_id = session_id
        self._scrubber = scrubber
        self._render = structlog.processors.JSONRenderer(
            sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )

    def _scrub(self, value: JSONValue) -> JSONValue:
        return value if self._scrubber is None else self._scrubber.scrub(value)

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "event": _as_text(self._scrub(record.getMessage())),
        }
        payload.update(self._correlation(record))

        extras = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
            and key not in CORRELATION_KEYS
            and not key.startswith("_")
        }
        if extras:
            payload["fields"] = self._scrub(extras)
        if record.exc_info:
            payload["exception"] = _as_text(self._scrub(self.formatException(record.exc_info)))
        return str(self._render(None, "", payload))

    def _correlation(self, record: logging.LogRecord) -> dict[str, str]:
        fields = {"session_id": self._session_id}
        captured = getattr(record, "correlation", None)
        if isinstance(captured, Mapping):
            fields.update({str(key): str(value) for key, value in captured.items()})
        for key in CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, str) and value.strip():
                fields[key] = value.strip()
        return fields


class LogSession:
    """One active logging setup: the queue handler, its listener thread and the file sink."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        handler: _CorrelatingQueueHandler,
        listener: logging.handlers.QueueListener,
        sink: logging.Handler,
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._handler = handler
        self._listener = listener
        self._sink = sink
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._handler.dropped

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self, *, timeout_seconds: float = 2.0) -> None:
        """Drain queued records into the file, stop the listener, and detach."""

        with self._lock:
            if self._closed:
                return
            log_queue = self._handler.queue
            deadline = time.monotonic() + timeout_seconds
            while getattr(log_queue, "unfinished_tasks", 0) and time.monotonic() < deadline:
                time.sleep(0.01)
            self._listener.stop()
            self.logger.removeHandler(self._handler)
            self._handler.close()
            self._sink.close()
            self._closed = True


_active_lock = threading.Lock()
_active: LogSession | None = None
_atexit_registered = False


def setup_structured_logging(config: LoggingConfig) -> LogSession:
    """Start a session per ``config``, closing whichever session was active before."""

    global _active, _atexit_registered
    shutdown_logging()

    level = _level_number(config.level)
    log_path = config.log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)
    sink = logging.FileHandler(log_path, encoding="utf-8")
    sink.setLevel(level)
    sink.setFormatter(
        _JsonLinesFormatter(
            session_id=config.session_id.strip(),
            scrubber=_SCRUBBER if config.redact else None,
        )
    )

    logger = logging.getLogger(config.logger_name.strip())
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    handler = _CorrelatingQueueHandler(log_queue)
    handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, sink, respect_handler_level=True)
    listener.start()
    logger.addHandler(handler)

    session = LogSession(
        logger=logger, log_path=log_path, handler=handler, listener=listener, sink=sink
    )
    with _active_lock:
        _active = session
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return session


def setup_logging(
    observability_config: Mapping[str, object] | None = None, *, session_id: str
) -> LogSession:
    """Start a session from the ``[observability]`` config section and wire structlog."""

    section = dict(observability_config or {})
    level = section.get("log_level", "INFO")
    log_dir = section.get("log_dir", "logs")
    session = setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            base_log_dir=log_dir if isinstance(log_dir, (str, Path)) else "logs",
            level=level if isinstance(level, (int, str)) else "INFO",
            redact=bool(section.get("redact_secrets", True)),
        )
    )
    configure_structlog()
    return session


def shutdown_logging(session: LogSession | None = None) -> None:
    """Close ``session`` (default: the active one) and forget it if it was active."""

    global _active
    with _active_lock:
        target = session or _active
        if target is _active:
            _active = None
    if target is not None:
        target.close()


def configure_structlog() -> None:
    """Send structlog events to stdlib logging; keyword fields become record extras."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation ids for records logged inside the block; ``None`` unbinds a key."""

    merged = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        elif not value.strip():
            raise ValueError(f"correlation field {key!r} must not be blank")
        else:
            merged[key] = value.strip()
    token = _CORRELATION.set(tuple(merged.items()))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    try:
        return logging.getLevelNamesMapping()[str(level).strip().upper()]
    except KeyError:
        raise ValueError(f"unsupported logging level {level!r}") from None


def _as_text(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    return "" if value is None else json.dumps(value, sort_keys=True)


def _jsonable(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(item) for item in value), key=repr)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return value.as_posix()
    return repr(value)


__all__ = [
    "CORRELATION_KEYS",
    "REDACTED",
    "JSONValue",
    "LogSession",
    "LoggingConfig",
    "SecretScrubber",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "redact_text",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
