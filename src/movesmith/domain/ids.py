"""Sortable identifiers for pipeline executions and CLI sessions.

An identifier is ``<prefix>-<ulid>``: 48 bits of millisecond timestamp followed by
80 random bits, written as 26 Crockford Base32 characters so that lexical order
follows creation time.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1

EXECUTION_ID_PREFIX: Final[str] = "exec"
SESSION_ID_PREFIX: Final[str] = "sess"

_RANDOM_BITS: Final[int] = 80
_SEPARATOR: Final[str] = "-"

RandBytes = Callable[[int], bytes]


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    if timestamp_ms < 0 or timestamp_ms > ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {timestamp_ms}"
        )
    size = _RANDOM_BITS // 8
    entropy = (randbytes or secrets.token_bytes)(size)
    if len(entropy) != size:
        raise ValueError(f"randbytes must return exactly {size} bytes")

    value = (timestamp_ms << _RANDOM_BITS) | int.from_bytes(entropy, "big")
    digits: list[str] = []
    for _ in range(ULID_LENGTH):
        value, digit = divmod(value, 32)
        digits.append(CROCKFORD_BASE32_ALPHABET[digit])
    return "".join(reversed(digits))


def generate_prefixed_id(
    prefix: str, *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    if not prefix or _SEPARATOR in prefix:
        raise ValueError(f"prefix must be non-empty and must not contain {_SEPARATOR!r}")
    return prefix + _SEPARATOR + generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)


def generate_execution_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return generate_prefixed_id(EXECUTION_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def generate_session_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return generate_prefixed_id(SESSION_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def parse_ulid_timestamp_ms(value: str) -> int:
    """Return the creation timestamp of a bare or prefixed identifier."""

    _, _, ulid = value.rpartition(_SEPARATOR)
    if len(ulid) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(ulid)}")
    decoded = 0
    for index, char in enumerate(ulid.upper()):
        digit = CROCKFORD_BASE32_ALPHABET.find(char)
        if digit < 0:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")
        decoded = decoded * 32 + digit
    return decoded >> _RANDOM_BITS


__all__ = [
    "EXECUTION_ID_PREFIX",
    "SESSION_ID_PREFIX",
    "ULID_LENGTH",
    "generate_execution_id",
    "generate_prefixed_id",
    "generate_session_id",
    "generate_ulid",
    "parse_ulid_timestamp_ms",
]
