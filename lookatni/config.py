"""Environment-driven defaults for the lookatni front ends.

python-dotenv loads a .env file on import; every value can be overridden
with a LOOKATNI_* environment variable. The codec functions themselves never
read the environment: they receive option objects, and the CLI builds those
objects from the helpers below.
"""

from __future__ import annotations

import os

from dotenv import find_dotenv, load_dotenv

from .constants import (
    CONFLICT_POLICIES,
    CONFLICT_SKIP,
    DEFAULT_ENCODING,
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_PRESET,
)

load_dotenv(find_dotenv(usecwd=True))


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_list(name: str, default: tuple[str, ...]) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [p.strip() for p in raw.split(",") if p.strip()]


def marker_preset() -> str:
    return os.getenv("LOOKATNI_MARKER_PRESET", DEFAULT_PRESET).strip() or DEFAULT_PRESET


def max_file_size() -> int:
    return _env_int("LOOKATNI_MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE)


def exclude_patterns() -> list[str]:
    return _env_list("LOOKATNI_EXCLUDE", DEFAULT_EXCLUDE_PATTERNS)


def encoding() -> str:
    return os.getenv("LOOKATNI_ENCODING", DEFAULT_ENCODING).strip() or DEFAULT_ENCODING


def conflict_resolution() -> str:
    value = os.getenv("LOOKATNI_CONFLICT", CONFLICT_SKIP).strip().lower() or CONFLICT_SKIP
    if value not in CONFLICT_POLICIES:
        raise ValueError(
            f"LOOKATNI_CONFLICT must be one of {', '.join(CONFLICT_POLICIES)}, got {value!r}"
        )
    return value


def log_level() -> str:
    return os.getenv("LOOKATNI_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
