"""Marker dialects: what a marker line looks like in a given stream.

A dialect is one of a closed set of variants:

- separator: ``//<sep>/ name /<sep>//`` where <sep> is an ASCII information
  separator (FS, GS, RS or US)
- preset:    visible token pairs (html, markdown, code comments)
- custom:    caller supplied start/end tokens, or a frontmatter ``pattern``
  containing ``{filename}``

Every variant renders a marker as ``"{start} {filename} {end}"`` unless a
pattern is declared. Detection is exact: case-sensitive, whitespace-exact and
never fuzzy.
"""

from __future__ import annotations

import functools
import json
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .constants import (
    DEFAULT_PRESET,
    DEFAULT_SEPARATOR,
    DETECTION_WINDOW,
    FILENAME_PLACEHOLDER,
    FRONTMATTER_FENCE,
    FRONTMATTER_SECTION,
    FRONTMATTER_VERSION,
    PRESET_TOKENS,
    SEPARATORS,
)
from .errors import DialectError


KIND_SEPARATOR = "separator"
KIND_PRESET = "preset"
KIND_CUSTOM = "custom"


@dataclass(frozen=True)
class MarkerDialect:
    kind: str
    name: str
    start: str = ""
    end: str = ""
    separator: Optional[str] = None
    pattern: Optional[str] = None
    frontmatter_declared: bool = False

    @property
    def builtin(self) -> bool:
        return self.kind != KIND_CUSTOM

    def format_marker(self, filename: str) -> str:
        if self.pattern is not None:
            return self.pattern.replace(FILENAME_PLACEHOLDER, filename)
        return f"{self.start} {filename} {self.end}"

    def match(self, line: str) -> Optional[str]:
        """Return the raw filename field when ``line`` is a marker line."""
        m = _compile(self).fullmatch(line)
        if m is None:
            return None
        return m.group(1)

    def tokens(self) -> Tuple[str, ...]:
        """Literal fragments that identify marker-like lines (strict checks)."""
        if self.pattern is not None:
            before, _, after = self.pattern.partition(FILENAME_PLACEHOLDER)
            return tuple(t for t in (before.strip(), after.strip()) if t)
        return tuple(t for t in (self.start, self.end) if t)


@functools.lru_cache(maxsize=64)
def _compile(dialect: MarkerDialect) -> "re.Pattern[str]":
    if dialect.pattern is not None:
        before, _, after = dialect.pattern.partition(FILENAME_PLACEHOLDER)
        return re.compile(re.escape(before) + "(.*?)" + re.escape(after))
    return re.compile(re.escape(dialect.start) + " (.*?) " + re.escape(dialect.end))


def separator_dialect(sep: str) -> MarkerDialect:
    for name, ch in SEPARATORS.items():
        if ch == sep:
            return MarkerDialect(
                kind=KIND_SEPARATOR,
                name=name,
                start=f"//{sep}/",
                end=f"/{sep}//",
                separator=sep,
            )
    raise DialectError(f"Unsupported separator character: {sep!r}")


def preset_dialect(name: str) -> MarkerDialect:
    try:
        start, end = PRESET_TOKENS[name]
    except KeyError:
        raise DialectError(f"Unknown marker preset: {name!r}")
    return MarkerDialect(kind=KIND_PRESET, name=name, start=start, end=end)


def custom_dialect(
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    pattern: Optional[str] = None,
    frontmatter_declared: bool = False,
) -> MarkerDialect:
    if pattern is not None:
        if pattern.count(FILENAME_PLACEHOLDER) != 1:
            raise DialectError(f"Marker pattern must contain {FILENAME_PLACEHOLDER} exactly once")
        before, _, after = pattern.partition(FILENAME_PLACEHOLDER)
        if not before.strip() and not after.strip():
            raise DialectError(f"Marker pattern needs literal text around {FILENAME_PLACEHOLDER}")
        return MarkerDialect(
            kind=KIND_CUSTOM,
            name="custom",
            pattern=pattern,
            frontmatter_declared=frontmatter_declared,
        )
    if not start or not end:
        raise DialectError("Custom markers need both a start and an end token")
    if "\n" in start or "\n" in end:
        raise DialectError("Marker tokens may not contain newlines")
    return MarkerDialect(
        kind=KIND_CUSTOM,
        name="custom",
        start=start,
        end=end,
        frontmatter_declared=frontmatter_declared,
    )


DEFAULT_DIALECT = separator_dialect(DEFAULT_SEPARATOR)

BUILTIN_PRESETS: Dict[str, MarkerDialect] = {name: preset_dialect(name) for name in PRESET_TOKENS}

# Any information separator, the same one on both sides
_SEPARATOR_MARKER_RE = re.compile(r"//([\x1c-\x1f])/ (.*?) /\1//")


def resolve_dialect(
    preset: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> MarkerDialect:
    """Build the dialect selected by generation options."""
    if start is not None or end is not None:
        return custom_dialect(start, end)
    name = (preset or DEFAULT_PRESET).lower()
    if name == DEFAULT_PRESET:
        return DEFAULT_DIALECT
    if name in SEPARATORS:
        return separator_dialect(SEPARATORS[name])
    return preset_dialect(name)


def detect_line(line: str) -> Optional[MarkerDialect]:
    """Return the built-in dialect whose marker shape ``line`` has, if any."""
    m = _SEPARATOR_MARKER_RE.fullmatch(line)
    if m is not None:
        return separator_dialect(m.group(1))
    for dialect in BUILTIN_PRESETS.values():
        if dialect.match(line) is not None:
            return dialect
    return None


def detect_dialect(lines: Sequence[str], window: int = DETECTION_WINDOW) -> Optional[MarkerDialect]:
    """Pick the stream dialect from the first recognizable marker line.

    Only the first ``window`` lines are probed. Returns None when nothing in
    the window looks like a marker.
    """
    for line in lines[:window]:
        dialect = detect_line(line)
        if dialect is not None:
            return dialect
    return None


# -------- Frontmatter --------

_FM_KEY_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*):\s*(.*?)\s*$")


@dataclass(frozen=True)
class Frontmatter:
    values: Dict[str, str]
    body_start: int  # index of the first body line
    dialect: Optional[MarkerDialect]


def _unquote(raw: str) -> str:
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        try:
            value = json.loads(raw)
        except ValueError:
            return raw[1:-1]
        return value if isinstance(value, str) else raw[1:-1]
    if len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1].replace("''", "'")
    return raw


def split_frontmatter(lines: Sequence[str]) -> Tuple[Optional[Frontmatter], Optional[str]]:
    """Parse a leading ``---`` header block.

    Returns ``(frontmatter, problem)``. ``frontmatter`` is None when the
    stream has no header block; ``problem`` describes an unterminated block.
    """
    if not lines or lines[0].strip() != FRONTMATTER_FENCE:
        return None, None
    values: Dict[str, str] = {}
    has_section = False
    in_section = False
    for i in range(1, len(lines)):
        line = lines[i]
        if line.strip() == FRONTMATTER_FENCE:
            # Some other tool's front matter; markers may still follow it
            if not has_section:
                return None, None
            return Frontmatter(values=values, body_start=i + 1, dialect=_declared_dialect(values)), None
        m = _FM_KEY_RE.match(line)
        if m is None:
            continue
        key, raw = m.group(1), m.group(2)
        if not line[:1].isspace():
            # A top-level key opens or closes the lookatni section
            in_section = key == FRONTMATTER_SECTION and not raw
            has_section = has_section or in_section
            continue
        if in_section:
            values[key] = _unquote(raw)
    # A lone leading '---' without a lookatni section is ordinary preamble
    if not has_section:
        return None, None
    return None, "Unterminated frontmatter block (missing closing '---')"


def _declared_dialect(values: Dict[str, str]) -> Optional[MarkerDialect]:
    pattern = values.get("pattern")
    if pattern and FILENAME_PLACEHOLDER in pattern:
        try:
            return custom_dialect(pattern=pattern, frontmatter_declared=True)
        except DialectError:
            return None
    start, end = values.get("start"), values.get("end")
    if start and end:
        return custom_dialect(start, end, frontmatter_declared=True)
    return None


def render_frontmatter(dialect: MarkerDialect, extra: Optional[Dict[str, object]] = None) -> str:
    """Render the header block that declares ``dialect`` for a stream."""
    out: List[str] = [FRONTMATTER_FENCE, f"{FRONTMATTER_SECTION}:"]

    def _kv(key: str, value: object) -> None:
        out.append(f"  {key}: {json.dumps(str(value), ensure_ascii=False)}")

    _kv("version", FRONTMATTER_VERSION)
    if dialect.pattern is not None:
        _kv("pattern", dialect.pattern)
    else:
        _kv("start", dialect.start)
        _kv("end", dialect.end)
    for key, value in (extra or {}).items():
        if key in ("version", "pattern", "start", "end"):
            continue
        _kv(key, value)
    out.append(FRONTMATTER_FENCE)
    return "\n".join(out) + "\n"
