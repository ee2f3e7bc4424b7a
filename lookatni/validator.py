from __future__ import annotations

import logging
import posixpath
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .constants import (
    DEFAULT_ENCODING,
    FORBIDDEN_FILENAME_CHARS,
    RESERVED_DEVICE_NAMES,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
)
from .dialect import MarkerDialect, split_frontmatter
from .pathutil import is_traversal
from .records import FileRecord
from .tokenizer import Stream, decode_stream, tokenize

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Diagnostic:
    line: Optional[int]
    message: str
    severity: str  # error | warning
    code: str  # stable short identifier (e.g. DUPLICATE_FILENAME)
    filename: Optional[str] = None


@dataclass
class ValidationStatistics:
    total_markers: int = 0
    total_files: int = 0
    total_bytes: int = 0
    duplicate_filenames: List[str] = field(default_factory=list)
    invalid_filenames: List[str] = field(default_factory=list)
    empty_markers: int = 0
    file_types: Dict[str, int] = field(default_factory=dict)


@dataclass
class ValidationReport:
    errors: List[Diagnostic] = field(default_factory=list)
    statistics: ValidationStatistics = field(default_factory=ValidationStatistics)
    dialect: Optional[MarkerDialect] = None

    @property
    def is_valid(self) -> bool:
        return not any(d.severity == SEVERITY_ERROR for d in self.errors)

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.errors if d.severity == SEVERITY_WARNING]

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.errors if d.severity == SEVERITY_ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.errors if d.severity == SEVERITY_WARNING)


# A rule receives every record and returns extra diagnostics
ValidationRule = Callable[[Sequence[FileRecord]], Iterable[Diagnostic]]


def is_invalid_filename(filename: str) -> bool:
    name = filename.strip()
    if not name or name in (".", ".."):
        return True
    if any(c in FORBIDDEN_FILENAME_CHARS for c in filename):
        return True
    if any(ord(c) < 0x20 for c in filename):
        return True
    base = posixpath.basename(filename)
    stem = base.split(".")[0]
    return stem.upper() in RESERVED_DEVICE_NAMES


def _file_type(filename: str) -> str:
    return posixpath.splitext(filename)[1] or "no-extension"


def _check_strict(text: str, dialect: MarkerDialect, report: ValidationReport) -> None:
    tokens = dialect.tokens()
    if not tokens:
        return
    lines = text.split("\n")
    frontmatter, _problem = split_frontmatter(lines)
    body_start = frontmatter.body_start if frontmatter is not None else 0
    for idx in range(body_start, len(lines)):
        line = lines[idx]
        if any(t in line for t in tokens) and dialect.match(line) is None:
            report.errors.append(
                Diagnostic(
                    line=idx + 1,
                    message="Malformed marker line",
                    severity=SEVERITY_ERROR,
                    code="MALFORMED_MARKER",
                )
            )


def validate(
    stream: Stream,
    dialect: Optional[MarkerDialect] = None,
    *,
    strict: bool = False,
    rules: Sequence[ValidationRule] = (),
    encoding: str = DEFAULT_ENCODING,
    logger: Optional[logging.Logger] = None,
) -> ValidationReport:
    """Tokenize ``stream`` and run structural and policy checks over it.

    Duplicates, path traversal and empty content are warnings; parse errors
    and invalid filenames are errors. Only errors make the report invalid.
    """
    log = logger or _log
    text = decode_stream(stream, encoding)
    parsed = tokenize(text, dialect, encoding=encoding, logger=log)
    report = ValidationReport(dialect=parsed.dialect)
    stats = report.statistics
    stats.total_markers = parsed.total_markers
    stats.total_files = parsed.total_files
    stats.total_bytes = parsed.total_bytes

    for issue in parsed.errors:
        report.errors.append(
            Diagnostic(line=issue.line, message=issue.message, severity=SEVERITY_ERROR, code="PARSE_ERROR")
        )

    if strict and parsed.dialect is not None:
        _check_strict(text, parsed.dialect, report)

    seen = set()
    types: Counter = Counter()
    for rec in parsed.markers:
        name = rec.filename
        if name in seen:
            if name not in stats.duplicate_filenames:
                stats.duplicate_filenames.append(name)
                report.errors.append(
                    Diagnostic(
                        line=rec.start_line,
                        message=f"Duplicate filename: {name}",
                        severity=SEVERITY_WARNING,
                        code="DUPLICATE_FILENAME",
                        filename=name,
                    )
                )
        seen.add(name)

        if is_invalid_filename(name):
            stats.invalid_filenames.append(name)
            report.errors.append(
                Diagnostic(
                    line=rec.start_line,
                    message=f"Invalid filename: {name!r}",
                    severity=SEVERITY_ERROR,
                    code="INVALID_FILENAME",
                    filename=name,
                )
            )

        if is_traversal(name):
            report.errors.append(
                Diagnostic(
                    line=rec.start_line,
                    message=f"Path may escape the extraction root: {name}",
                    severity=SEVERITY_WARNING,
                    code="PATH_TRAVERSAL",
                    filename=name,
                )
            )

        if not rec.content.strip():
            stats.empty_markers += 1
            report.errors.append(
                Diagnostic(
                    line=rec.start_line,
                    message=f"Empty content for file: {name}",
                    severity=SEVERITY_WARNING,
                    code="EMPTY_CONTENT",
                    filename=name,
                )
            )

        types[_file_type(name)] += 1

    stats.file_types = dict(sorted(types.items(), key=lambda kv: (-kv[1], kv[0])))

    for rule in rules:
        rule_name = getattr(rule, "__name__", repr(rule))
        try:
            report.errors.extend(rule(parsed.markers))
        except Exception as exc:
            log.error("Validation rule %s failed: %s", rule_name, exc)
            report.errors.append(
                Diagnostic(
                    line=None,
                    message=f"Validation rule {rule_name!r} failed: {exc}",
                    severity=SEVERITY_ERROR,
                    code="RULE_FAILED",
                )
            )

    log.info(
        "Validation %s: %d error(s), %d warning(s)",
        "passed" if report.is_valid else "failed",
        report.error_count,
        report.warning_count,
    )
    return report
