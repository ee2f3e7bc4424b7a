from __future__ import annotations

import json
import logging
import os
import posixpath
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .constants import (
    DEFAULT_ENCODING,
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_MAX_FILE_SIZE,
    GENERATOR_NAME,
    META_ESCAPE,
    META_PREFIX,
    SKIP_UNREADABLE,
)
from .dialect import MarkerDialect, render_frontmatter, resolve_dialect
from .errors import SourceNotFound
from .hashutil import content_checksum
from .pathutil import to_forward_slashes
from .scanner import FileScanner, ScanFile, SkippedFile

_log = logging.getLogger(__name__)


@dataclass
class GenerationOptions:
    max_file_size: int = DEFAULT_MAX_FILE_SIZE  # bytes; -1 disables
    exclude_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    include_metadata: bool = False
    include_frontmatter: bool = False
    include_binary_files: bool = False
    marker_preset: Optional[str] = None
    marker_start: Optional[str] = None
    marker_end: Optional[str] = None
    encoding: str = DEFAULT_ENCODING
    custom_metadata: Dict[str, Any] = field(default_factory=dict)

    def dialect(self) -> MarkerDialect:
        return resolve_dialect(self.marker_preset, self.marker_start, self.marker_end)


@dataclass(frozen=True)
class GenerationProgress:
    current_file: str
    files_processed: int
    total_files: int
    percentage: int
    bytes_processed: int


@dataclass
class GenerationResult:
    content: str
    total_files: int
    total_bytes: int
    skipped_files: List[SkippedFile] = field(default_factory=list)
    file_types: Dict[str, int] = field(default_factory=dict)
    dialect: Optional[MarkerDialect] = None


ProgressCallback = Callable[[GenerationProgress], None]


def _iso_utc(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def metadata_lines(meta: Dict[str, Any]) -> List[str]:
    return [f"{META_PREFIX}{key}: {json.dumps(value, ensure_ascii=False, default=str)}" for key, value in meta.items()]


def _render(
    files: Sequence[ScanFile],
    opts: GenerationOptions,
    dialect: MarkerDialect,
    progress: Optional[ProgressCallback],
    log: logging.Logger,
) -> Tuple[str, List[SkippedFile], int, Dict[str, int]]:
    parts: List[str] = []
    skipped: List[SkippedFile] = []
    types: Counter = Counter()
    if opts.include_frontmatter and not dialect.builtin:
        parts.append(render_frontmatter(dialect, {"generator": GENERATOR_NAME}))

    total = len(files)
    processed_bytes = 0
    for i, f in enumerate(files):
        rel = to_forward_slashes(f.relpath).lstrip("/")
        if "\n" in rel or "\r" in rel or not rel.strip():
            log.warning("Skipping %r: name cannot be written on a marker line", f.relpath)
            skipped.append(SkippedFile(f.relpath, SKIP_UNREADABLE, "name not representable"))
            continue
        try:
            with open(f.path, "rb") as fh:
                data = fh.read()
        except FileNotFoundError:
            raise SourceNotFound(f"Input file does not exist: {f.path}")
        text = data.decode(opts.encoding, errors="surrogateescape")

        marker = dialect.format_marker(rel)
        if any(dialect.match(line) is not None for line in text.split("\n")):
            log.warning("%s contains a line that looks like a marker; it will split on extraction", rel)

        parts.append(marker + "\n")
        if opts.include_metadata:
            meta: Dict[str, Any] = {
                "size": len(data),
                "modified": _iso_utc(f.mtime),
                "checksum": content_checksum(data),
            }
            for key, value in opts.custom_metadata.items():
                meta.setdefault(str(key), value)
            parts.extend(line + "\n" for line in metadata_lines(meta))
        if text.startswith((META_PREFIX, META_ESCAPE)):
            parts.append(META_ESCAPE)
        parts.append(text)
        if text and not text.endswith("\n"):
            parts.append("\n")
        # Blank separator line, trimmed again by the tokenizer
        parts.append("\n")

        processed_bytes += len(data)
        types[posixpath.splitext(rel)[1] or "no-extension"] += 1
        log.debug("Packed %s (%d bytes)", rel, len(data))
        if progress is not None:
            progress(
                GenerationProgress(
                    current_file=rel,
                    files_processed=i + 1,
                    total_files=total,
                    percentage=int(round((i + 1) * 100.0 / total)),
                    bytes_processed=processed_bytes,
                )
            )

    return "".join(parts), skipped, processed_bytes, dict(types)


def generate(
    files: Sequence[ScanFile],
    options: Optional[GenerationOptions] = None,
    *,
    progress: Optional[ProgressCallback] = None,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Render ``files`` (already filtered by the scanner) as one marker stream.

    Args:
        files: Ordered scanner output; each file becomes one marker block.
        options: Dialect, metadata and encoding choices.
        progress: Called after each file with an immutable progress snapshot.
        logger: Logger for diagnostics; defaults to this module's logger.

    Raises:
        SourceNotFound: A listed file disappeared before it could be read.
        DialectError: The options select an unknown or incomplete dialect.
    """
    opts = options or GenerationOptions()
    content, _skipped, _nbytes, _types = _render(files, opts, opts.dialect(), progress, logger or _log)
    return content


def generate_from_directory(
    root: str,
    options: Optional[GenerationOptions] = None,
    *,
    scanner: Optional[FileScanner] = None,
    progress: Optional[ProgressCallback] = None,
    logger: Optional[logging.Logger] = None,
) -> GenerationResult:
    """Scan ``root`` and render every accepted file into a marker stream."""
    log = logger or _log
    opts = options or GenerationOptions()
    if not os.path.isdir(root):
        raise SourceNotFound(f"Source directory does not exist: {root}")
    dialect = opts.dialect()
    scanner = scanner or FileScanner(logger=log)
    files, skipped = scanner.scan(
        root,
        exclude_patterns=opts.exclude_patterns,
        max_file_size=opts.max_file_size,
        include_binary=opts.include_binary_files,
    )
    for s in skipped:
        log.info("Skipped %s (%s)", s.relpath, s.reason)
    content, render_skipped, nbytes, types = _render(files, opts, dialect, progress, log)
    result = GenerationResult(
        content=content,
        total_files=len(files) - len(render_skipped),
        total_bytes=nbytes,
        skipped_files=skipped + render_skipped,
        file_types=types,
        dialect=dialect,
    )
    log.info("Generation complete: %d file(s), %d byte(s)", result.total_files, result.total_bytes)
    return result


def generate_to_file(
    root: str,
    output: str,
    options: Optional[GenerationOptions] = None,
    *,
    scanner: Optional[FileScanner] = None,
    progress: Optional[ProgressCallback] = None,
    logger: Optional[logging.Logger] = None,
) -> GenerationResult:
    opts = options or GenerationOptions()
    result = generate_from_directory(root, opts, scanner=scanner, progress=progress, logger=logger)
    with open(output, "w", encoding=opts.encoding, errors="surrogateescape", newline="") as fh:
        fh.write(result.content)
    (logger or _log).info("Stream written to %s", output)
    return result
