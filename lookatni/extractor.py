from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .constants import (
    CONFLICT_ASK,
    CONFLICT_OVERWRITE,
    CONFLICT_POLICIES,
    CONFLICT_RENAME,
    CONFLICT_SKIP,
    DEFAULT_ENCODING,
    PATH_ALLOW,
    PATH_POLICIES,
    PATH_REJECT,
    PATH_SANITIZE,
)
from .dialect import MarkerDialect
from .errors import DestinationNotFound, SourceNotFound
from .hashutil import checksum_matches
from .pathutil import is_traversal, norm_path, sanitize_path, to_forward_slashes
from .records import FileRecord
from .tokenizer import Stream, tokenize

_log = logging.getLogger(__name__)

_DRIVE_RE = re.compile(r"^[A-Za-z]:")

ACTION_WRITE = "write"
ACTION_OVERWRITE = "overwrite"
ACTION_RENAME = "rename"
ACTION_SKIP = "skip"

ERROR_PATH = "path"
ERROR_CHECKSUM = "checksum"
ERROR_WRITE = "write"


@dataclass
class ExtractionOptions:
    overwrite_existing: bool = False
    create_directories: bool = True
    dry_run: bool = False
    conflict_resolution: str = CONFLICT_SKIP  # skip | overwrite | rename | ask
    validate_checksums: bool = False
    preserve_timestamps: bool = False
    path_policy: str = PATH_REJECT  # reject | sanitize | allow


@dataclass(frozen=True)
class ExtractAction:
    filename: str
    path: Optional[str]
    action: str  # write | overwrite | rename | skip
    size: int


@dataclass(frozen=True)
class ExtractError:
    filename: str
    message: str
    kind: str  # path | checksum | write


@dataclass(frozen=True)
class PendingConflict:
    filename: str
    path: str
    start_line: int


@dataclass(frozen=True)
class ExtractionProgress:
    current_file: str
    files_extracted: int
    total_files: int
    percentage: int


@dataclass
class ExtractionResult:
    dry_run: bool = False
    extracted_files: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)  # (filename, reason)
    errors: List[ExtractError] = field(default_factory=list)
    actions: List[ExtractAction] = field(default_factory=list)
    pending_conflicts: List[PendingConflict] = field(default_factory=list)

    @property
    def files_extracted(self) -> int:
        return len(self.extracted_files)

    @property
    def files_skipped(self) -> int:
        return len(self.skipped)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.pending_conflicts


def _next_nonconflicting_path(path: str, claimed: Set[str]) -> str:
    def _taken(p: str) -> bool:
        return os.path.lexists(p) or p in claimed

    if not _taken(path):
        return path
    base_dir = os.path.dirname(path)
    name = os.path.basename(path)
    root, ext = os.path.splitext(name)
    i = 1
    while True:
        candidate = os.path.join(base_dir, f"{root} ({i}){ext}")
        if not _taken(candidate):
            return candidate
        i += 1


def _apply_mtime(path: str, modified: object, log: logging.Logger) -> None:
    """Best-effort timestamp restore that never raises."""
    if not isinstance(modified, str) or not modified:
        return
    try:
        when = datetime.fromisoformat(modified.replace("Z", "+00:00")).timestamp()
    except ValueError:
        log.warning("Ignoring unreadable timestamp %r for %s", modified, path)
        return
    try:
        os.utime(path, (when, when))
    except OSError as exc:
        log.warning("Failed to set timestamps on %s: %s", path, exc)


def _resolve_target(destination: str, filename: str, policy: str) -> Tuple[Optional[str], Optional[str]]:
    """Map a stream filename to a filesystem path under ``policy``.

    Returns ``(path, None)`` or ``(None, reason)`` when the name is refused.
    """
    if policy == PATH_ALLOW:
        rel = to_forward_slashes(filename)
        return os.path.normpath(os.path.join(destination, rel)), None
    if policy == PATH_SANITIZE:
        rel = sanitize_path(filename)
        if _DRIVE_RE.match(rel):
            rel = rel[2:].lstrip("/")
        if not rel:
            return None, f"Nothing left of {filename!r} after sanitizing"
        return os.path.join(destination, *rel.split("/")), None
    if is_traversal(filename) or _DRIVE_RE.match(filename):
        return None, f"Refusing path outside destination: {filename}"
    try:
        rel = norm_path(filename)
    except ValueError as exc:
        return None, f"Refusing path {filename!r}: {exc}"
    if not rel:
        return None, f"Empty path: {filename!r}"
    return os.path.join(destination, *rel.split("/")), None


def _check_integrity(rec: FileRecord) -> Optional[str]:
    expected = rec.metadata.get("checksum")
    if expected is not None and not checksum_matches(rec.content, str(expected)):
        return f"Checksum mismatch for {rec.filename}"
    size = rec.metadata.get("size")
    if isinstance(size, int) and size != rec.byte_length:
        return f"Size mismatch for {rec.filename}: expected {size}, got {rec.byte_length}"
    return None


def extract(
    stream: Stream,
    destination_dir: str,
    options: Optional[ExtractionOptions] = None,
    *,
    resolutions: Optional[Dict[str, str]] = None,
    paths: Optional[Sequence[str]] = None,
    dialect: Optional[MarkerDialect] = None,
    encoding: str = DEFAULT_ENCODING,
    progress: Optional[Callable[[ExtractionProgress], None]] = None,
    logger: Optional[logging.Logger] = None,
) -> ExtractionResult:
    """Materialize the files of a marker stream under ``destination_dir``.

    Per-file problems (refused paths, checksum mismatches, write failures) are
    collected in the result; extraction continues with the next record. When
    a filename appears more than once, the last record wins.

    With ``conflict_resolution="ask"`` existing targets without an entry in
    ``resolutions`` are reported as pending conflicts and left untouched;
    call again with ``resolutions`` ({filename: skip|overwrite|rename}) and
    ``paths`` set to the pending filenames to finish them.

    ``paths`` restricts extraction to records whose filename equals one of
    the given paths or lies below it.

    Raises:
        DestinationNotFound: ``destination_dir`` is missing and may not be created.
        ValueError: Unknown policy names in ``options`` or ``resolutions``.
    """
    log = logger or _log
    opts = options or ExtractionOptions()
    if opts.conflict_resolution not in CONFLICT_POLICIES:
        raise ValueError(f"Unknown conflict resolution: {opts.conflict_resolution!r}")
    if opts.path_policy not in PATH_POLICIES:
        raise ValueError(f"Unknown path policy: {opts.path_policy!r}")
    answers = dict(resolutions or {})
    for name, answer in answers.items():
        if answer not in (CONFLICT_SKIP, CONFLICT_OVERWRITE, CONFLICT_RENAME):
            raise ValueError(f"Unsupported resolution {answer!r} for {name}")

    dest = os.fspath(destination_dir)
    if not os.path.isdir(dest):
        if os.path.exists(dest):
            raise DestinationNotFound(f"Destination is not a directory: {dest}")
        if not opts.dry_run:
            if not opts.create_directories:
                raise DestinationNotFound(f"Destination does not exist: {dest}")
            os.makedirs(dest, exist_ok=True)

    log.info("Extracting markers to %s%s", dest, " (dry run)" if opts.dry_run else "")
    parsed = tokenize(stream, dialect, encoding=encoding, logger=log)
    if parsed.errors:
        log.warning("Found %d parsing error(s)", len(parsed.errors))

    records = parsed.markers
    if paths:
        wanted = [to_forward_slashes(p).strip("/") for p in paths]
        records = [
            rec
            for rec in records
            if any(rec.filename.strip("/") == rp or rec.filename.strip("/").startswith(rp + "/") for rp in wanted)
        ]

    # Records are deduplicated on where they land, so "a.txt" and "./a.txt" collide
    resolved = [_resolve_target(dest, rec.filename, opts.path_policy) for rec in records]
    last_index = {os.path.normpath(target): i for i, (target, _) in enumerate(resolved) if target is not None}
    result = ExtractionResult(dry_run=opts.dry_run)
    claimed: Set[str] = set()
    total = len(records)

    for i, rec in enumerate(records):
        name = rec.filename
        if progress is not None:
            progress(
                ExtractionProgress(
                    current_file=name,
                    files_extracted=result.files_extracted,
                    total_files=total,
                    percentage=int(round(i * 100.0 / total)),
                )
            )

        target, refused = resolved[i]
        if target is None:
            result.errors.append(ExtractError(name, refused or "Refused path", ERROR_PATH))
            log.warning(refused)
            continue

        winner = last_index[os.path.normpath(target)]
        if winner != i:
            reason = f"superseded by line {records[winner].start_line}"
            result.skipped.append((name, reason))
            result.actions.append(ExtractAction(name, None, ACTION_SKIP, rec.byte_length))
            log.info("Skipping %s (line %d): %s", name, rec.start_line, reason)
            continue

        if opts.validate_checksums:
            problem = _check_integrity(rec)
            if problem is not None:
                result.errors.append(ExtractError(name, problem, ERROR_CHECKSUM))
                log.warning(problem)
                continue

        action = ACTION_WRITE
        if os.path.lexists(target) or target in claimed:
            if os.path.isdir(target) and not os.path.islink(target):
                result.errors.append(
                    ExtractError(name, f"Cannot overwrite directory with file: {target}", ERROR_WRITE)
                )
                continue
            if opts.overwrite_existing:
                action = ACTION_OVERWRITE
            else:
                policy = opts.conflict_resolution
                if policy == CONFLICT_ASK:
                    policy = answers.get(name)
                    if policy is None:
                        result.pending_conflicts.append(PendingConflict(name, target, rec.start_line))
                        log.info("Conflict pending for %s", target)
                        continue
                if policy == CONFLICT_SKIP:
                    result.skipped.append((name, "exists"))
                    result.actions.append(ExtractAction(name, target, ACTION_SKIP, rec.byte_length))
                    log.info("Skipping existing file: %s", target)
                    continue
                if policy == CONFLICT_RENAME:
                    target = _next_nonconflicting_path(target, claimed)
                    action = ACTION_RENAME
                else:
                    action = ACTION_OVERWRITE

        if opts.dry_run:
            log.info("[DRY RUN] Would %s %s (%d bytes)", action, target, rec.byte_length)
        else:
            try:
                parent = os.path.dirname(target)
                if opts.create_directories and parent:
                    os.makedirs(parent, exist_ok=True)
                with open(target, "wb") as fh:
                    fh.write(rec.content)
            except OSError as exc:
                result.errors.append(ExtractError(name, f"Failed to write {target}: {exc}", ERROR_WRITE))
                log.error("Failed to write %s: %s", target, exc)
                continue
            if opts.preserve_timestamps:
                _apply_mtime(target, rec.metadata.get("modified"), log)
            log.debug("Extracted %s (%d bytes)", target, rec.byte_length)

        claimed.add(target)
        result.extracted_files.append(target)
        result.actions.append(ExtractAction(name, target, action, rec.byte_length))

    if progress is not None:
        progress(
            ExtractionProgress(
                current_file="",
                files_extracted=result.files_extracted,
                total_files=total,
                percentage=100,
            )
        )
    log.info(
        "Extraction complete: %d extracted, %d skipped, %d error(s), %d pending",
        result.files_extracted,
        result.files_skipped,
        len(result.errors),
        len(result.pending_conflicts),
    )
    return result


def extract_file(
    stream_path: str,
    destination_dir: str,
    options: Optional[ExtractionOptions] = None,
    **kwargs,
) -> ExtractionResult:
    if not os.path.isfile(stream_path):
        raise SourceNotFound(f"Marker file does not exist: {stream_path}")
    with open(stream_path, "rb") as fh:
        data = fh.read()
    return extract(data, destination_dir, options, **kwargs)


def list_files(
    stream: Stream,
    dialect: Optional[MarkerDialect] = None,
    *,
    encoding: str = DEFAULT_ENCODING,
    logger: Optional[logging.Logger] = None,
) -> List[Tuple[str, int]]:
    """(filename, size) per record, without touching the filesystem."""
    parsed = tokenize(stream, dialect, encoding=encoding, logger=logger)
    return [(rec.filename, rec.byte_length) for rec in parsed.markers]
