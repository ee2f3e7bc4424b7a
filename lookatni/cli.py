from __future__ import annotations

import argparse
import json as _json
import logging
import os
import sys
from typing import Dict, List, Optional

from lookatni import config
from lookatni.constants import (
    CONFLICT_OVERWRITE,
    CONFLICT_POLICIES,
    CONFLICT_RENAME,
    CONFLICT_SKIP,
    PATH_POLICIES,
    PATH_REJECT,
    PRESET_TOKENS,
    SEPARATORS,
    DEFAULT_PRESET,
)
from lookatni.errors import LookatniError, SourceNotFound
from lookatni.extractor import ExtractionOptions, ExtractionResult, PendingConflict, extract
from lookatni.generator import GenerationOptions, GenerationProgress, generate_to_file
from lookatni.tokenizer import tokenize
from lookatni.validator import validate

PRESET_CHOICES = [DEFAULT_PRESET] + list(SEPARATORS) + list(PRESET_TOKENS)

_ANSWERS = {
    "s": CONFLICT_SKIP,
    "skip": CONFLICT_SKIP,
    "o": CONFLICT_OVERWRITE,
    "overwrite": CONFLICT_OVERWRITE,
    "r": CONFLICT_RENAME,
    "rename": CONFLICT_RENAME,
}


def _read_stream(path: str) -> bytes:
    if not os.path.isfile(path):
        raise SourceNotFound(f"Marker file does not exist: {path}")
    with open(path, "rb") as fh:
        return fh.read()


def _fmt_bytes(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    if n < 1024 * 1024:
        return f"{n / 1024.0:.1f} KiB"
    return f"{n / (1024.0 * 1024.0):.2f} MiB"


def cmd_generate(
    source: str,
    output: str,
    *,
    options: GenerationOptions,
    quiet: bool = False,
) -> bool:
    """Pack a source directory into a marker stream file.

    Args:
        source: Directory to scan.
        output: Path of the stream file to write.
        options: Generation options (dialect, filters, metadata).
        quiet: Limit output to the summary line.
    """

    def _progress(p: GenerationProgress) -> None:
        if not quiet:
            print(f" {p.percentage:3d}% packing: {p.current_file}")

    result = generate_to_file(source, output, options, progress=_progress)
    for s in result.skipped_files:
        if not quiet:
            detail = f": {s.detail}" if s.detail else ""
            print(f"    skipping: {s.relpath} ({s.reason}{detail})")
    print(
        f"Done: {result.total_files} files, {_fmt_bytes(result.total_bytes)}; "
        f"skipped={len(result.skipped_files)}; markers={result.dialect.name if result.dialect else '-'}"
    )
    return True


def cmd_list(stream: str, *, encoding: str) -> bool:
    """List the records in a stream as ``size<TAB>path``."""
    parsed = tokenize(_read_stream(stream), encoding=encoding)
    for rec in parsed.markers:
        print(f"{rec.byte_length}\t{rec.filename}")
    for issue in parsed.errors:
        print(f"Warning: line {issue.line}: {issue.message}", file=sys.stderr)
    return not parsed.errors


def cmd_validate(stream: str, *, strict: bool = False, as_json: bool = False, encoding: str) -> bool:
    """Validate a stream and print every diagnostic.

    Returns:
        True when the stream has no error-level diagnostics.
    """
    report = validate(_read_stream(stream), strict=strict, encoding=encoding)
    stats = report.statistics
    if as_json:
        print(
            _json.dumps(
                {
                    "valid": report.is_valid,
                    "dialect": report.dialect.name if report.dialect else None,
                    "errors": [
                        {
                            "line": d.line,
                            "severity": d.severity,
                            "code": d.code,
                            "message": d.message,
                            "filename": d.filename,
                        }
                        for d in report.errors
                    ],
                    "statistics": {
                        "total_markers": stats.total_markers,
                        "total_files": stats.total_files,
                        "total_bytes": stats.total_bytes,
                        "duplicate_filenames": stats.duplicate_filenames,
                        "invalid_filenames": stats.invalid_filenames,
                        "empty_markers": stats.empty_markers,
                        "file_types": stats.file_types,
                    },
                }
            )
        )
        return report.is_valid
    for d in report.errors:
        where = f"line {d.line}" if d.line is not None else "-"
        print(f"{d.severity.upper():8s} {where}: {d.message} [{d.code}]")
    print(
        f"{'VALID' if report.is_valid else 'INVALID'}: {stats.total_files} files, "
        f"{stats.total_markers} markers, {_fmt_bytes(stats.total_bytes)}; "
        f"errors={report.error_count} warnings={report.warning_count}"
    )
    return report.is_valid


def _prompt_resolutions(pending: List[PendingConflict]) -> Dict[str, str]:
    answers: Dict[str, str] = {}
    for c in pending:
        while True:
            try:
                raw = input(f"{c.path} exists. [s]kip, [o]verwrite, [r]ename? ")
            except EOFError:
                raw = "s"
            choice = _ANSWERS.get(raw.strip().lower())
            if choice is not None:
                answers[c.filename] = choice
                break
            print("Please answer s, o or r.")
    return answers


def _merge(first: ExtractionResult, second: ExtractionResult) -> ExtractionResult:
    first.extracted_files.extend(second.extracted_files)
    # Superseded duplicates are reported by both passes
    first.skipped.extend(s for s in second.skipped if s not in first.skipped)
    first.errors.extend(second.errors)
    first.actions.extend(a for a in second.actions if a not in first.actions)
    first.pending_conflicts = second.pending_conflicts
    return first


def cmd_extract(
    stream: str,
    *,
    outdir: str = ".",
    options: ExtractionOptions,
    paths: Optional[List[str]] = None,
    encoding: str,
    quiet: bool = False,
) -> bool:
    """Extract files from a stream into ``outdir``.

    With ``--exists ask`` the first pass writes everything without a conflict,
    then asks about each existing file and runs a second pass over those.
    """
    data = _read_stream(stream)
    result = extract(data, outdir, options, paths=paths, encoding=encoding)
    if result.pending_conflicts:
        answers = _prompt_resolutions(result.pending_conflicts)
        resumed = extract(
            data,
            outdir,
            options,
            resolutions=answers,
            paths=[c.filename for c in result.pending_conflicts],
            encoding=encoding,
        )
        result = _merge(result, resumed)

    prefix = "would extract" if options.dry_run else "extracting"
    renamed = 0
    for a in result.actions:
        if a.action == "skip":
            if not quiet:
                reason = next((r for n, r in result.skipped if n == a.filename), "skipped")
                print(f"    skipping: {a.filename} ({reason})")
            continue
        if not quiet:
            print(f" {prefix}: {a.filename} ({_fmt_bytes(a.size)})")
        if a.action == "rename":
            renamed += 1
            print(f"       note: renamed to {a.path}")
    for e in result.errors:
        print(f"Error: {e.filename}: {e.message}", file=sys.stderr)
    print(
        f"Done: {'dry run, ' if options.dry_run else ''}extracted {result.files_extracted} files; "
        f"skipped={result.files_skipped} renamed={renamed} errors={len(result.errors)}"
    )
    return result.ok


def cmd_info(stream: str, *, encoding: str) -> bool:
    """Show stream information."""
    parsed = tokenize(_read_stream(stream), encoding=encoding)
    print(f"Stream: {stream}")
    if parsed.dialect is not None:
        print(f"  Markers: {parsed.dialect.kind} ({parsed.dialect.name})")
    else:
        print("  Markers: none detected")
    if parsed.frontmatter:
        for key, value in parsed.frontmatter.items():
            print(f"  {key}: {value}")
    print(f"  Marker lines: {parsed.total_markers}")
    print(f"  Files: {parsed.total_files}")
    print(f"  Bytes: {parsed.total_bytes}")
    if parsed.errors:
        print(f"  Parse errors: {len(parsed.errors)}")
    return True


def _setup_logging(verbose: int) -> None:
    level = logging.DEBUG if verbose > 1 else logging.INFO if verbose == 1 else config.log_level()
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="lookatni",
        description="Pack a directory into a marker stream and extract it again",
        epilog="Defaults may be set with LOOKATNI_* environment variables or a .env file.",
    )
    ap.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    ap.add_argument("--encoding", default=None, help="Text encoding of files and streams (default utf-8)")
    sub = ap.add_subparsers(dest="cmd", required=True)

    # generate
    ap_gen = sub.add_parser("generate", help="Pack a directory into a marker stream")
    ap_gen.add_argument("source", help="Source directory")
    ap_gen.add_argument("output", help="Output stream path")
    ap_gen.add_argument("--preset", choices=PRESET_CHOICES, default=None, help="Marker style (default: fs separator)")
    ap_gen.add_argument("--start", help="Custom marker start token (requires --end)")
    ap_gen.add_argument("--end", help="Custom marker end token (requires --start)")
    ap_gen.add_argument("--max-size", type=int, default=None, help="Skip files larger than this many bytes (-1: no limit)")
    ap_gen.add_argument("--exclude", action="append", default=None, help="Glob pattern to exclude (repeatable)")
    ap_gen.add_argument("--metadata", action="store_true", help="Emit size/modified/checksum lines after each marker")
    ap_gen.add_argument("--frontmatter", action="store_true", help="Declare custom markers in a frontmatter block")
    ap_gen.add_argument("--include-binary", action="store_true", help="Pack files that look binary")
    ap_gen.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List stream contents")
    ap_list.add_argument("stream", help="Stream path")

    ap_val = sub.add_parser("validate", help="Validate a stream")
    ap_val.add_argument("stream", help="Stream path")
    ap_val.add_argument("--strict", action="store_true", help="Also flag malformed marker-like lines")
    ap_val.add_argument("--json", action="store_true", help="Emit a JSON report")

    # extract
    ap_ext = sub.add_parser("extract", help="Extract files from a stream")
    ap_ext.add_argument("stream", help="Stream path")
    ap_ext.add_argument("paths", nargs="*", help="Specific stream paths to extract (files or directories)")
    ap_ext.add_argument("--outdir", default=".", help="Output directory")
    ap_ext.add_argument(
        "--exists",
        choices=list(CONFLICT_POLICIES),
        default=None,
        help=(
            "What to do if a destination file exists: skip (leave it), overwrite (replace), "
            "rename (append ' (n)' before extension), or ask (prompt per file). Default: skip"
        ),
    )
    ap_ext.add_argument("--dry-run", action="store_true", help="Report what would be written; touch nothing")
    ap_ext.add_argument("--path-policy", choices=list(PATH_POLICIES), default=PATH_REJECT, help="Handling of paths that escape the output directory")
    ap_ext.add_argument("--verify-checksums", action="store_true", help="Check checksum/size metadata before writing")
    ap_ext.add_argument("--preserve-timestamps", action="store_true", help="Restore modification times from metadata")
    ap_ext.add_argument("--no-mkdir", action="store_true", help="Do not create missing directories")
    ap_ext.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_info = sub.add_parser("info", help="Show stream information")
    ap_info.add_argument("stream", help="Stream path")

    args = ap.parse_args(argv)
    try:
        _setup_logging(args.verbose)
        encoding = args.encoding or config.encoding()
        if args.cmd == "generate":
            opts = GenerationOptions(
                max_file_size=args.max_size if args.max_size is not None else config.max_file_size(),
                exclude_patterns=args.exclude if args.exclude is not None else config.exclude_patterns(),
                include_metadata=args.metadata,
                include_frontmatter=args.frontmatter,
                include_binary_files=args.include_binary,
                marker_preset=args.preset or config.marker_preset(),
                marker_start=args.start,
                marker_end=args.end,
                encoding=encoding,
            )
            ok = cmd_generate(args.source, args.output, options=opts, quiet=args.quiet)
        elif args.cmd == "list":
            ok = cmd_list(args.stream, encoding=encoding)
        elif args.cmd == "validate":
            ok = cmd_validate(args.stream, strict=args.strict, as_json=args.json, encoding=encoding)
        elif args.cmd == "extract":
            opts = ExtractionOptions(
                create_directories=not args.no_mkdir,
                dry_run=args.dry_run,
                conflict_resolution=args.exists or config.conflict_resolution(),
                validate_checksums=args.verify_checksums,
                preserve_timestamps=args.preserve_timestamps,
                path_policy=args.path_policy,
            )
            ok = cmd_extract(
                args.stream,
                outdir=args.outdir,
                options=opts,
                paths=args.paths,
                encoding=encoding,
                quiet=args.quiet,
            )
        elif args.cmd == "info":
            ok = cmd_info(args.stream, encoding=encoding)
        else:
            raise RuntimeError("Unknown command")
    except (LookatniError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
