from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Union

from .constants import DEFAULT_ENCODING, META_ESCAPE, META_PREFIX
from .dialect import MarkerDialect, detect_dialect, split_frontmatter
from .pathutil import to_forward_slashes
from .records import FileRecord, ParseIssue, ParseResult

_log = logging.getLogger(__name__)

Stream = Union[str, bytes]


def decode_stream(stream: Stream, encoding: str = DEFAULT_ENCODING) -> str:
    # surrogateescape keeps undecodable bytes so content round-trips exactly
    if isinstance(stream, (bytes, bytearray, memoryview)):
        return bytes(stream).decode(encoding, errors="surrogateescape")
    return stream


def parse_metadata_line(line: str) -> Optional[tuple]:
    """Parse ``#@lookatni key: value`` into ``(key, value)``.

    Values are JSON when they parse as JSON, plain strings otherwise.
    """
    if not line.startswith(META_PREFIX):
        return None
    key, sep, raw = line[len(META_PREFIX):].partition(":")
    key = key.strip()
    if not sep or not key:
        return None
    raw = raw.strip()
    try:
        value: Any = json.loads(raw)
    except ValueError:
        value = raw
    return key, value


class _OpenRecord:
    def __init__(self, filename: str, start_line: int):
        self.filename = filename
        self.start_line = start_line
        self.lines: List[str] = []
        self.metadata: Dict[str, Any] = {}
        self._in_header = True

    def add(self, line: str) -> None:
        if self._in_header:
            kv = parse_metadata_line(line)
            if kv is not None:
                self.metadata[kv[0]] = kv[1]
                return
            self._in_header = False
            if line.startswith(META_ESCAPE):
                line = line[len(META_ESCAPE):]
        self.lines.append(line)

    def close(self, end_line: int, *, at_eof: bool, encoding: str) -> FileRecord:
        text = "\n".join(self.lines)
        # Between markers the newline ending the block is the one trimmed;
        # at end of stream it is still part of the joined text.
        if at_eof and text.endswith("\n"):
            text = text[:-1]
        return FileRecord(
            filename=self.filename,
            content=text.encode(encoding, errors="surrogateescape"),
            start_line=self.start_line,
            end_line=max(end_line, self.start_line),
            metadata=self.metadata,
        )


def tokenize(
    stream: Stream,
    dialect: Optional[MarkerDialect] = None,
    *,
    encoding: str = DEFAULT_ENCODING,
    logger: Optional[logging.Logger] = None,
) -> ParseResult:
    """Split a marker stream into file records.

    Args:
        stream: Stream text, or bytes decoded with ``encoding``.
        dialect: Dialect to use; autodetected (frontmatter first) when None.
        encoding: Text encoding of the stream and of the record contents.
        logger: Logger for diagnostics; defaults to this module's logger.

    Returns:
        A fresh ParseResult. Malformed markers are reported in ``errors``;
        nothing is raised for structural problems.
    """
    log = logger or _log
    text = decode_stream(stream, encoding)
    lines = text.split("\n")
    result = ParseResult()

    frontmatter, problem = split_frontmatter(lines)
    body_start = 0
    if problem:
        result.errors.append(ParseIssue(line=1, message=problem))
        log.warning("line 1: %s", problem)
    if frontmatter is not None:
        body_start = frontmatter.body_start
        result.frontmatter = dict(frontmatter.values)

    if dialect is None:
        if frontmatter is not None and frontmatter.dialect is not None:
            dialect = frontmatter.dialect
        else:
            dialect = detect_dialect(lines[body_start:])
    if dialect is None:
        log.debug("No markers found")
        return result
    result.dialect = dialect

    last_line = len(lines) - 1 if len(lines) > 1 and lines[-1] == "" else len(lines)
    current: Optional[_OpenRecord] = None
    for idx in range(body_start, len(lines)):
        line = lines[idx]
        lineno = idx + 1
        raw = dialect.match(line)
        if raw is None:
            if current is not None:
                current.add(line)
            continue
        result.total_markers += 1
        if current is not None:
            result.markers.append(current.close(lineno - 1, at_eof=False, encoding=encoding))
            current = None
        name = to_forward_slashes(raw.strip())
        if not name:
            result.errors.append(ParseIssue(line=lineno, message="Empty filename in marker"))
            log.warning("line %d: empty filename in marker", lineno)
            continue
        current = _OpenRecord(name, lineno)

    if current is not None:
        result.markers.append(current.close(last_line, at_eof=True, encoding=encoding))

    log.debug(
        "Parsed %d marker(s), %d file(s), %d byte(s) using %s dialect",
        result.total_markers,
        result.total_files,
        result.total_bytes,
        dialect.name,
    )
    return result
