from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .constants import (
    BINARY_PROBE_BYTES,
    SKIP_BINARY,
    SKIP_SIZE_LIMIT,
    SKIP_UNREADABLE,
)
from .errors import SourceNotFound
from .pathutil import to_forward_slashes

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileInfo:
    size: int
    mtime: float  # seconds since epoch


@dataclass(frozen=True)
class ScanFile:
    path: str  # full path
    relpath: str  # forward-slash path relative to the scan root
    size_bytes: int
    mtime: float


@dataclass(frozen=True)
class SkippedFile:
    relpath: str
    reason: str  # size_limit_exceeded | binary | unreadable
    detail: str = ""


def matches_pattern(relpath: str, pattern: str) -> bool:
    """Glob match where '*' also crosses directory separators (case-insensitive)."""
    relpath = to_forward_slashes(relpath).lower()
    pattern = to_forward_slashes(pattern).lower()
    return fnmatch(relpath, pattern) or fnmatch(relpath + "/", pattern)


class FileScanner:
    """Directory traversal and filtering used by the generator."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _log

    def _excluded(self, relpath: str, patterns: Sequence[str]) -> bool:
        return any(matches_pattern(relpath, p) for p in patterns)

    def list_files(self, root: str, exclude_patterns: Sequence[str] = ()) -> List[str]:
        """Return forward-slash relative paths of regular files under ``root``, sorted."""
        root_path = Path(root)
        if not root_path.is_dir():
            raise SourceNotFound(f"Source directory does not exist: {root}")
        found: List[str] = []
        for dirpath, dirnames, filenames in os.walk(root_path):
            rel_dir = os.path.relpath(dirpath, root_path)
            rel_dir = "" if rel_dir == "." else to_forward_slashes(rel_dir) + "/"

            # Prune in place so os.walk doesn't descend into excluded dirs
            kept = []
            for d in sorted(dirnames):
                if self._excluded(rel_dir + d, exclude_patterns):
                    self.logger.debug("Excluding directory: %s%s", rel_dir, d)
                    continue
                kept.append(d)
            dirnames[:] = kept

            for fn in sorted(filenames):
                rel = rel_dir + fn
                if self._excluded(rel, exclude_patterns):
                    self.logger.debug("Excluding: %s", rel)
                    continue
                if not os.path.isfile(os.path.join(dirpath, fn)):
                    continue
                found.append(rel)
        return sorted(found)

    def is_binary(self, path: str) -> bool:
        """A NUL byte in the first kilobyte marks a file as binary; unreadable files count as binary."""
        try:
            with open(path, "rb") as fh:
                head = fh.read(BINARY_PROBE_BYTES)
        except OSError:
            return True
        return b"\x00" in head

    def file_info(self, path: str) -> FileInfo:
        st = os.stat(path)
        return FileInfo(size=int(st.st_size), mtime=float(st.st_mtime))

    def scan(
        self,
        root: str,
        exclude_patterns: Sequence[str] = (),
        max_file_size: int = -1,
        include_binary: bool = False,
    ) -> Tuple[List[ScanFile], List[SkippedFile]]:
        """List, then filter by size ceiling and binary content.

        Returns:
            (files, skipped) where skipped entries carry the exclusion reason.
        """
        files: List[ScanFile] = []
        skipped: List[SkippedFile] = []
        rels = self.list_files(root, exclude_patterns)
        self.logger.info("Found %d file(s) under %s", len(rels), root)
        for rel in rels:
            full = os.path.join(root, *rel.split("/"))
            try:
                info = self.file_info(full)
            except OSError as exc:
                skipped.append(SkippedFile(rel, SKIP_UNREADABLE, str(exc)))
                self.logger.warning("Cannot access %s: %s", rel, exc)
                continue
            if max_file_size != -1 and info.size > max_file_size:
                skipped.append(
                    SkippedFile(rel, SKIP_SIZE_LIMIT, f"{info.size} bytes > {max_file_size} bytes")
                )
                continue
            if not include_binary and self.is_binary(full):
                skipped.append(SkippedFile(rel, SKIP_BINARY))
                continue
            files.append(ScanFile(path=full, relpath=rel, size_bytes=info.size, mtime=info.mtime))
        return files, skipped
