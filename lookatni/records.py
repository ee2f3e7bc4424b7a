from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .dialect import MarkerDialect


@dataclass(frozen=True)
class ParseIssue:
    line: int
    message: str


@dataclass
class FileRecord:
    filename: str  # forward-slash relative path, never empty
    content: bytes
    start_line: int  # 1-based line of the marker
    end_line: int  # 1-based, inclusive
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def byte_length(self) -> int:
        return len(self.content)


@dataclass
class ParseResult:
    total_markers: int = 0
    errors: List[ParseIssue] = field(default_factory=list)
    markers: List[FileRecord] = field(default_factory=list)
    dialect: Optional[MarkerDialect] = None
    frontmatter: Dict[str, str] = field(default_factory=dict)

    @property
    def total_files(self) -> int:
        return len(self.markers)

    @property
    def total_bytes(self) -> int:
        return sum(m.byte_length for m in self.markers)

    def filenames(self) -> List[str]:
        return [m.filename for m in self.markers]
