"""
LookAtni: pack a directory of text files into one marker stream and back.

Features:

- Low-visibility marker lines (``//\\x1c/ path /\\x1c//``) by default, plus visible
  html/markdown/code presets and custom start/end tokens declared in frontmatter.
- Dialect autodetection over the first lines of a stream; exact, never fuzzy.
- Extraction writes captured content bytes as-is, without re-encoding.
- Validation reports with stable diagnostic codes and per-stream statistics.
- Extraction with skip/overwrite/rename/ask conflict handling, dry runs,
  path traversal policies and optional checksum verification.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "dialect",
    "tokenizer",
    "validator",
    "scanner",
    "generator",
    "extractor",
]

from lookatni.dialect import MarkerDialect, detect_dialect, resolve_dialect
from lookatni.errors import DestinationNotFound, DialectError, LookatniError, SourceNotFound
from lookatni.extractor import ExtractionOptions, ExtractionResult, extract, extract_file, list_files
from lookatni.generator import GenerationOptions, GenerationResult, generate, generate_from_directory, generate_to_file
from lookatni.records import FileRecord, ParseResult
from lookatni.tokenizer import tokenize
from lookatni.validator import ValidationReport, validate
