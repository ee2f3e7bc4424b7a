from __future__ import annotations


# Low-visibility separators (ASCII information separators)
SEP_FS = "\x1c"  # File Separator, the classic default
SEP_GS = "\x1d"  # Group Separator
SEP_RS = "\x1e"  # Record Separator
SEP_US = "\x1f"  # Unit Separator

SEPARATORS = {
    "fs": SEP_FS,
    "gs": SEP_GS,
    "rs": SEP_RS,
    "us": SEP_US,
}

DEFAULT_SEPARATOR = SEP_FS
DEFAULT_PRESET = "default"

# Named presets with visible tokens; a marker line is "{start} {filename} {end}"
PRESET_TOKENS = {
    "html": ("<!-- FILE:", "-->"),
    "markdown": ("[//]: # (FILE:", ")"),
    "code": ("// === FILE:", "==="),
}

# Only this many leading lines are probed when autodetecting a dialect
DETECTION_WINDOW = 1000

# Frontmatter
FRONTMATTER_FENCE = "---"
FRONTMATTER_SECTION = "lookatni"
FRONTMATTER_VERSION = "2.0"
FILENAME_PLACEHOLDER = "{filename}"

# Per-file metadata lines emitted right after a marker line
META_PREFIX = "#@lookatni "
# Escape for a first content line that would otherwise read as metadata
META_ESCAPE = "#@lookatni! "

# Validation
FORBIDDEN_FILENAME_CHARS = '<>:"|?*'
RESERVED_DEVICE_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

# Extraction policies
CONFLICT_SKIP = "skip"
CONFLICT_OVERWRITE = "overwrite"
CONFLICT_RENAME = "rename"
CONFLICT_ASK = "ask"
CONFLICT_POLICIES = (CONFLICT_SKIP, CONFLICT_OVERWRITE, CONFLICT_RENAME, CONFLICT_ASK)

PATH_REJECT = "reject"
PATH_SANITIZE = "sanitize"
PATH_ALLOW = "allow"
PATH_POLICIES = (PATH_REJECT, PATH_SANITIZE, PATH_ALLOW)

# Scanner skip reasons
SKIP_SIZE_LIMIT = "size_limit_exceeded"
SKIP_BINARY = "binary"
SKIP_UNREADABLE = "unreadable"

BINARY_PROBE_BYTES = 1024

DEFAULT_MAX_FILE_SIZE = 1000 * 1024  # bytes; -1 disables the ceiling
DEFAULT_EXCLUDE_PATTERNS = ("node_modules/*", ".git/*", "dist/*", "build/*")
DEFAULT_ENCODING = "utf-8"

GENERATOR_NAME = "lookatni"
