from __future__ import annotations


def to_forward_slashes(p: str) -> str:
    return p.replace("\\", "/")


def is_traversal(p: str) -> bool:
    """Return True when a stream path could escape the extraction root.

    The check is textual: absolute paths and any '..' segment are flagged.
    """
    p = to_forward_slashes(p)
    if p.startswith("/"):
        return True
    return "../" in p or p == ".." or p.endswith("/..")


def norm_path(p: str) -> str:
    """Normalize stream paths to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = to_forward_slashes(p).strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return "/".join(parts)


def sanitize_path(p: str) -> str:
    """Like norm_path, but drops '..' segments instead of rejecting them."""
    p = to_forward_slashes(p).strip("/")
    return "/".join(q for q in p.split("/") if q not in ("", ".", ".."))
