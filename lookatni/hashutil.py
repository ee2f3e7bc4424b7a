from __future__ import annotations

import hashlib

CHECKSUM_ALGO = "sha256"


def content_checksum(data: bytes) -> str:
    """Return a self-describing checksum string, e.g. 'sha256:ab12...'."""
    return f"{CHECKSUM_ALGO}:{hashlib.sha256(data).hexdigest()}"


def checksum_matches(data: bytes, expected: str) -> bool:
    algo, sep, digest = expected.partition(":")
    if not sep:
        # Bare hex digests are taken as sha256
        algo, digest = CHECKSUM_ALGO, expected
    try:
        h = hashlib.new(algo.strip().lower(), data)
    except ValueError:
        return False
    return h.hexdigest() == digest.strip().lower()
