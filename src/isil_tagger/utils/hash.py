from __future__ import annotations

import hashlib


def sha1_text(text: str) -> str:
    """Compute the SHA-1 hex digest of a string (used for cache file names)."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()
