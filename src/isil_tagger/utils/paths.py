from __future__ import annotations

import os
from pathlib import Path

CACHE_DIR_ENV = "ISIL_TAGGER_CACHE_DIR"
CACHE_DIR_NAME = "isil-tagger"


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_cache_dir() -> Path:
    """Resolve the holdings cache root.

    Order: ``$ISIL_TAGGER_CACHE_DIR``, ``$XDG_CACHE_HOME/isil-tagger``,
    ``~/.cache/isil-tagger``.
    """
    explicit = os.environ.get(CACHE_DIR_ENV)
    if explicit:
        return Path(explicit).expanduser()
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg).expanduser() / CACHE_DIR_NAME
    return Path.home() / ".cache" / CACHE_DIR_NAME
