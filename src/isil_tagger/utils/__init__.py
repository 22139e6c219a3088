"""Shared utility functions for the ISIL tagger."""

from isil_tagger.utils.hash import sha1_text
from isil_tagger.utils.io import iter_lines, open_text
from isil_tagger.utils.logging import log_event
from isil_tagger.utils.paths import default_cache_dir, ensure_dir
from isil_tagger.utils.text import as_string_list, leading_int, safe_text

__all__ = [
    "ensure_dir",
    "default_cache_dir",
    "sha1_text",
    "safe_text",
    "as_string_list",
    "leading_int",
    "open_text",
    "iter_lines",
    "log_event",
]
