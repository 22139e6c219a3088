"""Redaction of credentials that end up in holdings links and index URLs.

Holdings files are often served from provider portals that authenticate via
query parameters (``?token=...``) or user info in the URL. Those links flow
into log lines and error contexts, so every formatter runs its output through
:func:`redact_string`.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

REDACTED = "<REDACTED>"

_SENSITIVE_KEY_NORMALIZED = {
    "authorization",
    "apikey",
    "key",
    "accesstoken",
    "token",
    "password",
}

_URL_USERINFO_RE = re.compile(r"(?i)\b([a-z][a-z0-9+.-]*://)([^/@\s:]+)(?::[^/@\s]*)?@")
_QUERY_SECRET_RE = re.compile(
    r"(?i)([?&](?:api[-_]?key|key|access[-_]?token|token|password)=)([^&#\s]+)"
)
_BEARER_RE = re.compile(r"(?i)Bearer\s+[^\s,\"']+")


def _normalize_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]", "", key.lower())


def is_sensitive_key(key: str) -> bool:
    return _normalize_key(key) in _SENSITIVE_KEY_NORMALIZED


def redact_string(value: str) -> str:
    if not value:
        return value
    redacted = _URL_USERINFO_RE.sub(rf"\1{REDACTED}@", value)
    redacted = _QUERY_SECRET_RE.sub(rf"\1{REDACTED}", redacted)
    return _BEARER_RE.sub(f"Bearer {REDACTED}", redacted)


def redact_structure(value: Any) -> Any:
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, Mapping):
        return {
            key: REDACTED if isinstance(key, str) and is_sensitive_key(key) else redact_structure(item)
            for key, item in value.items()
        }
    if isinstance(value, tuple):
        return tuple(redact_structure(item) for item in value)
    if isinstance(value, list):
        return [redact_structure(item) for item in value]
    return value
