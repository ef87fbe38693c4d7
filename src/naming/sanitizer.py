"""
Filesystem-safe token generation for owner, vendor, category and tag names.
"""

from __future__ import annotations

import re

UNKNOWN_TOKEN = "unknown"
MAX_TOKEN_LENGTH = 50

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9\-_]")
_HYPHEN_RUNS = re.compile(r"-+")


def sanitize(value: object) -> str:
    """Turn an arbitrary value into a lowercase token safe for paths and filenames."""
    if value is None:
        return UNKNOWN_TOKEN
    text = str(value)
    if not text.strip():
        return UNKNOWN_TOKEN
    token = text.lower().strip()
    token = _WHITESPACE.sub("-", token)
    token = _DISALLOWED.sub("", token)
    token = _HYPHEN_RUNS.sub("-", token)
    token = token.strip("-")
    token = token[:MAX_TOKEN_LENGTH]
    return token or UNKNOWN_TOKEN
