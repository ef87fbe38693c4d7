"""
Naming helpers: token sanitizing, filename patterns and path resolution.
"""

from .resolver import PathResolver, RecordLookup, collision_suffix, file_extension, normalize_extension
from .sanitizer import UNKNOWN_TOKEN, sanitize
from .template import (
    DEFAULT_PATTERN,
    PatternValidationError,
    Token,
    format_amount,
    format_date,
    parse_date_value,
    is_valid_pattern,
    parse_pattern,
    render,
    validate_pattern,
)

__all__ = [
    "PathResolver",
    "RecordLookup",
    "collision_suffix",
    "file_extension",
    "normalize_extension",
    "UNKNOWN_TOKEN",
    "sanitize",
    "DEFAULT_PATTERN",
    "PatternValidationError",
    "Token",
    "format_amount",
    "format_date",
    "parse_date_value",
    "is_valid_pattern",
    "parse_pattern",
    "render",
    "validate_pattern",
]
