"""
Filename pattern parsing, validation and rendering.

A pattern is literal text mixed with ``{token}`` placeholders drawn from a
closed vocabulary (see ``Token``). The extension is never part of a pattern:
it always comes from the stored file itself and is appended by the resolver
together with the ``[recordId-index]`` collision suffix.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Optional

from .sanitizer import UNKNOWN_TOKEN, sanitize


class Token(str, Enum):
    """Placeholders accepted inside a naming pattern."""

    DATE = "date"
    OWNER = "owner"
    VENDOR = "vendor"
    AMOUNT = "amount"
    CATEGORY = "category"
    INDEX = "index"
    TAGS = "tags"


DEFAULT_PATTERN = "{date}_{owner}_{vendor}_{amount}_{category}_{index}"
MAX_PATTERN_LENGTH = 200
INVALID_CHARACTERS = '<>:"/\\|?*'
RESERVED_NAMES = (
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{number}" for number in range(1, 10)]
    + [f"LPT{number}" for number in range(1, 10)]
)

_TOKEN_PATTERN = re.compile(r"\{([^{}]*)\}")
_DATE_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T ].*)?$")
_HYPHEN_RUNS = re.compile(r"-+")
_UNDERSCORE_RUNS = re.compile(r"_+")
_CENTS = Decimal("0.01")


class PatternValidationError(ValueError):
    """Raised when a naming pattern is rejected."""


@dataclass(frozen=True)
class Segment:
    """One piece of a parsed pattern: literal text or a token."""

    literal: str = ""
    token: Optional[Token] = None


def _valid_token_list() -> str:
    return ", ".join(f"{{{token.value}}}" for token in Token)


def validate_pattern(pattern: str) -> None:
    """Raise PatternValidationError with a user-facing message if the pattern is unusable."""
    if pattern is None or not str(pattern).strip():
        raise PatternValidationError("Pattern cannot be empty")
    if any(char in pattern for char in INVALID_CHARACTERS):
        raise PatternValidationError(
            'Pattern contains invalid filesystem characters: < > : " / \\ | ? *'
        )
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise PatternValidationError(f"Pattern is too long (max {MAX_PATTERN_LENGTH} characters)")
    if pattern.strip() != pattern:
        raise PatternValidationError("Pattern cannot have leading or trailing spaces")
    if pattern.startswith(".") or pattern.endswith("."):
        raise PatternValidationError("Pattern cannot start or end with a dot")
    if "{ext}" in pattern:
        raise PatternValidationError(
            "Pattern cannot contain {ext} token. File extension is automatically appended."
        )
    parse_pattern(pattern)
    upper_pattern = pattern.upper()
    for reserved in RESERVED_NAMES:
        if reserved in upper_pattern:
            raise PatternValidationError(f"Pattern contains reserved name: {reserved}")


def is_valid_pattern(pattern: str) -> bool:
    try:
        validate_pattern(pattern)
    except PatternValidationError:
        return False
    return True


def parse_pattern(pattern: str) -> list[Segment]:
    """Split a pattern into literal and token segments."""
    segments: list[Segment] = []
    position = 0
    for match in _TOKEN_PATTERN.finditer(pattern):
        if match.start() > position:
            segments.append(Segment(literal=pattern[position : match.start()]))
        name = match.group(1)
        try:
            token = Token(name)
        except ValueError:
            raise PatternValidationError(
                f"Unknown token: {{{name}}}. Valid tokens are: {_valid_token_list()}"
            ) from None
        segments.append(Segment(token=token))
        position = match.end()
    if position < len(pattern):
        segments.append(Segment(literal=pattern[position:]))
    return segments


def parse_date_value(value: Any) -> Optional[date]:
    """Parse a date, datetime or `YYYY-MM-DD[T| ]...` string; None when unusable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    match = _DATE_PREFIX.match(str(value or "").strip())
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def format_date(value: Any) -> str:
    """Return YYYY-MM-DD for a record date; unusable dates render as today."""
    parsed = parse_date_value(value)
    return (parsed or date.today()).isoformat()


def format_amount(value: Any) -> str:
    """Format an amount with two decimals (half-even) and a dash as separator."""
    try:
        amount = Decimal(str(value)) if value is not None else Decimal(0)
    except InvalidOperation:
        amount = Decimal(0)
    if not amount.is_finite():
        amount = Decimal(0)
    quantized = amount.quantize(_CENTS, rounding=ROUND_HALF_EVEN)
    return f"{quantized:.2f}".replace(".", "-")


def format_tags(tags: Optional[Iterable[Any]]) -> str:
    """Join sanitized tag names with dashes, dropping names that sanitize to nothing."""
    if not tags:
        return ""
    names = []
    for tag in tags:
        name = sanitize(getattr(tag, "name", tag))
        if name and name != UNKNOWN_TOKEN:
            names.append(name)
    return "-".join(names)


def _render_token(
    token: Token,
    record: Any,
    index: int,
    tags: Optional[Iterable[Any]],
    record_date: Optional[date],
) -> str:
    if token is Token.DATE:
        return format_date(record_date if record_date is not None else record.date)
    if token is Token.OWNER:
        return sanitize(record.owner)
    if token is Token.VENDOR:
        return sanitize(record.vendor)
    if token is Token.AMOUNT:
        return format_amount(record.amount)
    if token is Token.CATEGORY:
        return sanitize(record.category)
    if token is Token.INDEX:
        return str(int(index))
    if token is Token.TAGS:
        return format_tags(tags if tags is not None else getattr(record, "tags", ()))
    raise PatternValidationError(f"Unsupported token: {token!r}")


def render(
    pattern: str,
    record: Any,
    index: int,
    tags: Optional[Iterable[Any]] = None,
    record_date: Optional[date] = None,
) -> str:
    """Render a pattern for a record, without collision suffix or extension.

    `record_date` overrides `record.date` so callers can render the same date
    their directory was derived from.
    """
    parts = []
    for segment in parse_pattern(pattern):
        if segment.token is None:
            parts.append(segment.literal)
        else:
            parts.append(_render_token(segment.token, record, index, tags, record_date))
    rendered = "".join(parts)
    rendered = _HYPHEN_RUNS.sub("-", rendered)
    rendered = _UNDERSCORE_RUNS.sub("_", rendered)
    return rendered.strip("-_")
