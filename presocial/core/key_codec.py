"""
Cache key derivation for free-form search queries.

Queries that differ only by case or whitespace runs map to the same key, and
option mappings are serialised with a stable field order so that the same
logical search always hits the same cache entry.
"""
import json
import re
from typing import Any, Mapping, Optional

SEARCH_KEY_PREFIX = "search:"

_WHITESPACE_RE = re.compile(r"\s+")
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def normalize_query(query: str) -> str:
    """Lower-case, trim and collapse internal whitespace runs to one space."""
    return _WHITESPACE_RE.sub(" ", query.strip().lower())


def serialize_options(options: Optional[Mapping[str, Any]]) -> str:
    """
    Serialise search options deterministically.

    Keys are sorted and ``None`` values are dropped, so ``{"page": 1,
    "community": None}`` and ``{"page": 1}`` produce the same string.
    """
    if not options:
        return ""
    cleaned = {key: value for key, value in options.items() if value is not None}
    if not cleaned:
        return ""
    return json.dumps(cleaned, sort_keys=True, separators=(",", ":"), default=str)


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def hash_key(text: str) -> str:
    """
    32-bit rolling hash (``h * 31 + c``) of ``text`` rendered in base 36.

    The accumulator wraps as a signed 32-bit integer and the absolute value is
    encoded, which keeps keys short (at most 7 characters).
    """
    value = 0
    for char in text:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 0x100000000
    return _to_base36(abs(value))


def derive_search_key(query: str, options: Optional[Mapping[str, Any]] = None) -> str:
    """
    Derive the cache key for a search request.

    Args:
        query: Free-form search text.
        options: Additional search parameters (limit, page, sort, ...).

    Returns:
        str: Key of the form ``search:<base36 hash>``.
    """
    material = f"{normalize_query(query)}:{serialize_options(options)}"
    return f"{SEARCH_KEY_PREFIX}{hash_key(material)}"
