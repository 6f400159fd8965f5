"""Request text sanitization applied to free-text CRUD fields."""

import re

_MARKUP_PATTERNS = [
    re.compile(r"[<>]"),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
]
_QUOTE_PATTERN = re.compile(r"['\";]")


def sanitize_input(value, strip_quotes: bool = True):
    """
    Strip markup and script vectors from a string.

    Non-string values are returned unchanged.
    """
    if not isinstance(value, str):
        return value
    cleaned = value
    for pattern in _MARKUP_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    if strip_quotes:
        cleaned = _QUOTE_PATTERN.sub("", cleaned)
    return cleaned.strip()


def sanitize_object(value, strip_quotes: bool = True):
    if isinstance(value, dict):
        return {key: sanitize_object(item, strip_quotes) for key, item in value.items()}
    if isinstance(value, list):
        return [sanitize_object(item, strip_quotes) for item in value]
    return sanitize_input(value, strip_quotes)
