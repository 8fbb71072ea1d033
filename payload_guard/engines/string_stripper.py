"""Shallow character stripping for flat request bodies.

A lightweight alternative to the markup filter: only the top-level string
fields of a mapping are rewritten, and by default the rewrite simply removes
the characters that matter for HTML embedding.
"""

import re
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, Optional

from payload_guard.engines.errors import FilterFailure
from payload_guard.engines.sensitive_fields import build_sensitive_fields

_UNSAFE_CHARACTERS = re.compile(r"[<>\"'&]")

def strip_unsafe_characters(value: str) -> str:
    """Removes `< > " ' &` and surrounding whitespace."""
    return _UNSAFE_CHARACTERS.sub("", value).strip()

def sanitize_strings(
    data: Mapping,
    custom_sensitive_fields: Optional[Iterable[str]] = None,
    custom_sanitizer: Optional[Callable[[str], str]] = None,
    skip_empty_strings: bool = False,
) -> Dict[str, Any]:
    """Rewrites the top-level string values of `data`.

    Args:
        data (Mapping): A flat request body. Nested values are left as they are.
        custom_sensitive_fields (Iterable[str], optional): Extra field names to
            leave untouched.
        custom_sanitizer (Callable[[str], str], optional): Replaces
            `strip_unsafe_characters` as the rewrite function.
        skip_empty_strings (bool): Leave blank strings as they are.

    Returns:
        dict: A new mapping; `data` itself is not modified.

    Raises:
        FilterFailure: If the rewrite function raises for a field.
    """
    sensitive = build_sensitive_fields(custom_sensitive_fields)
    rewrite = custom_sanitizer or strip_unsafe_characters

    cleaned = dict(data)
    for key, value in cleaned.items():
        if not isinstance(value, str) or key in sensitive:
            continue
        if skip_empty_strings and not value.strip():
            continue
        try:
            cleaned[key] = rewrite(value)
        except Exception as e:
            raise FilterFailure(f"Failed to sanitize string in field '{key}': {e}", field=str(key)) from e
    return cleaned
