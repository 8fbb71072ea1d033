"""Recursive Payload Sanitization Engine.

This module walks arbitrarily nested, JSON-like request payloads and filters
every string leaf through the `MarkupFilter` of a sanitization profile. Values
stored under a sensitive field name (passwords, tokens, keys) are returned
untouched, whatever their type or nesting depth.

Each call produces a `SanitizationResult` describing what changed:
truncations are reported as warnings, filtered strings as modified fields.
A filter failure aborts the whole call with a `FilterFailure`; no partially
sanitized payload is ever returned.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel

from payload_guard.app.config import SanitizationProfile, settings
from payload_guard.app.policy import ProfileSpec, registry
from payload_guard.engines.errors import FilterFailure, ResourceExhaustion, SanitizationError
from payload_guard.engines.markup_filter import MarkupFilter
from payload_guard.engines.sensitive_fields import build_sensitive_fields

logger = logging.getLogger("payload_guard.engine")

class SanitizationResult(BaseModel):
    """Outcome of a single top-level sanitization call.

    Attributes:
        data (Any): The sanitized value, same shape as the input.
        sanitized (bool): True if any string was truncated or filtered.
        warnings (List[str]): Non-fatal notes, e.g. truncations.
        errors (Optional[List[str]]): Always None on success; failures raise.
        fields_modified (List[str]): Paths of strings the filter changed.
        original_size (Optional[int]): Compact JSON length of the input.
        final_size (Optional[int]): Compact JSON length of the output.
    """
    data: Any = None
    sanitized: bool = False
    warnings: List[str] = []
    errors: Optional[List[str]] = None
    fields_modified: List[str] = []
    original_size: Optional[int] = None
    final_size: Optional[int] = None

class _Accumulator:
    """Per-call metadata threaded through the traversal."""

    __slots__ = ("sanitized", "warnings", "errors", "fields_modified")

    def __init__(self):
        self.sanitized = False
        self.warnings: List[str] = []
        self.errors: List[str] = []
        self.fields_modified: List[str] = []

def _measure(value: Any) -> Optional[int]:
    try:
        return len(json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str))
    except (TypeError, ValueError, RecursionError):
        return None

def _join(path: Optional[str], key: Any) -> str:
    return f"{path}.{key}" if path else str(key)

class SanitizerEngine:
    """Applies one profile to nested payloads.

    The engine holds only read-only configuration, so a single instance can be
    shared between threads; every call builds its own accumulator.
    """

    def __init__(
        self,
        profile: SanitizationProfile,
        sensitive_fields: Optional[Iterable[str]] = None,
        max_depth: Optional[int] = None,
    ):
        """Initializes the engine.

        Args:
            profile (SanitizationProfile): The policy to apply.
            sensitive_fields (Iterable[str], optional): Field names protected in
                addition to the built-in list, `settings.EXTRA_SENSITIVE_FIELDS`
                and the profile file's `sensitive_fields`.
            max_depth (int, optional): Deepest container nesting to walk.
                Defaults to `settings.MAX_STRUCTURE_DEPTH`.
        """
        self.profile = profile
        self.sensitive_fields = build_sensitive_fields(
            settings.EXTRA_SENSITIVE_FIELDS,
            registry.sensitive_fields,
            sensitive_fields,
        )
        self.max_depth = settings.MAX_STRUCTURE_DEPTH if max_depth is None else max_depth
        self.markup_filter = MarkupFilter(profile)

    def sanitize(self, value: Any) -> SanitizationResult:
        """Sanitizes `value` and reports what changed.

        Args:
            value (Any): A JSON-like value (mapping, list, scalar or None).

        Returns:
            SanitizationResult: The transformed value and its metadata.

        Raises:
            FilterFailure: If the markup filter fails on any string.
            ResourceExhaustion: If the input nests deeper than `max_depth`.
            SanitizationError: For any other unexpected failure.
        """
        acc = _Accumulator()
        original_size = _measure(value)

        try:
            data = self._sanitize_value(value, None, None, 0, acc)
        except SanitizationError:
            raise
        except RecursionError as e:
            message = "Input nesting exceeds the interpreter recursion limit"
            logger.warning(message)
            acc.errors.append(message)
            raise ResourceExhaustion(message, errors=acc.errors) from e
        except Exception as e:
            message = f"Sanitization failed: {e}"
            logger.error(message)
            acc.errors.append(message)
            raise SanitizationError(message, errors=acc.errors) from e

        return SanitizationResult(
            data=data,
            sanitized=acc.sanitized,
            warnings=acc.warnings,
            errors=acc.errors or None,
            fields_modified=acc.fields_modified,
            original_size=original_size,
            final_size=_measure(data),
        )

    def _sanitize_value(self, value: Any, key: Any, path: Optional[str], depth: int, acc: _Accumulator) -> Any:
        if value is None:
            return value

        if key is not None and key in self.sensitive_fields:
            logger.debug(f"Skipping sanitization for sensitive field: {path}")
            return value

        if isinstance(value, str):
            return self._sanitize_string(value, path, acc)

        if isinstance(value, Mapping):
            self._check_depth(depth, path, acc)
            return {
                k: self._sanitize_value(v, k, _join(path, k), depth + 1, acc)
                for k, v in value.items()
            }

        if isinstance(value, (list, tuple)):
            self._check_depth(depth, path, acc)
            items = [
                self._sanitize_value(item, None, f"{path or ''}[{index}]", depth + 1, acc)
                for index, item in enumerate(value)
            ]
            return tuple(items) if isinstance(value, tuple) else items

        # Numbers, booleans and anything else pass through.
        return value

    def _check_depth(self, depth: int, path: Optional[str], acc: _Accumulator):
        if depth >= self.max_depth:
            message = f"Input nesting at '{path or 'root'}' exceeds the maximum depth of {self.max_depth}"
            logger.warning(message)
            acc.errors.append(message)
            raise ResourceExhaustion(message, field=path, errors=acc.errors)

    def _sanitize_string(self, text: str, path: Optional[str], acc: _Accumulator) -> str:
        label = path or "unknown"
        limit = self.profile.max_string_length
        original_length = len(text)

        if original_length > limit:
            acc.warnings.append(
                f"String in field '{label}' truncated from {original_length} to {limit} characters"
            )
            text = text[:limit]
            acc.sanitized = True

        try:
            cleaned = self.markup_filter.clean(text)
        except Exception as e:
            message = f"Failed to sanitize string in field '{label}': {e}"
            acc.errors.append(message)
            logger.error(message)
            raise FilterFailure(message, field=path, errors=acc.errors) from e

        if cleaned != text:
            acc.sanitized = True
            if path:
                acc.fields_modified.append(path)

        return cleaned

def sanitize_request_data(
    data: Any,
    profile: ProfileSpec,
    sensitive_fields: Optional[Iterable[str]] = None,
) -> SanitizationResult:
    """Sanitizes a request payload with a named, inline or prebuilt profile.

    Raises:
        ConfigurationError: If `profile` cannot be resolved. Nothing is
            traversed in that case.
    """
    engine = SanitizerEngine(registry.resolve(profile), sensitive_fields=sensitive_fields)
    return engine.sanitize(data)

def sanitize_string(text: str, profile: ProfileSpec) -> SanitizationResult:
    """Sanitizes a single string."""
    return SanitizerEngine(registry.resolve(profile)).sanitize(text)
