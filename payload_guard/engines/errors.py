"""Structured errors raised by the sanitization core.

Every error carries a `kind` tag and, where it applies, the diagnostic field
path of the value that could not be processed. The HTTP layer decides how
each kind maps onto a status code.
"""

from typing import Any, Dict, List, Optional

class SanitizationError(Exception):
    """Base exception for all sanitization failures.

    Attributes:
        field (str): Field path of the offending value, if known.
        errors (List[str]): Error messages accumulated before the call aborted.
    """
    kind = "sanitization_error"

    def __init__(self, message: str, field: Optional[str] = None, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.errors = list(errors) if errors else [message]

    def to_dict(self) -> Dict[str, Any]:
        """Serializes the error for API responses and log records."""
        return {
            "kind": self.kind,
            "message": self.message,
            "field": self.field,
            "errors": self.errors,
        }

class ConfigurationError(SanitizationError):
    """Raised for an unknown profile name or an invalid profile configuration."""
    kind = "configuration_error"

class FilterFailure(SanitizationError):
    """Raised when the markup filter cannot process a string."""
    kind = "filter_failure"

class ResourceExhaustion(SanitizationError):
    """Raised when the input is nested deeper than the engine will walk."""
    kind = "resource_exhaustion"
