"""Field names whose values are never touched by sanitization."""

from typing import FrozenSet, Iterable, Optional

SENSITIVE_FIELDS: FrozenSet[str] = frozenset({
    "password",
    "confirmPassword",
    "passwordConfirm",
    "adminPassword",
    "token",
    "accessToken",
    "refreshToken",
    "apiKey",
    "secret",
    "privateKey",
    "jwt",
    "sessionId",
    "csrfToken",
    "authToken",
})

def build_sensitive_fields(*extras: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Returns the built-in sensitive names plus every non-empty extra set.

    Matching is exact and case-sensitive.
    """
    names = set(SENSITIVE_FIELDS)
    for extra in extras:
        if extra:
            names.update(extra)
    return frozenset(names)
