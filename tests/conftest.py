import pytest

from payload_guard.app.config import SanitizationProfile
from payload_guard.engines.sanitizer_engine import SanitizerEngine


@pytest.fixture
def bold_italic_profile():
    """Profile allowing only <b> and <i>, with a short string limit."""
    return SanitizationProfile(
        allowed_tags={"b", "i"},
        allowed_attributes={"a": {"href"}},
        max_string_length=50,
    )


@pytest.fixture
def engine(bold_italic_profile):
    return SanitizerEngine(bold_italic_profile)


@pytest.fixture
def make_engine():
    """Build an engine from profile keyword arguments."""
    def _make(sensitive_fields=None, max_depth=None, **profile_fields):
        return SanitizerEngine(
            SanitizationProfile(**profile_fields),
            sensitive_fields=sensitive_fields,
            max_depth=max_depth,
        )
    return _make
