"""HTML Markup Filter built on `bleach`.

This module wraps `bleach.clean` with the rules a sanitization profile adds on
top of a plain tag/attribute allow-list:

- Script and style elements that are not allowed lose their content, and with
  `strip_unknown_tag_body` every disallowed element does.
- Tags nested deeper than `max_tag_depth` are unwrapped (their text is kept).
- Allowed elements left empty are dropped unless `allow_empty_tags` is set.

Filtering its own output again returns that output unchanged.
"""

import re
from typing import Dict, List

import bleach

from payload_guard.app.config import SanitizationProfile

# Elements that never have a closing tag.
VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
})

# Elements whose content is dropped whenever the element itself is.
RAW_TEXT_ELEMENTS = ("script", "style")

_NAME = r"[A-Za-z][A-Za-z0-9:-]*"
_ATTRS = r"(?:\"[^\"]*\"|'[^']*'|[^'\">])*"

_TAG_RE = re.compile(r"<(/?)(%s)(%s)>" % (_NAME, _ATTRS))
_EMPTY_ELEMENT_RE = re.compile(
    r"<(%s)(?![A-Za-z0-9:-])%s>\s*</\1\s*>" % (_NAME, _ATTRS),
    re.IGNORECASE,
)

def _element_pattern(names: str) -> "re.Pattern[str]":
    """Matches a whole element (open tag, content, close tag) named by `names`."""
    return re.compile(
        r"<(%s)(?![A-Za-z0-9:-])%s>.*?</\1\s*>" % (names, _ATTRS),
        re.DOTALL | re.IGNORECASE,
    )

def _sub_until_stable(pattern: "re.Pattern[str]", text: str) -> str:
    while True:
        replaced = pattern.sub("", text)
        if replaced == text:
            return replaced
        text = replaced

class MarkupFilter:
    """A configured HTML cleaner enforcing one profile's allow-lists."""

    def __init__(self, profile: SanitizationProfile):
        """Precomputes the bleach arguments and patterns for `profile`.

        Args:
            profile (SanitizationProfile): The policy to enforce.
        """
        self.profile = profile
        self.allowed_tags = frozenset(profile.allowed_tags)
        self.allowed_attributes: Dict[str, List[str]] = {
            tag: sorted(attrs) for tag, attrs in profile.allowed_attributes.items()
        }

        self._body_patterns = []
        raw_text = [name for name in RAW_TEXT_ELEMENTS if name not in self.allowed_tags]
        if raw_text:
            self._body_patterns.append(_element_pattern("|".join(raw_text)))
        if profile.strip_unknown_tag_body:
            if self.allowed_tags:
                allowed = "|".join(re.escape(tag) for tag in sorted(self.allowed_tags))
                names = r"(?!(?:%s)(?![A-Za-z0-9:-]))%s" % (allowed, _NAME)
            else:
                names = _NAME
            self._body_patterns.append(_element_pattern(names))

    def clean(self, text: str) -> str:
        """Filters `text` against the profile.

        Args:
            text (str): Untrusted input that may contain HTML.

        Returns:
            str: The filtered string.
        """
        for pattern in self._body_patterns:
            text = _sub_until_stable(pattern, text)

        cleaned = bleach.clean(
            text,
            tags=self.allowed_tags,
            attributes=self.allowed_attributes,
            strip=self.profile.strip_unknown_tags,
            strip_comments=True,
        )

        if self.allowed_tags:
            cleaned = self._limit_depth(cleaned)
            if not self.profile.allow_empty_tags:
                cleaned = _sub_until_stable(_EMPTY_ELEMENT_RE, cleaned)
        return cleaned

    def _limit_depth(self, html: str) -> str:
        """Unwraps tags nested deeper than `max_tag_depth`, keeping their text.

        Operates on bleach output, which only contains allowed tags and is
        balanced, so the open-tag stack always lines up with close tags.
        """
        max_depth = self.profile.max_tag_depth
        stack = []
        parts = []
        position = 0
        for match in _TAG_RE.finditer(html):
            parts.append(html[position:match.start()])
            position = match.end()
            closing, name, attrs = match.group(1), match.group(2).lower(), match.group(3)

            if closing:
                if name not in (open_name for open_name, _ in stack):
                    parts.append(match.group(0))
                    continue
                while stack:
                    open_name, kept = stack.pop()
                    if open_name == name:
                        break
                if kept:
                    parts.append(match.group(0))
                continue

            if name in VOID_ELEMENTS or attrs.rstrip().endswith("/"):
                # Void elements cannot nest anything; they live at their parent's depth.
                if 0 < max_depth and len(stack) <= max_depth:
                    parts.append(match.group(0))
                continue

            kept = len(stack) < max_depth
            if kept:
                parts.append(match.group(0))
            stack.append((name, kept))

        parts.append(html[position:])
        return "".join(parts)
