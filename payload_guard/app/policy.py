"""Sanitization Profile Registry.

This module loads and manages the named sanitization profiles. A set of
built-in profiles is always available; additional profiles (and additional
sensitive field names) may be supplied through an external YAML file, allowing
deployments to tune their policies without code changes.

Typical Usage:
    from payload_guard.app.policy import registry
    profile = registry.resolve("comment")
    custom = registry.merge("base", {"maxStringLength": 500})
"""

import logging
import os
from typing import Any, Dict, FrozenSet, List, Mapping, Union

import yaml
from pydantic import ValidationError

from payload_guard.app.config import SanitizationProfile, settings
from payload_guard.engines.errors import ConfigurationError

logger = logging.getLogger("payload_guard.policy")

ProfileSpec = Union[str, Mapping[str, Any], SanitizationProfile]

# Shared tag lists for the richer built-in profiles.
_RICH_TAGS = [
    "h1", "h2", "h3", "h4", "h5", "h6", "p", "br", "hr",
    "b", "i", "em", "strong", "u", "s", "sub", "sup",
    "ul", "ol", "li", "a", "img",
    "blockquote", "code", "pre",
    "table", "thead", "tbody", "tr", "th", "td",
    "div", "span",
]

class ProfileRegistry:
    """Named sanitization profiles backed by built-in tables and a YAML file.

    The registry parses the profile file and exposes `resolve` and `merge`
    for the engine and the HTTP layer. Missing or broken files fall back to
    the built-in tables so the service always starts with a known policy.
    """

    def __init__(self, config_path: str = "payload_guard.yaml"):
        """Initializes the registry.

        Args:
            config_path (str): Path to the YAML profile file.
                Defaults to "payload_guard.yaml".
        """
        self.config_path = config_path
        self._profiles: Dict[str, SanitizationProfile] = {}
        self._sensitive_fields: FrozenSet[str] = frozenset()
        self.reload()

    def reload(self):
        """Loads or reloads the profile tables.

        Built-in profiles are always loaded first. If the YAML file exists and
        parses, its profiles are added on top (replacing built-ins of the same
        name). If the file is missing or invalid, only the built-ins are used
        and a warning is logged.
        """
        self._profiles = {
            name: SanitizationProfile.model_validate(table)
            for name, table in self._default_profiles().items()
        }
        self._sensitive_fields = frozenset()

        if not os.path.exists(self.config_path):
            logger.warning(f"⚠️ Profile file not found at {self.config_path}. Using built-in profiles.")
            return

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f) or {}
            self._load_document(document)
            logger.info(f"✅ Sanitization profiles loaded from {self.config_path}")
        except (OSError, yaml.YAMLError, ConfigurationError) as e:
            logger.critical(f"❌ Failed to load sanitization profiles: {e}")
            self._profiles = {
                name: SanitizationProfile.model_validate(table)
                for name, table in self._default_profiles().items()
            }
            self._sensitive_fields = frozenset()

    def _load_document(self, document: Any):
        if not isinstance(document, dict):
            raise ConfigurationError("Profile file must contain a mapping at the top level")

        fields = document.get("sensitive_fields") or []
        if not isinstance(fields, list):
            raise ConfigurationError("'sensitive_fields' must be a list of field names")
        self._sensitive_fields = frozenset(str(name) for name in fields)

        profiles = document.get("profiles") or {}
        if not isinstance(profiles, dict):
            raise ConfigurationError("'profiles' must map profile names to configurations")
        # Insertion order lets a profile extend one defined earlier in the file.
        for name, table in profiles.items():
            self._profiles[str(name)] = self.resolve(table or {})

    def _default_profiles(self) -> Dict[str, Dict[str, Any]]:
        """Returns the built-in profile tables."""
        return {
            "base": {
                "allowed_tags": ["b", "i", "em", "strong", "p", "br", "ul", "ol", "li", "a"],
                "allowed_attributes": {"a": ["href", "title"]},
                "strip_unknown_tags": True,
                "strip_unknown_tag_body": False,
                "allow_empty_tags": False,
                "max_tag_depth": 10,
                "max_string_length": 10000,
            },
            "strict": {
                "allowed_tags": ["b", "i", "em", "strong"],
                "allowed_attributes": {},
                "strip_unknown_tags": True,
                "strip_unknown_tag_body": True,
                "allow_empty_tags": False,
                "max_tag_depth": 5,
                "max_string_length": 1000,
            },
            "liberal": {
                "allowed_tags": _RICH_TAGS,
                "allowed_attributes": {
                    "a": ["href", "title", "target", "rel"],
                    "img": ["src", "alt", "title", "width", "height"],
                    "blockquote": ["cite"],
                    "table": ["class"],
                    "th": ["scope"],
                    "td": ["colspan", "rowspan"],
                },
                "allow_empty_tags": True,
                "max_tag_depth": 20,
                "max_string_length": 50000,
            },
            "blog": {
                "allowed_tags": [
                    "h2", "h3", "h4", "h5", "h6", "p", "br",
                    "b", "i", "em", "strong", "u",
                    "ul", "ol", "li", "a", "img",
                    "blockquote", "code", "div", "span",
                ],
                "allowed_attributes": {
                    "a": ["href", "title", "rel"],
                    "img": ["src", "alt", "title"],
                    "blockquote": ["cite"],
                    "div": ["class"],
                    "span": ["class"],
                },
                "strip_unknown_tags": True,
                "allow_empty_tags": False,
                "max_tag_depth": 15,
                "max_string_length": 25000,
            },
            "comment": {
                "allowed_tags": ["b", "i", "em", "strong", "br", "a"],
                "allowed_attributes": {"a": ["href", "title"]},
                "strip_unknown_tags": True,
                "strip_unknown_tag_body": True,
                "allow_empty_tags": False,
                "max_tag_depth": 3,
                "max_string_length": 2000,
            },
            "email": {
                "allowed_tags": ["p", "br", "b", "i", "em", "strong", "a"],
                "allowed_attributes": {"a": ["href", "title"]},
                "strip_unknown_tags": True,
                "strip_unknown_tag_body": True,
                "allow_empty_tags": False,
                "max_tag_depth": 5,
                "max_string_length": 5000,
            },
            "admin": {
                "allowed_tags": _RICH_TAGS + [
                    "section", "article",
                    "form", "input", "textarea", "select", "option",
                    "button", "label",
                ],
                "allowed_attributes": {
                    "a": ["href", "title", "target", "rel"],
                    "img": ["src", "alt", "title", "width", "height", "class"],
                    "blockquote": ["cite"],
                    "table": ["class"],
                    "th": ["scope", "class"],
                    "td": ["colspan", "rowspan", "class"],
                    "div": ["class", "id"],
                    "span": ["class", "id"],
                    "form": ["action", "method"],
                    "input": ["type", "name", "value", "placeholder", "required"],
                    "textarea": ["name", "placeholder", "required", "rows", "cols"],
                    "select": ["name", "required"],
                    "option": ["value"],
                    "button": ["type", "class"],
                    "label": ["for"],
                },
                "allow_empty_tags": True,
                "max_tag_depth": 25,
                "max_string_length": 100000,
            },
        }

    @property
    def names(self) -> List[str]:
        """Returns the names of all resolvable profiles."""
        return sorted(self._profiles)

    @property
    def sensitive_fields(self) -> FrozenSet[str]:
        """Returns the extra sensitive field names declared in the profile file."""
        return self._sensitive_fields

    def resolve(self, spec: ProfileSpec) -> SanitizationProfile:
        """Turns a profile name or inline configuration into a profile.

        Args:
            spec: A registered profile name, an inline configuration mapping
                (optionally with an `extends` key naming a base profile), or an
                existing `SanitizationProfile`.

        Returns:
            SanitizationProfile: The resolved, immutable profile.

        Raises:
            ConfigurationError: If the name is unknown or the configuration is
                invalid.
        """
        if isinstance(spec, SanitizationProfile):
            return spec

        if isinstance(spec, str):
            profile = self._profiles.get(spec)
            if profile is None:
                raise ConfigurationError(f"Unknown sanitization profile: {spec}")
            return profile

        if isinstance(spec, Mapping):
            table = dict(spec)
            base = table.pop("extends", None)
            if base is not None:
                return self.merge(base, table)
            try:
                return SanitizationProfile.model_validate(table)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid sanitization profile: {e}") from e

        raise ConfigurationError(f"Cannot resolve a sanitization profile from {type(spec).__name__}")

    def merge(self, base: ProfileSpec, overrides: Union[Mapping[str, Any], SanitizationProfile]) -> SanitizationProfile:
        """Creates a new profile from `base` with `overrides` applied.

        Only fields explicitly present in `overrides` replace the base values.
        `allowed_attributes` is merged per tag: an override replaces the
        attribute list of the tags it names and keeps every other base tag.

        Raises:
            ConfigurationError: If `base` cannot be resolved or the merged
                configuration is invalid.
        """
        base_profile = self.resolve(base)
        try:
            if isinstance(overrides, SanitizationProfile):
                changed = overrides.model_dump(exclude_unset=True)
            else:
                changed = SanitizationProfile.model_validate(dict(overrides)).model_dump(exclude_unset=True)

            merged = base_profile.model_dump()
            attributes = dict(merged["allowed_attributes"])
            attributes.update(changed.pop("allowed_attributes", {}))
            merged.update(changed)
            merged["allowed_attributes"] = attributes
            return SanitizationProfile.model_validate(merged)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid sanitization profile override: {e}") from e

registry = ProfileRegistry(settings.PROFILES_PATH)
