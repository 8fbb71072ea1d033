"""Configuration management for the Payload Guard service.

This module defines the Pydantic settings and data models used throughout
the application. It handles environment variable loading, validation,
and structured data definitions for sanitization profiles and API payloads.
"""

from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """Global application settings loaded from environment variables.

    Attributes:
        PROJECT_NAME (str): The name of the application.
        DEFAULT_PROFILE (str): Profile used when a caller does not name one.
        PROFILES_PATH (str): Path to the optional YAML file with extra
            profiles and sensitive field names.
        MAX_STRUCTURE_DEPTH (int): Deepest container nesting the engine will
            walk before giving up with a resource exhaustion error.
        EXTRA_SENSITIVE_FIELDS (List[str]): Field names protected in addition
            to the built-in list.
        SKIP_PATHS (List[str]): Request paths the middleware leaves alone.
        LOG_WARNINGS (bool): Whether the middleware logs sanitization warnings.
        LOG_LEVEL (str): Root logging level for the service.
    """
    PROJECT_NAME: str = "Payload Guard"

    # Profiles
    DEFAULT_PROFILE: str = "base"
    PROFILES_PATH: str = "payload_guard.yaml"

    # Engine limits
    MAX_STRUCTURE_DEPTH: int = 100
    EXTRA_SENSITIVE_FIELDS: List[str] = []

    # Middleware
    SKIP_PATHS: List[str] = ["/health", "/sanitize"]
    LOG_WARNINGS: bool = True
    LOG_LEVEL: str = "INFO"

    # This allows loading from a .env file automatically
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

class SanitizationProfile(BaseModel):
    """An immutable HTML sanitization policy.

    Accepts both snake_case field names and their camelCase aliases
    (`allowedTags`, `maxStringLength`, ...). Unset fields take the defaults
    applied to inline configurations.

    Attributes:
        allowed_tags (FrozenSet[str]): Permitted tag names. Empty means every
            tag is removed.
        allowed_attributes (Mapping[str, FrozenSet[str]]): Permitted attribute
            names per tag, as a read-only mapping.
        strip_unknown_tags (bool): Remove tags outside the allow-list instead
            of escaping them into text.
        strip_unknown_tag_body (bool): Also discard the content of removed tags.
        allow_empty_tags (bool): Keep allowed elements that have no content.
        max_tag_depth (int): Deepest HTML tag nesting kept inside one string.
        max_string_length (int): Strings longer than this are truncated.
    """
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    allowed_tags: FrozenSet[str] = frozenset()
    allowed_attributes: Mapping[str, FrozenSet[str]] = Field(default_factory=dict, validate_default=True)
    strip_unknown_tags: bool = True
    strip_unknown_tag_body: bool = False
    allow_empty_tags: bool = False
    max_tag_depth: int = Field(default=10, ge=0)
    max_string_length: int = Field(default=10000, ge=0)

    @field_validator("allowed_tags", mode="before")
    @classmethod
    def _lower_tags(cls, value):
        if value is None:
            return frozenset()
        return frozenset(str(tag).lower() for tag in value)

    @field_validator("allowed_attributes", mode="before")
    @classmethod
    def _lower_attribute_tags(cls, value):
        if value is None:
            return {}
        return {str(tag).lower(): frozenset(attrs or ()) for tag, attrs in dict(value).items()}

    @field_validator("allowed_attributes", mode="after")
    @classmethod
    def _freeze_attributes(cls, value):
        return MappingProxyType(dict(value))

    @field_serializer("allowed_attributes")
    def _dump_attributes(self, value):
        return dict(value)

class SanitizeRequest(BaseModel):
    """Body of the explicit `/sanitize` endpoint.

    Attributes:
        payload (Any): The data to sanitize.
        profile (Optional[Union[str, Dict[str, Any]]]): Profile name or inline
            configuration. Defaults to `settings.DEFAULT_PROFILE`.
        overrides (Optional[Dict[str, Any]]): Fields merged over the profile.
        sensitive_fields (Optional[List[str]]): Extra protected field names.
    """
    payload: Any
    profile: Optional[Union[str, Dict[str, Any]]] = None
    overrides: Optional[Dict[str, Any]] = None
    sensitive_fields: Optional[List[str]] = None

settings = Settings()
