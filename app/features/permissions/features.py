"""
Validation of the per-organization ``features_config`` JSON.

Admins edit this blob as free-form JSON, so it is parsed leniently when read
(unknown keys dropped) and strictly when written (unknown keys rejected).
"""
import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.features.permissions.tables import ALL_QUESTION_TYPES, Module
from app.utils import get_logger


log = get_logger(__name__)

_MODULE_KEYS = {m.value for m in Module}


class FeaturesConfig(BaseModel):
    """Typed view of ``organizations.features_config``."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    modules: Dict[str, bool] = Field(default_factory=dict)
    max_responses: Optional[int] = Field(None, alias="maxResponses", ge=0)
    question_types: Optional[List[str]] = Field(None, alias="questionTypes")
    custom_branding: Optional[bool] = Field(None, alias="customBranding")
    multi_user: Optional[bool] = Field(None, alias="multiUser")
    analytics: Optional[bool] = None
    export: Optional[bool] = None

    # Set when maxResponses was present in the source, even as null (unlimited)
    has_response_limit: bool = Field(False, exclude=True)

    @field_validator("modules", mode="before")
    @classmethod
    def drop_unknown_modules(cls, v: Any) -> Dict[str, bool]:
        if v is None:
            return {}
        if not isinstance(v, dict):
            log.warning("features_config.modules is not an object, ignoring: %r", v)
            return {}
        cleaned = {}
        for key, value in v.items():
            if key not in _MODULE_KEYS:
                log.warning("Ignoring unknown module override %r", key)
            elif not isinstance(value, bool):
                log.warning("Ignoring non-boolean override for module %r: %r", key, value)
            else:
                cleaned[key] = value
        return cleaned

    @field_validator("question_types")
    @classmethod
    def known_question_types(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        return [t for t in v if t in ALL_QUESTION_TYPES]

    def plan_overrides(self) -> Dict[str, Any]:
        """Overrides keyed the way PLAN_LIMITS is keyed; absent values are omitted."""
        overrides = self.model_dump(by_alias=True, exclude={"modules"}, exclude_none=True)
        if self.has_response_limit:
            overrides["maxResponses"] = self.max_responses
        return overrides


def parse_features_config(raw: Any) -> FeaturesConfig:
    """
    Lenient read path. Accepts a dict or a JSON string; anything malformed
    yields an empty config so the plan defaults apply.
    """
    if raw is None or raw == "":
        return FeaturesConfig()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("features_config is not valid JSON, using plan defaults")
            return FeaturesConfig()
    if not isinstance(raw, dict):
        log.warning("features_config is not an object, using plan defaults")
        return FeaturesConfig()
    try:
        config = FeaturesConfig.model_validate(raw)
    except ValidationError as e:
        log.warning("features_config failed validation, using plan defaults: %s", e)
        return FeaturesConfig()
    config.has_response_limit = "maxResponses" in raw
    return config


def validate_features_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Strict write path. Returns the normalized JSON to store.

    Raises:
        ValueError: on unknown module keys, non-boolean module values,
            unknown question types, or fields that fail type validation
    """
    modules = raw.get("modules", {})
    if not isinstance(modules, dict):
        raise ValueError("modules must be an object of module name to boolean")
    unknown = sorted(set(modules) - _MODULE_KEYS)
    if unknown:
        raise ValueError(f"Unknown modules: {', '.join(unknown)}")
    non_bool = sorted(k for k, v in modules.items() if not isinstance(v, bool))
    if non_bool:
        raise ValueError(f"Module overrides must be booleans: {', '.join(non_bool)}")
    question_types = raw.get("questionTypes")
    if question_types is not None:
        if not isinstance(question_types, list):
            raise ValueError("questionTypes must be a list")
        bad = sorted(set(question_types) - set(ALL_QUESTION_TYPES))
        if bad:
            raise ValueError(f"Unknown question types: {', '.join(bad)}")
    try:
        config = FeaturesConfig.model_validate(raw)
    except ValidationError as e:
        raise ValueError(str(e)) from e
    normalized = config.model_dump(by_alias=True, exclude_none=True)
    if "maxResponses" in raw:
        normalized["maxResponses"] = config.max_responses
    return normalized
