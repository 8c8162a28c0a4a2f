"""
Static role, permission, and plan tables with the pure gate functions over them.

Nothing in this module performs I/O or raises: unknown keys fail closed and are
logged as configuration mismatches so they can be told apart from real denials.
"""
import enum
from typing import Any, Mapping, Optional

from app.utils import get_logger


log = get_logger(__name__)


class Role(str, enum.Enum):
    """Organization role. Comparisons go through `level`, never string equality."""
    OWNER = "owner"
    ADMIN = "admin"
    ANALYST = "analyst"
    VIEWER = "viewer"
    MEMBER = "member"
    NONE = "none"

    @property
    def level(self) -> int:
        return _ROLE_LEVELS[self]

    @property
    def is_ranked(self) -> bool:
        return self in RANKED_ROLES

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        """Map a stored role string to a Role; legacy or unknown values become MEMBER."""
        if value is None:
            return cls.NONE
        try:
            return cls(value)
        except ValueError:
            log.warning("Unknown role %r, treating as member", value)
            return cls.MEMBER


# owner > admin > analyst > viewer; member carries viewer-level permissions only
_ROLE_LEVELS = {
    Role.OWNER: 4,
    Role.ADMIN: 3,
    Role.ANALYST: 2,
    Role.VIEWER: 1,
    Role.MEMBER: 1,
    Role.NONE: 0,
}

RANKED_ROLES = (Role.OWNER, Role.ADMIN, Role.ANALYST, Role.VIEWER)

# Roles that may be stored on a membership row
ASSIGNABLE_ROLES = RANKED_ROLES + (Role.MEMBER,)


class Permission(str, enum.Enum):
    VIEW_ANALYTICS = "view_analytics"
    EXPORT_DATA = "export_data"
    MANAGE_QUESTIONS = "manage_questions"
    INVITE_USERS = "invite_users"
    MANAGE_USERS = "manage_users"
    MANAGE_INTEGRATIONS = "manage_integrations"
    MANAGE_ORGANIZATION = "manage_organization"
    MANAGE_BILLING = "manage_billing"


class PlanTier(str, enum.Enum):
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PlanTier":
        """Unknown or missing plan types fall back to starter."""
        if value is None:
            return cls.STARTER
        try:
            return cls(value)
        except ValueError:
            log.warning("Unknown plan_type %r, falling back to starter", value)
            return cls.STARTER


class Module(str, enum.Enum):
    """Dashboard feature areas. Values match the keys used in features_config."""
    ANALYTICS = "analytics"
    QUESTIONS = "questions"
    SETTINGS = "settings"
    CUSTOMER_INSIGHTS = "customerInsights"
    SENTIMENT = "sentiment"
    PERFORMANCE = "performance"
    MEMBERS = "members"
    FEEDBACK = "feedback"


PERMISSION_TABLE: dict[Permission, Role] = {
    Permission.VIEW_ANALYTICS: Role.VIEWER,
    Permission.EXPORT_DATA: Role.ANALYST,
    Permission.MANAGE_QUESTIONS: Role.ANALYST,
    Permission.INVITE_USERS: Role.ADMIN,
    Permission.MANAGE_USERS: Role.ADMIN,
    Permission.MANAGE_INTEGRATIONS: Role.ADMIN,
    Permission.MANAGE_ORGANIZATION: Role.ADMIN,
    Permission.MANAGE_BILLING: Role.OWNER,
}

_STARTER_MODULES = frozenset({Module.ANALYTICS, Module.QUESTIONS, Module.SETTINGS})
_PRO_MODULES = _STARTER_MODULES | {Module.CUSTOMER_INSIGHTS, Module.MEMBERS, Module.FEEDBACK}

MODULE_FEATURE_TABLE: dict[PlanTier, frozenset[Module]] = {
    PlanTier.STARTER: _STARTER_MODULES,
    PlanTier.PRO: frozenset(_PRO_MODULES),
    PlanTier.ENTERPRISE: frozenset(Module),
}

ALL_QUESTION_TYPES = ("star", "nps", "likert", "single-choice", "multi-choice", "text")

# Plan limits and boolean features, keyed the way features_config stores them
PLAN_LIMITS: dict[PlanTier, dict[str, Any]] = {
    PlanTier.STARTER: {
        "maxResponses": 1000,
        "questionTypes": ("star", "nps"),
        "customBranding": False,
        "multiUser": False,
        "analytics": False,
        "export": False,
    },
    PlanTier.PRO: {
        "maxResponses": 10000,
        "questionTypes": ALL_QUESTION_TYPES,
        "customBranding": True,
        "multiUser": True,
        "analytics": True,
        "export": True,
    },
    PlanTier.ENTERPRISE: {
        "maxResponses": None,
        "questionTypes": ALL_QUESTION_TYPES,
        "customBranding": True,
        "multiUser": True,
        "analytics": True,
        "export": True,
    },
}

PLAN_FEATURE_FLAGS = ("customBranding", "multiUser", "analytics", "export")

ROLE_DEFINITIONS: dict[Role, dict[str, str]] = {
    Role.OWNER: {"label": "Owner", "description": "Full access including billing and organization management"},
    Role.ADMIN: {"label": "Admin", "description": "Full access except billing and ownership changes"},
    Role.ANALYST: {"label": "Analyst", "description": "Analytics access, data export and question management"},
    Role.VIEWER: {"label": "Viewer", "description": "Read-only access to basic analytics"},
    Role.MEMBER: {"label": "Member", "description": "Team member without elevated privileges"},
}


def _coerce(enum_cls, value, kind: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        log.warning("Unknown %s key %r: check the UI against the static tables", kind, value)
        return None


def minimum_role_for(permission: Permission | str) -> Optional[Role]:
    key = _coerce(Permission, permission, "permission")
    if key is None:
        return None
    return PERMISSION_TABLE[key]


def has_permission(role: Role, permission: Permission | str) -> bool:
    """
    True iff `role` ranks at or above the minimum role for `permission`.

    Unknown permission names deny for every role, owner included. System-admin
    bypass happens in the resolver and guard, not here.
    """
    required = minimum_role_for(permission)
    if required is None:
        return False
    return Role.parse(role).level >= required.level


def has_module_access(
    plan: PlanTier | str,
    overrides: Optional[Mapping[str, Any]],
    module: Module | str,
) -> bool:
    """
    Plan default for `module`, unless `overrides` holds an explicit boolean for it.

    An override wins in both directions. Non-boolean override values are ignored.
    """
    key = _coerce(Module, module, "module")
    if key is None:
        return False
    if overrides:
        value = overrides.get(key.value)
        if isinstance(value, bool):
            return value
    return key in MODULE_FEATURE_TABLE[PlanTier.parse(plan)]


def minimum_plan_for(module: Module | str) -> Optional[PlanTier]:
    """Lowest plan tier that enables `module` by default."""
    key = _coerce(Module, module, "module")
    if key is None:
        return None
    for plan in PlanTier:
        if key in MODULE_FEATURE_TABLE[plan]:
            return plan
    return None


def can_manage_role(manager: Role, target: Role) -> bool:
    """A role may only manage roles strictly below it."""
    return Role.parse(manager).level > Role.parse(target).level


def assignable_roles(role: Role) -> list[Role]:
    return [r for r in ASSIGNABLE_ROLES if can_manage_role(role, r)]


def _plan_value(plan: PlanTier | str, features: Optional[Mapping[str, Any]], name: str):
    if features and features.get(name) is not None:
        return features[name]
    return PLAN_LIMITS[PlanTier.parse(plan)][name]


def has_plan_feature(plan: PlanTier | str, features: Optional[Mapping[str, Any]], name: str) -> bool:
    if name not in PLAN_FEATURE_FLAGS:
        log.warning("Unknown plan feature %r", name)
        return False
    return bool(_plan_value(plan, features, name))


def allowed_question_types(plan: PlanTier | str, features: Optional[Mapping[str, Any]] = None) -> list[str]:
    return list(_plan_value(plan, features, "questionTypes"))


def response_limit(plan: PlanTier | str, features: Optional[Mapping[str, Any]] = None) -> Optional[int]:
    """Maximum stored responses, or None for unlimited."""
    if features and "maxResponses" in features:
        return features["maxResponses"]
    return PLAN_LIMITS[PlanTier.parse(plan)]["maxResponses"]
