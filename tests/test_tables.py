"""Pure permission and module gates."""
import pytest

from app.features.permissions.tables import (
    MODULE_FEATURE_TABLE,
    PERMISSION_TABLE,
    RANKED_ROLES,
    Module,
    Permission,
    PlanTier,
    Role,
    allowed_question_types,
    assignable_roles,
    can_manage_role,
    has_module_access,
    has_permission,
    has_plan_feature,
    minimum_plan_for,
    minimum_role_for,
    response_limit,
)


@pytest.mark.parametrize("permission", list(Permission))
def test_permission_is_monotonic_in_role_hierarchy(permission):
    for i, higher in enumerate(RANKED_ROLES):
        for lower in RANKED_ROLES[i:]:
            assert has_permission(higher, permission) >= has_permission(lower, permission)


@pytest.mark.parametrize("role", list(Role))
def test_unknown_permission_denies_every_role(role):
    assert has_permission(role, "delete_everything") is False


def test_viewer_cannot_manage_questions():
    assert has_permission(Role.VIEWER, Permission.MANAGE_QUESTIONS) is False


def test_admin_can_manage_questions():
    assert has_permission(Role.ADMIN, Permission.MANAGE_QUESTIONS) is True


def test_permission_accepts_string_names():
    assert has_permission(Role.ANALYST, "export_data") is True
    assert has_permission(Role.ANALYST, "manage_users") is False


def test_member_has_only_baseline_permissions():
    allowed = {p for p in Permission if has_permission(Role.MEMBER, p)}
    assert allowed == {Permission.VIEW_ANALYTICS}


def test_no_role_has_no_permissions():
    assert not any(has_permission(Role.NONE, p) for p in Permission)


def test_only_owner_manages_billing():
    assert [r for r in RANKED_ROLES if has_permission(r, Permission.MANAGE_BILLING)] == [Role.OWNER]


def test_every_permission_has_a_minimum_role():
    assert set(PERMISSION_TABLE) == set(Permission)
    assert minimum_role_for(Permission.MANAGE_QUESTIONS) is Role.ANALYST
    assert minimum_role_for("nope") is None


@pytest.mark.parametrize("plan", list(PlanTier))
@pytest.mark.parametrize("module", list(Module))
def test_module_access_defaults_to_plan(plan, module):
    assert has_module_access(plan, {}, module) == (module in MODULE_FEATURE_TABLE[plan])
    assert has_module_access(plan, None, module) == (module in MODULE_FEATURE_TABLE[plan])


def test_override_can_revoke_a_plan_module():
    assert has_module_access(PlanTier.ENTERPRISE, {}, Module.SENTIMENT) is True
    assert has_module_access(PlanTier.ENTERPRISE, {"sentiment": False}, Module.SENTIMENT) is False


def test_override_can_grant_a_module_above_plan():
    assert has_module_access(PlanTier.STARTER, {}, Module.SENTIMENT) is False
    assert has_module_access(PlanTier.STARTER, {"sentiment": True}, Module.SENTIMENT) is True


def test_override_only_affects_its_module():
    overrides = {"sentiment": True}
    assert has_module_access(PlanTier.STARTER, overrides, Module.PERFORMANCE) is False
    assert has_module_access(PlanTier.STARTER, overrides, Module.QUESTIONS) is True


def test_non_boolean_override_is_ignored():
    assert has_module_access(PlanTier.STARTER, {"sentiment": "yes"}, Module.SENTIMENT) is False


def test_unknown_module_fails_closed():
    assert has_module_access(PlanTier.ENTERPRISE, {}, "teleportation") is False
    assert has_module_access(PlanTier.ENTERPRISE, {"teleportation": True}, "teleportation") is False


def test_unknown_plan_falls_back_to_starter():
    assert PlanTier.parse("platinum") is PlanTier.STARTER
    assert PlanTier.parse(None) is PlanTier.STARTER
    assert has_module_access("platinum", {}, Module.MEMBERS) is False


def test_sentiment_and_performance_are_enterprise_only():
    assert minimum_plan_for(Module.SENTIMENT) is PlanTier.ENTERPRISE
    assert minimum_plan_for(Module.PERFORMANCE) is PlanTier.ENTERPRISE
    assert minimum_plan_for(Module.MEMBERS) is PlanTier.PRO
    assert minimum_plan_for(Module.QUESTIONS) is PlanTier.STARTER


def test_role_parse_maps_legacy_values_to_member():
    assert Role.parse("admin") is Role.ADMIN
    assert Role.parse("manager") is Role.MEMBER
    assert Role.parse(None) is Role.NONE


def test_roles_manage_only_strictly_lower_roles():
    assert can_manage_role(Role.OWNER, Role.ADMIN)
    assert not can_manage_role(Role.ADMIN, Role.ADMIN)
    assert not can_manage_role(Role.ANALYST, Role.ADMIN)
    assert assignable_roles(Role.ADMIN) == [Role.ANALYST, Role.VIEWER, Role.MEMBER]
    assert assignable_roles(Role.VIEWER) == []


def test_plan_limits_with_overrides():
    assert response_limit(PlanTier.STARTER) == 1000
    assert response_limit(PlanTier.ENTERPRISE) is None
    assert response_limit(PlanTier.STARTER, {"maxResponses": 5000}) == 5000
    assert allowed_question_types(PlanTier.STARTER) == ["star", "nps"]
    assert "text" in allowed_question_types(PlanTier.PRO)
    assert has_plan_feature(PlanTier.STARTER, {}, "export") is False
    assert has_plan_feature(PlanTier.STARTER, {"export": True}, "export") is True
    assert has_plan_feature(PlanTier.PRO, {}, "unknown") is False


@pytest.mark.parametrize("plan", ["platinum", None])
def test_plan_limits_fall_back_to_starter_for_unknown_plans(plan):
    assert response_limit(plan) == 1000
    assert allowed_question_types(plan) == ["star", "nps"]
    assert has_plan_feature(plan, None, "export") is False


def test_plan_limits_accept_plan_strings():
    assert response_limit("pro") == 10000
    assert has_plan_feature("enterprise", {}, "customBranding") is True
