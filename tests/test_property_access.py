"""Property access resolution: null override, empty override, explicit grants."""

import pytest

from portfolio_rbac.core.exceptions import ValidationError
from portfolio_rbac.services.property_access import (
    PROPERTY_ACTIONS,
    ROLE_DEFAULT_ACTIONS,
    PropertyAccessResolver,
    PropertyAction,
    actions_to_list,
    is_valid_property_access,
    normalize_property_access,
)
from portfolio_rbac.services.role_hierarchy import PORTFOLIO_ROLES, Role

ALL_IDS = ["x", "y", "z"]


class TestRoleDefaults:
    def test_owner_and_admin_get_everything(self):
        assert ROLE_DEFAULT_ACTIONS[Role.OWNER] == frozenset(PROPERTY_ACTIONS)
        assert ROLE_DEFAULT_ACTIONS[Role.ADMIN] == frozenset(PROPERTY_ACTIONS)

    def test_member_and_viewer(self):
        assert ROLE_DEFAULT_ACTIONS[Role.MEMBER] == {PropertyAction.VIEW, PropertyAction.EDIT}
        assert ROLE_DEFAULT_ACTIONS[Role.VIEWER] == {PropertyAction.VIEW}


class TestResolver:
    @pytest.mark.parametrize("role", PORTFOLIO_ROLES)
    def test_null_override_sees_all_properties(self, role):
        resolver = PropertyAccessResolver(role, None)
        assert resolver.has_full_access is True
        assert resolver.accessible_properties(ALL_IDS) == frozenset(ALL_IDS)
        assert resolver.allowed_actions("x") == ROLE_DEFAULT_ACTIONS[role]

    @pytest.mark.parametrize("role", PORTFOLIO_ROLES)
    def test_empty_override_sees_nothing(self, role):
        resolver = PropertyAccessResolver(role, {})
        assert resolver.has_full_access is False
        assert resolver.accessible_properties(ALL_IDS) == frozenset()
        assert resolver.allowed_actions("x") == frozenset()
        assert resolver.is_listed("x") is False

    def test_listed_grants_are_explicit_not_role_capped(self):
        resolver = PropertyAccessResolver(Role.VIEWER, {"x": ["view", "edit"]})
        assert resolver.allowed_actions("x") == {PropertyAction.VIEW, PropertyAction.EDIT}
        assert resolver.allowed_actions("y") == frozenset()

    def test_listed_grants_can_be_narrower_than_role(self):
        resolver = PropertyAccessResolver(Role.ADMIN, {"x": ["view"]})
        assert resolver.allowed_actions("x") == {PropertyAction.VIEW}

    def test_stale_keys_are_inert(self):
        resolver = PropertyAccessResolver(Role.MEMBER, {"x": ["view"], "deleted": ["edit"]})
        assert resolver.accessible_properties(ALL_IDS) == {"x"}

    def test_unknown_stored_actions_ignored(self):
        resolver = PropertyAccessResolver(Role.MEMBER, {"x": ["view", "teleport"]})
        assert resolver.allowed_actions("x") == {PropertyAction.VIEW}


class TestNormalize:
    def test_none_and_empty_stay_distinct(self):
        assert normalize_property_access(None) is None
        assert normalize_property_access({}) == {}

    def test_dedupes_and_orders(self):
        assert normalize_property_access({"x": ["delete", "view", "view"]}) == {"x": ["view", "delete"]}

    @pytest.mark.parametrize("bad", [
        ["x"],
        "x",
        {"x": "view"},
        {"x": ["fly"]},
        {"": ["view"]},
    ])
    def test_rejects_malformed(self, bad):
        assert is_valid_property_access(bad) is False
        with pytest.raises(ValidationError):
            normalize_property_access(bad)


def test_actions_to_list_is_privilege_ordered():
    assert actions_to_list({PropertyAction.DELETE, PropertyAction.VIEW}) == ["view", "delete"]
