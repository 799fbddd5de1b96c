"""Role ranks, management rules and assignable roles."""

import itertools

import pytest

from portfolio_rbac.services.role_hierarchy import (
    PORTFOLIO_ROLES,
    Role,
    can_manage_role,
    get_assignable_roles,
    is_role_at_least,
    is_role_higher_than,
    is_valid_role,
    parse_role,
    role_rank,
    sorted_roles,
)


def test_ranks_are_strictly_ordered():
    assert [role_rank(r) for r in PORTFOLIO_ROLES] == [3, 2, 1, 0]


@pytest.mark.parametrize("higher,lower", list(itertools.combinations(PORTFOLIO_ROLES, 2)))
def test_can_manage_only_strictly_lower(higher, lower):
    assert can_manage_role(higher, lower) is True
    assert can_manage_role(lower, higher) is False


@pytest.mark.parametrize("role", PORTFOLIO_ROLES)
def test_cannot_manage_own_rank(role):
    assert can_manage_role(role, role) is False
    assert is_role_at_least(role, role) is True
    assert is_role_higher_than(role, role) is False


def test_assignable_roles():
    assert get_assignable_roles(Role.OWNER) == {Role.ADMIN, Role.MEMBER, Role.VIEWER}
    assert get_assignable_roles(Role.ADMIN) == {Role.MEMBER, Role.VIEWER}
    assert get_assignable_roles(Role.MEMBER) == {Role.VIEWER}
    assert get_assignable_roles(Role.VIEWER) == frozenset()


@pytest.mark.parametrize("role", PORTFOLIO_ROLES)
def test_owner_never_assignable(role):
    assert Role.OWNER not in get_assignable_roles(role)


def test_string_roles_accepted():
    assert can_manage_role("admin", "member") is True
    assert is_role_at_least("viewer", "member") is False


def test_parse_role():
    assert parse_role(" Admin ") is Role.ADMIN
    assert parse_role(Role.VIEWER) is Role.VIEWER
    assert parse_role("superuser") is None
    assert parse_role(None) is None
    assert is_valid_role("member") is True
    assert is_valid_role("editor") is False


def test_sorted_roles_highest_first():
    assert sorted_roles({Role.VIEWER, Role.OWNER, Role.MEMBER}) == [Role.OWNER, Role.MEMBER, Role.VIEWER]
