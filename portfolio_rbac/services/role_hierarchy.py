"""
Portfolio role hierarchy.

Roles are totally ordered: owner > admin > member > viewer.

An actor can only manage (change, remove) members whose role is strictly
below their own, and can only assign roles strictly below their own. The
owner role is never assignable through invitation or role change; it moves
only through ownership transfer.

Usage:
    from portfolio_rbac.services.role_hierarchy import Role, can_manage_role

    can_manage_role(Role.ADMIN, Role.MEMBER)   # True
    get_assignable_roles(Role.ADMIN)           # {member, viewer}
"""

from enum import Enum


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


# Decreasing privilege.
PORTFOLIO_ROLES: tuple[Role, ...] = (Role.OWNER, Role.ADMIN, Role.MEMBER, Role.VIEWER)

ROLE_RANKS: dict[Role, int] = {
    Role.OWNER: 3,
    Role.ADMIN: 2,
    Role.MEMBER: 1,
    Role.VIEWER: 0,
}

ROLE_LABELS: dict[Role, str] = {
    Role.OWNER: "Owner",
    Role.ADMIN: "Administrator",
    Role.MEMBER: "Member",
    Role.VIEWER: "Viewer",
}

ROLE_DESCRIPTIONS: dict[Role, str] = {
    Role.OWNER: "Full access to all portfolio settings, properties, and members. Can delete the portfolio.",
    Role.ADMIN: "Can manage properties and invite/remove members. Cannot delete the portfolio.",
    Role.MEMBER: "Can view and edit properties. Cannot manage members or portfolio settings.",
    Role.VIEWER: "Read-only access to portfolio and properties. Cannot make any changes.",
}


def role_rank(role: Role) -> int:
    """Numeric rank of a role (higher = more privileged)."""
    return ROLE_RANKS[Role(role)]


def is_role_higher_than(role_a: Role, role_b: Role) -> bool:
    return role_rank(role_a) > role_rank(role_b)


def is_role_at_least(role: Role, minimum_role: Role) -> bool:
    return role_rank(role) >= role_rank(minimum_role)


def can_manage_role(actor_role: Role, target_role: Role) -> bool:
    """True iff *actor_role* strictly outranks *target_role*."""
    return is_role_higher_than(actor_role, target_role)


def get_assignable_roles(actor_role: Role) -> frozenset[Role]:
    """
    Roles an actor may grant through invitation or role change.

    Strictly below the actor's own role, and never owner.
    """
    return frozenset(
        r for r in PORTFOLIO_ROLES
        if r is not Role.OWNER and can_manage_role(actor_role, r)
    )


def sorted_roles(roles) -> list[Role]:
    """Order roles by decreasing privilege (stable output for APIs)."""
    return sorted(roles, key=role_rank, reverse=True)


def is_valid_role(value) -> bool:
    return parse_role(value) is not None


def parse_role(value) -> Role | None:
    """Return the Role for *value*, or None when it is not a known role."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None
