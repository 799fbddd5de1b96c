"""
Permission evaluator: pure functions from a PermissionContext to answers.

Two levels:

  portfolio level   coarse, role-gated. Each PortfolioAction has a minimum
                    role; allowed iff context.role >= threshold.
  property level    fine-grained. Delegates to PropertyAccessResolver so
                    per-property overrides (including grants above the role's
                    defaults) are honoured.

Nothing here touches storage; the same context always yields the same result.
"""

from dataclasses import dataclass, field
from enum import Enum

from portfolio_rbac.services.permission_context import PermissionContext
from portfolio_rbac.services.property_access import PropertyAction, actions_to_list
from portfolio_rbac.services.role_hierarchy import (
    Role,
    get_assignable_roles,
    is_role_at_least,
    sorted_roles,
)


class PortfolioAction(str, Enum):
    VIEW_PORTFOLIO = "view_portfolio"
    EDIT_PORTFOLIO = "edit_portfolio"
    DELETE_PORTFOLIO = "delete_portfolio"
    INVITE_MEMBERS = "invite_members"
    REMOVE_MEMBERS = "remove_members"
    CHANGE_MEMBER_ROLES = "change_member_roles"
    VIEW_MEMBERS = "view_members"
    ADD_PROPERTIES = "add_properties"
    VIEW_AUDIT_LOG = "view_audit_log"
    MANAGE_BILLING = "manage_billing"


PORTFOLIO_ACTION_THRESHOLDS: dict[PortfolioAction, Role] = {
    PortfolioAction.VIEW_PORTFOLIO: Role.VIEWER,
    PortfolioAction.VIEW_MEMBERS: Role.VIEWER,
    PortfolioAction.ADD_PROPERTIES: Role.MEMBER,
    PortfolioAction.EDIT_PORTFOLIO: Role.ADMIN,
    PortfolioAction.INVITE_MEMBERS: Role.ADMIN,
    PortfolioAction.REMOVE_MEMBERS: Role.ADMIN,
    PortfolioAction.CHANGE_MEMBER_ROLES: Role.OWNER,
    PortfolioAction.VIEW_AUDIT_LOG: Role.ADMIN,
    PortfolioAction.DELETE_PORTFOLIO: Role.OWNER,
    PortfolioAction.MANAGE_BILLING: Role.OWNER,
}

PORTFOLIO_ACTION_LABELS: dict[PortfolioAction, str] = {
    PortfolioAction.VIEW_PORTFOLIO: "View Portfolio",
    PortfolioAction.EDIT_PORTFOLIO: "Edit Portfolio Settings",
    PortfolioAction.DELETE_PORTFOLIO: "Delete Portfolio",
    PortfolioAction.INVITE_MEMBERS: "Invite Members",
    PortfolioAction.REMOVE_MEMBERS: "Remove Members",
    PortfolioAction.CHANGE_MEMBER_ROLES: "Change Member Roles",
    PortfolioAction.VIEW_MEMBERS: "View Members",
    PortfolioAction.ADD_PROPERTIES: "Add Properties",
    PortfolioAction.VIEW_AUDIT_LOG: "View Audit Log",
    PortfolioAction.MANAGE_BILLING: "Manage Billing",
}


@dataclass(frozen=True)
class PropertyPermissions:
    """Capability result for one property."""

    property_id: str
    can_view: bool
    can_edit: bool
    can_manage: bool
    can_delete: bool
    permissions: frozenset[PropertyAction] = field(default_factory=frozenset)

    def to_dict(self) -> dict:
        return {
            "property_id": self.property_id,
            "can_view": self.can_view,
            "can_edit": self.can_edit,
            "can_manage": self.can_manage,
            "can_delete": self.can_delete,
            "permissions": actions_to_list(self.permissions),
        }


def can_perform_portfolio_action(role: Role, action: PortfolioAction) -> bool:
    return is_role_at_least(role, PORTFOLIO_ACTION_THRESHOLDS[PortfolioAction(action)])


def portfolio_actions(context: PermissionContext) -> dict[PortfolioAction, bool]:
    """Every portfolio action mapped to whether the context's role allows it."""
    return {
        action: is_role_at_least(context.role, threshold)
        for action, threshold in PORTFOLIO_ACTION_THRESHOLDS.items()
    }


def allowed_portfolio_actions(context: PermissionContext) -> list[PortfolioAction]:
    """Allowed actions in declaration order."""
    allowed = portfolio_actions(context)
    return [a for a in PortfolioAction if allowed[a]]


def property_permissions(context: PermissionContext, property_id: str) -> PropertyPermissions:
    """
    Capability result for *property_id*.

    The caller is responsible for checking that the property belongs to the
    context's portfolio; this function only applies the membership's rules.
    """
    actions = context.resolver.allowed_actions(str(property_id))
    return PropertyPermissions(
        property_id=str(property_id),
        can_view=PropertyAction.VIEW in actions,
        can_edit=PropertyAction.EDIT in actions,
        can_manage=PropertyAction.MANAGE in actions,
        can_delete=PropertyAction.DELETE in actions,
        permissions=actions,
    )


def build_permission_summary(context: PermissionContext, portfolio_property_ids=None) -> dict:
    """
    Everything a UI needs to render permission state for one membership.

    ``accessible_property_ids`` is None for full access; when the override is
    set and *portfolio_property_ids* is given, stale ids are dropped.
    """
    resolver = context.resolver
    if resolver.has_full_access:
        accessible = None
    elif portfolio_property_ids is not None:
        accessible = sorted(resolver.accessible_properties(portfolio_property_ids))
    else:
        accessible = sorted(context.property_access.keys())

    flags = portfolio_actions(context)
    return {
        "role": context.role.value,
        "portfolio_actions": {a.value: allowed for a, allowed in flags.items()},
        "can_view": is_role_at_least(context.role, Role.VIEWER),
        "can_edit": is_role_at_least(context.role, Role.MEMBER),
        "can_admin": is_role_at_least(context.role, Role.ADMIN),
        "assignable_roles": [r.value for r in sorted_roles(get_assignable_roles(context.role))],
        "has_full_property_access": resolver.has_full_access,
        "accessible_property_ids": accessible,
    }
