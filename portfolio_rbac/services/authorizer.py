"""
Portfolio Action Authorizer: the façade every mutating endpoint calls.

    authorizer = PortfolioActionAuthorizer(store)
    decision = authorizer.authorize(user_id, portfolio_id, PortfolioAction.REMOVE_MEMBERS,
                                    target=membership)
    if not decision:
        return api_error(E.FORBIDDEN, decision.reason)

Evaluation is deny-by-default and returns explicit values:

  Decision(allowed=True)                          allowed
  Decision(allowed=False, code=..., reason=...)   denied, with the unmet rule
  NotMember / NotVisible                          from the compute_* helpers

Owner protection and self-modification rules live here, not in storage:
  - an owner membership is never the target of role change or removal,
  - nobody changes or removes their own membership through the generic path
    (self-service is "leave", which owners cannot use),
  - an actor only manages roles strictly below their own and only assigns
    roles from ``get_assignable_roles``; owner moves only via transfer.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from portfolio_rbac.core.exceptions import ValidationError
from portfolio_rbac.services.permission_context import (
    NotMember,
    PermissionContext,
    build_permission_context,
)
from portfolio_rbac.services.permission_evaluator import (
    PORTFOLIO_ACTION_THRESHOLDS,
    PortfolioAction,
    PropertyPermissions,
    allowed_portfolio_actions,
    build_permission_summary,
    can_perform_portfolio_action,
    property_permissions,
)
from portfolio_rbac.services.property_access import PropertyAction
from portfolio_rbac.services.role_hierarchy import (
    Role,
    can_manage_role,
    get_assignable_roles,
    parse_role,
    sorted_roles,
)

logger = logging.getLogger(__name__)


class DenyCode(str, Enum):
    NOT_MEMBER = "not_member"
    INSUFFICIENT_ROLE = "insufficient_role"
    INSUFFICIENT_PRIVILEGES = "insufficient_privileges"
    OWNER_PROTECTION = "owner_protection"
    SELF_MODIFICATION = "self_modification"
    ROLE_ESCALATION = "role_escalation"
    MEMBER_NOT_FOUND = "member_not_found"
    PROPERTY_NOT_VISIBLE = "property_not_visible"
    PROPERTY_ACTION_DENIED = "property_action_denied"
    OWNER_CANNOT_LEAVE = "owner_cannot_leave"
    ONLY_OWNER_CAN_TRANSFER = "only_owner_can_transfer"
    TRANSFER_TARGET_INVALID = "transfer_target_invalid"
    STALE_MEMBERSHIP = "stale_membership"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None
    code: DenyCode | None = None
    context: PermissionContext | None = field(default=None, compare=False, repr=False)

    def __bool__(self):
        return self.allowed

    def to_dict(self) -> dict:
        d = {"allowed": self.allowed}
        if not self.allowed:
            d["reason"] = self.reason
            d["code"] = self.code.value if self.code else None
        return d


def allow(context: PermissionContext | None = None) -> Decision:
    return Decision(allowed=True, context=context)


def deny(code: DenyCode, reason: str, context: PermissionContext | None = None) -> Decision:
    return Decision(allowed=False, reason=reason, code=code, context=context)


@dataclass(frozen=True)
class NotVisible:
    """The property is outside the portfolio or outside the member's override."""

    portfolio_id: str
    property_id: str
    reason: str = "property is not visible to this member"


@dataclass(frozen=True)
class PortfolioPermissions:
    portfolio_id: str
    role: Role
    allowed_actions: tuple[PortfolioAction, ...]
    summary: dict = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict:
        return {
            "portfolio_id": self.portfolio_id,
            "role": self.role.value,
            "allowed_actions": [a.value for a in self.allowed_actions],
            "permissions": self.summary,
        }


_MEMBER_TARGET_ACTIONS = {PortfolioAction.CHANGE_MEMBER_ROLES, PortfolioAction.REMOVE_MEMBERS}


class PortfolioActionAuthorizer:
    """Combine context building and evaluation into allow/deny decisions."""

    def __init__(self, store):
        self.store = store

    # ── Generic entry point ──────────────────────────────────────────────

    def authorize(
        self,
        user_id: str,
        portfolio_id: str,
        action,
        property_id: str | None = None,
        *,
        target=None,
        new_role=None,
    ) -> Decision:
        """
        Decide whether *user_id* may perform *action* in *portfolio_id*.

        Args:
            action: PortfolioAction (portfolio level, *property_id* ignored) or
                PropertyAction (requires *property_id*).
            property_id: Property the action applies to.
            target: Membership being changed/removed (role change, removal).
            new_role: Role being assigned (role change, invitation).

        Raises:
            ValidationError: unknown action, or a property action without a
                property id.
        """
        context = build_permission_context(self.store, user_id, portfolio_id)
        if isinstance(context, NotMember):
            return self._denied(deny(DenyCode.NOT_MEMBER, context.reason), user_id, portfolio_id, action)

        action = _parse_action(action, property_id)
        if isinstance(action, PropertyAction):
            decision = self._authorize_property(context, action, str(property_id))
        else:
            decision = self._authorize_portfolio(context, action, target, new_role)

        if not decision:
            self._denied(decision, user_id, portfolio_id, action)
        return decision

    def _authorize_portfolio(self, context, action, target, new_role) -> Decision:
        if target is not None and action in _MEMBER_TARGET_ACTIONS:
            target_decision = check_member_target(context, target)
            if not target_decision:
                return target_decision

        if not can_perform_portfolio_action(context.role, action):
            threshold = PORTFOLIO_ACTION_THRESHOLDS[action]
            return deny(
                DenyCode.INSUFFICIENT_ROLE,
                f"'{action.value}' requires the {threshold.value} role or higher",
                context,
            )

        if new_role is not None and action in (PortfolioAction.CHANGE_MEMBER_ROLES, PortfolioAction.INVITE_MEMBERS):
            role_decision = check_role_assignment(context, new_role)
            if not role_decision:
                return role_decision

        return allow(context)

    def _authorize_property(self, context, action, property_id) -> Decision:
        if self.store.get_property_portfolio_id(property_id) != context.portfolio_id:
            return deny(DenyCode.PROPERTY_NOT_VISIBLE, "property does not belong to this portfolio", context)
        if not context.resolver.is_listed(property_id):
            return deny(DenyCode.PROPERTY_NOT_VISIBLE, "you don't have access to this property", context)
        if action not in context.resolver.allowed_actions(property_id):
            return deny(
                DenyCode.PROPERTY_ACTION_DENIED,
                f"you don't have '{action.value}' permission on this property",
                context,
            )
        return allow(context)

    # ── Self-service and ownership ───────────────────────────────────────

    def authorize_leave(self, user_id: str, portfolio_id: str) -> Decision:
        context = build_permission_context(self.store, user_id, portfolio_id)
        if isinstance(context, NotMember):
            return self._denied(deny(DenyCode.NOT_MEMBER, context.reason), user_id, portfolio_id, "leave")
        if context.role is Role.OWNER:
            return self._denied(
                deny(
                    DenyCode.OWNER_CANNOT_LEAVE,
                    "Owners cannot leave. Transfer ownership first or delete the portfolio.",
                    context,
                ),
                user_id, portfolio_id, "leave",
            )
        return allow(context)

    def authorize_ownership_transfer(self, user_id: str, portfolio_id: str, new_owner_user_id: str) -> Decision:
        context = build_permission_context(self.store, user_id, portfolio_id)
        if isinstance(context, NotMember):
            return self._denied(deny(DenyCode.NOT_MEMBER, context.reason), user_id, portfolio_id, "transfer")
        if context.role is not Role.OWNER:
            decision = deny(DenyCode.ONLY_OWNER_CAN_TRANSFER, "only the portfolio owner can transfer ownership", context)
        elif str(new_owner_user_id) == context.user_id:
            decision = deny(DenyCode.TRANSFER_TARGET_INVALID, "you already own this portfolio", context)
        elif self.store.get_membership(str(new_owner_user_id), portfolio_id) is None:
            decision = deny(DenyCode.TRANSFER_TARGET_INVALID, "new owner must be a member of the portfolio", context)
        else:
            return allow(context)
        return self._denied(decision, user_id, portfolio_id, "transfer")

    # ── Read-only permission views ───────────────────────────────────────

    def compute_portfolio_permissions(self, user_id: str, portfolio_id: str) -> PortfolioPermissions | NotMember:
        context = build_permission_context(self.store, user_id, portfolio_id)
        if isinstance(context, NotMember):
            return context
        return PortfolioPermissions(
            portfolio_id=portfolio_id,
            role=context.role,
            allowed_actions=tuple(allowed_portfolio_actions(context)),
            summary=build_permission_summary(context),
        )

    def compute_property_permissions(
        self, user_id: str, portfolio_id: str, property_id: str,
    ) -> PropertyPermissions | NotMember | NotVisible:
        context = build_permission_context(self.store, user_id, portfolio_id)
        if isinstance(context, NotMember):
            return context
        property_id = str(property_id)
        if self.store.get_property_portfolio_id(property_id) != portfolio_id:
            return NotVisible(portfolio_id=portfolio_id, property_id=property_id)
        if not context.resolver.is_listed(property_id):
            return NotVisible(portfolio_id=portfolio_id, property_id=property_id)
        result = property_permissions(context, property_id)
        if not result.permissions:
            return NotVisible(portfolio_id=portfolio_id, property_id=property_id)
        return result

    # ── Logging ──────────────────────────────────────────────────────────

    @staticmethod
    def _denied(decision: Decision, user_id, portfolio_id, action) -> Decision:
        action_name = action.value if isinstance(action, Enum) else str(action)
        logger.info(
            "[PERMS_DENIED] user=%s portfolio=%s action=%s code=%s reason=%s",
            user_id, portfolio_id, action_name,
            decision.code.value if decision.code else None, decision.reason,
            extra={"portfolio_id": portfolio_id, "user_id": user_id, "action": action_name},
        )
        return decision


# ── Pure rule checks (shared with the membership service) ──────────────────

def _parse_action(action, property_id):
    """
    Portfolio actions are role-gated even when a property id is supplied;
    property actions need one.
    """
    if isinstance(action, PortfolioAction):
        return action
    if isinstance(action, PropertyAction):
        if property_id is None:
            raise ValidationError(f"'{action.value}' is a property action and needs a property id")
        return action
    try:
        return PortfolioAction(action)
    except ValueError:
        pass
    try:
        parsed = PropertyAction(action)
    except ValueError:
        raise ValidationError(f"Unknown action: {action!r}", {"action": str(action)})
    return _parse_action(parsed, property_id)


def check_member_target(context: PermissionContext, target) -> Decision:
    """Owner protection, self-modification and rank checks for *target*."""
    if target.portfolio_id != context.portfolio_id:
        return deny(DenyCode.MEMBER_NOT_FOUND, "member not found in this portfolio", context)
    target_role = Role(target.role)
    if target_role is Role.OWNER:
        return deny(
            DenyCode.OWNER_PROTECTION,
            "Cannot change or remove the portfolio owner. Use transfer-ownership instead.",
            context,
        )
    if str(target.user_id) == context.user_id:
        return deny(
            DenyCode.SELF_MODIFICATION,
            "You cannot modify or remove your own membership. Use the leave option instead.",
            context,
        )
    if not can_manage_role(context.role, target_role):
        return deny(
            DenyCode.INSUFFICIENT_PRIVILEGES,
            f"You cannot manage users with the {target_role.value} role",
            context,
        )
    return allow(context)


def check_role_assignment(context: PermissionContext, new_role) -> Decision:
    """*new_role* must be in the actor's assignable set (never owner)."""
    role = parse_role(new_role)
    assignable = get_assignable_roles(context.role)
    if role is None or role not in assignable:
        allowed = ", ".join(r.value for r in sorted_roles(assignable)) or "none"
        shown = role.value if role is not None else str(new_role)
        return deny(
            DenyCode.ROLE_ESCALATION,
            f"You cannot assign the {shown} role. You can only assign: {allowed}",
            context,
        )
    return allow(context)
