"""
Membership Service: portfolio creation, invite flow, role management,
leave and ownership transfer.

Every mutation follows the same order:

  1. validate input              → ValidationError / NotFoundError / ConflictError
  2. authorize via the façade    → Deny is returned, never raised
  3. guard invariants            → InvariantViolation before any write
  4. write inside store.transaction()
  5. append the audit entry after commit (its failure is logged, not raised)

Usage:
    from portfolio_rbac.services.membership_service import change_member_role

    result = change_member_role(store, actor_id, pid, member_id, new_role="viewer")
    if not result:
        return api_error(E.FORBIDDEN, result.decision.reason)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from email_validator import EmailNotValidError, validate_email
from flask import current_app

from portfolio_rbac.core.exceptions import (
    ConflictError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from portfolio_rbac.models.audit import AuditAction
from portfolio_rbac.models.portfolio import Portfolio, PortfolioInvitation, PortfolioMember
from portfolio_rbac.services import audit_service
from portfolio_rbac.services.authorizer import (
    Decision,
    DenyCode,
    PortfolioActionAuthorizer,
    allow,
    deny,
)
from portfolio_rbac.services.jwt_service import generate_invite_token
from portfolio_rbac.services.permission_evaluator import PortfolioAction
from portfolio_rbac.services.property_access import PropertyAction, normalize_property_access
from portfolio_rbac.services.role_hierarchy import Role, parse_role

logger = logging.getLogger(__name__)

DEFAULT_INVITATION_EXPIRES_DAYS = 7


class _Unset:
    def __repr__(self):
        return "UNSET"


UNSET = _Unset()


class _StaleMembership(Exception):
    """A membership disappeared between authorization and the write."""


@dataclass
class MembershipResult:
    decision: Decision
    membership: PortfolioMember | None = None
    invitation: PortfolioInvitation | None = None
    portfolio: Portfolio | None = None

    def __bool__(self):
        return bool(self.decision)


def _now():
    return datetime.now(timezone.utc)


def _stale(portfolio_id: str, member_id: str) -> MembershipResult:
    logger.warning(
        "Membership %s vanished before write in portfolio %s; failing closed",
        member_id, portfolio_id, extra={"portfolio_id": portfolio_id},
    )
    return MembershipResult(
        deny(DenyCode.STALE_MEMBERSHIP, "membership changed concurrently, please retry"),
    )


# ═══════════════════════════════════════════════════════════════
# Invariant guards
# ═══════════════════════════════════════════════════════════════
def _violation(rule: str, message: str, portfolio_id: str) -> InvariantViolation:
    logger.error(
        "Invariant violation [%s] in portfolio %s: %s",
        rule, portfolio_id, message, extra={"portfolio_id": portfolio_id},
    )
    return InvariantViolation(rule, message, portfolio_id=portfolio_id)


def guard_role_assignment(portfolio_id: str, role: Role | None) -> None:
    """Owner is never assigned outside ownership transfer."""
    if role is Role.OWNER:
        raise _violation(
            "owner_assignment", "owner can only be assigned through ownership transfer", portfolio_id,
        )


def guard_member_removal(portfolio_id: str, membership: PortfolioMember) -> None:
    if membership.role == Role.OWNER.value:
        raise _violation("owner_removal", "the portfolio owner cannot be removed", portfolio_id)


def guard_grant_within_actor(portfolio_id: str, actor_context, access) -> None:
    """A property grant may not reach past the granting actor's own access."""
    resolver = actor_context.resolver
    if access is None:
        if not resolver.has_full_access:
            raise _violation(
                "grant_exceeds_actor",
                "full property access can only be granted by a member who has it",
                portfolio_id,
            )
        return
    beyond = sorted(
        property_id for property_id, actions in access.items()
        if {PropertyAction(a) for a in actions} - resolver.allowed_actions(property_id)
    )
    if beyond:
        raise _violation(
            "grant_exceeds_actor",
            f"property access exceeds your own on: {', '.join(beyond)}",
            portfolio_id,
        )


def guard_single_owner(store, portfolio_id: str) -> None:
    owners = store.count_owners(portfolio_id)
    if owners != 1:
        raise _violation("owner_count", f"expected exactly one owner, found {owners}", portfolio_id)


# ═══════════════════════════════════════════════════════════════
# Input helpers
# ═══════════════════════════════════════════════════════════════
def _normalize_email(email: str) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", {"email": str(e)})


def _require_role(role) -> Role:
    parsed = parse_role(role)
    if parsed is None:
        raise ValidationError(f"Invalid role: {role!r}", {"role": "must be one of owner, admin, member, viewer"})
    return parsed


def _normalize_access_for_portfolio(store, portfolio_id: str, property_access):
    """Normalize an override map; every listed property must belong to the portfolio."""
    access = normalize_property_access(property_access)
    if access:
        unknown = sorted(set(access) - set(store.get_portfolio_property_ids(portfolio_id)))
        if unknown:
            raise ValidationError(
                "property_access references properties outside this portfolio",
                {"property_ids": unknown},
            )
    return access


def _get_member_in_portfolio(store, portfolio_id: str, member_id: str) -> PortfolioMember:
    member = store.get_membership_by_id(member_id)
    if member is None or member.portfolio_id != portfolio_id:
        raise NotFoundError("Membership", member_id, portfolio_id)
    return member


def _invitation_expiry():
    days = current_app.config.get("INVITATION_EXPIRES_DAYS", DEFAULT_INVITATION_EXPIRES_DAYS)
    return _now() + timedelta(days=days)


# ═══════════════════════════════════════════════════════════════
# Portfolio creation
# ═══════════════════════════════════════════════════════════════
def create_portfolio(store, user_id: str, name: str, description: str | None = None) -> MembershipResult:
    """Create a portfolio and its owner membership in one transaction."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Portfolio name is required", {"name": "required"})
    if len(name) > 200:
        raise ValidationError("Portfolio name is too long", {"name": "max 200 characters"})

    now = _now()
    with store.transaction():
        portfolio = store.insert_portfolio(name=name, description=description, created_by=str(user_id))
        membership = store.insert_membership(
            user_id=str(user_id),
            portfolio_id=portfolio.id,
            role=Role.OWNER.value,
            property_access=None,
            accepted_at=now,
        )

    logger.info(
        "Portfolio %s created by %s", portfolio.id, user_id,
        extra={"portfolio_id": portfolio.id, "user_id": str(user_id)},
    )
    return MembershipResult(allow(), membership=membership, portfolio=portfolio)


def list_members(store, actor_id: str, portfolio_id: str):
    """Return (decision, memberships). Memberships is empty on Deny."""
    decision = PortfolioActionAuthorizer(store).authorize(actor_id, portfolio_id, PortfolioAction.VIEW_MEMBERS)
    if not decision:
        return decision, []
    return decision, store.get_memberships_for_portfolio(portfolio_id)


# ═══════════════════════════════════════════════════════════════
# Invite Flow
# ═══════════════════════════════════════════════════════════════
def send_invitation(
    store,
    actor_id: str,
    portfolio_id: str,
    email: str,
    role,
    property_access=None,
) -> MembershipResult:
    """Invite *email* into the portfolio with a role below the actor's."""
    email = _normalize_email(email)
    role = _require_role(role)

    decision = PortfolioActionAuthorizer(store).authorize(
        actor_id, portfolio_id, PortfolioAction.INVITE_MEMBERS, new_role=role,
    )
    if not decision:
        return MembershipResult(decision)

    access = _normalize_access_for_portfolio(store, portfolio_id, property_access)
    if store.get_pending_invitation(portfolio_id, email) is not None:
        raise ConflictError("Invitation", "email", email)

    guard_role_assignment(portfolio_id, role)
    guard_grant_within_actor(portfolio_id, decision.context, access)

    with store.transaction():
        invitation = store.insert_invitation(
            portfolio_id=portfolio_id,
            email=email,
            role=role.value,
            property_access=access,
            token=generate_invite_token(),
            status="pending",
            invited_by=str(actor_id),
            expires_at=_invitation_expiry(),
        )

    audit_service.log_invitation_sent(
        store,
        portfolio_id=portfolio_id,
        email=email,
        role=role.value,
        invited_by=actor_id,
        token_id=invitation.id,
        property_access=access,
    )
    return MembershipResult(decision, invitation=invitation)


def accept_invitation(store, user_id: str, token: str) -> MembershipResult:
    """
    Turn a pending invitation into a membership.

    The membership insert and the invitation status change commit together.
    An expired invitation is marked ``expired`` and rejected.
    """
    invitation = store.get_invitation_by_token(token or "")
    if invitation is None:
        raise NotFoundError("Invitation")
    if invitation.status != "pending":
        raise ValidationError(f"Invitation is {invitation.status}", {"status": invitation.status})
    if invitation.is_expired():
        with store.transaction():
            store.update_invitation(invitation.id, status="expired")
        raise ValidationError("Invitation has expired", {"status": "expired"})

    portfolio_id = invitation.portfolio_id
    user_id = str(user_id)
    if store.get_membership(user_id, portfolio_id) is not None:
        raise ConflictError("Membership", "user_id", user_id)

    role = Role(invitation.role)
    guard_role_assignment(portfolio_id, role)

    now = _now()
    with store.transaction():
        membership = store.insert_membership(
            user_id=user_id,
            portfolio_id=portfolio_id,
            role=role.value,
            property_access=invitation.property_access,
            invited_by=invitation.invited_by,
            invited_at=invitation.created_at,
            accepted_at=now,
        )
        store.update_invitation(invitation.id, status="accepted", accepted_by=user_id)

    audit_service.log_invitation_accepted(
        store,
        user_id=user_id,
        portfolio_id=portfolio_id,
        role=role.value,
        token_id=invitation.id,
        property_access=membership.property_access,
    )
    return MembershipResult(allow(), membership=membership, invitation=invitation)


def revoke_invitation(store, actor_id: str, portfolio_id: str, invitation_id: str) -> MembershipResult:
    decision = PortfolioActionAuthorizer(store).authorize(actor_id, portfolio_id, PortfolioAction.INVITE_MEMBERS)
    if not decision:
        return MembershipResult(decision)

    invitation = store.get_invitation(invitation_id)
    if invitation is None or invitation.portfolio_id != portfolio_id:
        raise NotFoundError("Invitation", invitation_id, portfolio_id)
    if invitation.status != "pending":
        raise ValidationError(f"Invitation is {invitation.status}", {"status": invitation.status})

    with store.transaction():
        invitation = store.update_invitation(invitation.id, status="revoked")

    audit_service.log_access_revoked(
        store,
        user_id=None,
        portfolio_id=portfolio_id,
        previous_role=invitation.role,
        changed_by=actor_id,
        property_access=invitation.property_access,
        email=invitation.email,
        token_id=invitation.id,
    )
    return MembershipResult(decision, invitation=invitation)


def list_invitations(store, actor_id: str, portfolio_id: str):
    """Return (decision, pending invitations). Empty on Deny."""
    decision = PortfolioActionAuthorizer(store).authorize(actor_id, portfolio_id, PortfolioAction.INVITE_MEMBERS)
    if not decision:
        return decision, []
    return decision, store.get_pending_invitations(portfolio_id)


_INVITATION_STATUS_MESSAGES = {
    "accepted": "This invitation has already been used",
    "expired": "This invitation has expired",
    "revoked": "This invitation has been revoked",
}


@dataclass
class InvitationPreview:
    valid: bool
    error: str | None = None
    invitation: PortfolioInvitation | None = None
    portfolio: Portfolio | None = None

    def to_dict(self):
        if not self.valid:
            return {"valid": False, "error": self.error}
        return {
            "valid": True,
            "invitation": {
                "email": self.invitation.email,
                "role": self.invitation.role,
                "invited_by": self.invitation.invited_by,
                "expires_at": self.invitation.to_dict()["expires_at"],
            },
            "portfolio": {
                "id": self.portfolio.id,
                "name": self.portfolio.name,
                "description": self.portfolio.description,
            } if self.portfolio else None,
        }


def preview_invitation(store, token: str) -> InvitationPreview:
    """
    Check whether *token* could be accepted right now. Read-only.

    Unlike accept_invitation, an expired token is reported but not marked.
    """
    invitation = store.get_invitation_by_token(token or "")
    if invitation is None:
        return InvitationPreview(valid=False, error="Invalid invitation token")
    if invitation.status != "pending":
        return InvitationPreview(
            valid=False, error=_INVITATION_STATUS_MESSAGES.get(invitation.status, "Invalid invitation token"),
        )
    if invitation.is_expired():
        return InvitationPreview(valid=False, error=_INVITATION_STATUS_MESSAGES["expired"])
    return InvitationPreview(
        valid=True, invitation=invitation, portfolio=store.get_portfolio(invitation.portfolio_id),
    )


# ═══════════════════════════════════════════════════════════════
# Role Management
# ═══════════════════════════════════════════════════════════════
def change_member_role(
    store,
    actor_id: str,
    portfolio_id: str,
    member_id: str,
    new_role=None,
    property_access=UNSET,
) -> MembershipResult:
    """
    Change a member's role and/or property-access override.

    ``property_access`` left as UNSET keeps the stored override; ``None``
    clears it (full access) and ``{}`` removes all property access.
    """
    if new_role is None and property_access is UNSET:
        raise ValidationError("Nothing to update", {"role": "or property_access required"})
    role = _require_role(new_role) if new_role is not None else None

    target = _get_member_in_portfolio(store, portfolio_id, member_id)
    decision = PortfolioActionAuthorizer(store).authorize(
        actor_id, portfolio_id, PortfolioAction.CHANGE_MEMBER_ROLES, target=target, new_role=role,
    )
    if not decision:
        return MembershipResult(decision)

    fields = {}
    if role is not None:
        guard_role_assignment(portfolio_id, role)
        fields["role"] = role.value
    if property_access is not UNSET:
        fields["property_access"] = _normalize_access_for_portfolio(store, portfolio_id, property_access)
        guard_grant_within_actor(portfolio_id, decision.context, fields["property_access"])

    old_role = target.role
    old_access = target.property_access
    try:
        with store.transaction():
            updated = store.update_membership(target.id, **fields)
            if updated is None:
                raise _StaleMembership(target.id)
    except _StaleMembership:
        return _stale(portfolio_id, member_id)

    audit_service.log_role_change(
        store,
        user_id=updated.user_id,
        portfolio_id=portfolio_id,
        old_role=old_role,
        new_role=updated.role,
        changed_by=actor_id,
        old_property_access=old_access,
        new_property_access=updated.property_access,
    )
    return MembershipResult(decision, membership=updated)


def remove_member(store, actor_id: str, portfolio_id: str, member_id: str) -> MembershipResult:
    target = _get_member_in_portfolio(store, portfolio_id, member_id)
    decision = PortfolioActionAuthorizer(store).authorize(
        actor_id, portfolio_id, PortfolioAction.REMOVE_MEMBERS, target=target,
    )
    if not decision:
        return MembershipResult(decision)

    guard_member_removal(portfolio_id, target)
    snapshot = (target.user_id, target.role, target.property_access)
    try:
        with store.transaction():
            if not store.delete_membership(target.id):
                raise _StaleMembership(target.id)
    except _StaleMembership:
        return _stale(portfolio_id, member_id)

    user_id, role, access = snapshot
    audit_service.log_access_revoked(
        store,
        user_id=user_id,
        portfolio_id=portfolio_id,
        previous_role=role,
        changed_by=actor_id,
        property_access=access,
    )
    return MembershipResult(decision)


def leave_portfolio(store, user_id: str, portfolio_id: str) -> MembershipResult:
    """Self-service removal. Owners must transfer ownership first."""
    decision = PortfolioActionAuthorizer(store).authorize_leave(user_id, portfolio_id)
    if not decision:
        return MembershipResult(decision)

    membership = store.get_membership(str(user_id), portfolio_id)
    if membership is None:
        return _stale(portfolio_id, str(user_id))
    guard_member_removal(portfolio_id, membership)

    snapshot = (membership.role, membership.property_access)
    try:
        with store.transaction():
            if not store.delete_membership(membership.id):
                raise _StaleMembership(membership.id)
    except _StaleMembership:
        return _stale(portfolio_id, membership.id)

    role, access = snapshot
    audit_service.log_access_revoked(
        store,
        user_id=user_id,
        portfolio_id=portfolio_id,
        previous_role=role,
        changed_by=user_id,
        property_access=access,
    )
    return MembershipResult(decision)


def transfer_ownership(store, actor_id: str, portfolio_id: str, new_owner_user_id: str) -> MembershipResult:
    """
    Hand the owner role to another member.

    The current owner becomes admin, the new owner becomes owner with full
    property access, and ``portfolio.created_by`` follows, all in one
    transaction. Two ``role_change`` entries are appended afterwards.
    """
    actor_id = str(actor_id)
    new_owner_user_id = str(new_owner_user_id)
    decision = PortfolioActionAuthorizer(store).authorize_ownership_transfer(
        actor_id, portfolio_id, new_owner_user_id,
    )
    if not decision:
        return MembershipResult(decision)

    old_owner = store.get_membership(actor_id, portfolio_id)
    new_owner = store.get_membership(new_owner_user_id, portfolio_id)
    if old_owner is None or new_owner is None:
        return _stale(portfolio_id, new_owner_user_id)
    guard_single_owner(store, portfolio_id)

    new_owner_old_role = new_owner.role
    new_owner_old_access = new_owner.property_access
    old_owner_access = old_owner.property_access
    try:
        with store.transaction():
            demoted = store.update_membership(old_owner.id, role=Role.ADMIN.value)
            promoted = store.update_membership(new_owner.id, role=Role.OWNER.value, property_access=None)
            if demoted is None or promoted is None:
                raise _StaleMembership(new_owner.id)
            store.update_portfolio(portfolio_id, created_by=new_owner_user_id)
    except _StaleMembership:
        return _stale(portfolio_id, new_owner.id)

    logger.info(
        "Ownership of %s transferred from %s to %s", portfolio_id, actor_id, new_owner_user_id,
        extra={"portfolio_id": portfolio_id, "user_id": actor_id, "action": "transfer_ownership"},
    )
    audit_service.log_permission_change_batch(store, [
        audit_service.AuditChange(
            action=AuditAction.ROLE_CHANGE,
            user_id=actor_id,
            portfolio_id=portfolio_id,
            old_value=audit_service.RoleChangeSnapshot(Role.OWNER.value, old_owner_access),
            new_value=audit_service.RoleChangeSnapshot(Role.ADMIN.value, old_owner_access),
            changed_by=actor_id,
        ),
        audit_service.AuditChange(
            action=AuditAction.ROLE_CHANGE,
            user_id=new_owner_user_id,
            portfolio_id=portfolio_id,
            old_value=audit_service.RoleChangeSnapshot(new_owner_old_role, new_owner_old_access),
            new_value=audit_service.RoleChangeSnapshot(Role.OWNER.value, None),
            changed_by=actor_id,
        ),
    ])
    return MembershipResult(decision, membership=promoted)
