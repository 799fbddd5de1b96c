"""
Permission audit logging.

Every membership state transition appends one ``PermissionAuditLog`` row.
Snapshots are typed (``RoleChangeSnapshot`` / ``InvitationSnapshot``) and
serialised with ``to_dict()``; consumers rebuild them with
``snapshot_from_dict``.

Write contract:
  - the entry is written after the mutation it describes has committed, in
    its own transaction,
  - the authorization decision never depends on the audit write,
  - a failed write is logged at ERROR as a recoverable inconsistency and
    reported through ``AuditWriteResult``; it never raises and never rolls
    back the mutation.

Usage:
    from portfolio_rbac.services.audit_service import log_role_change

    log_role_change(store, user_id=target.user_id, portfolio_id=pid,
                    old_role="member", new_role="viewer", changed_by=actor_id)
"""

import logging
from dataclasses import dataclass

from portfolio_rbac.core.exceptions import StorageFailure
from portfolio_rbac.models.audit import AuditAction

logger = logging.getLogger(__name__)


# ── Snapshots ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RoleChangeSnapshot:
    role: str
    property_access: dict | None = None

    def to_dict(self) -> dict:
        return {"role": self.role, "property_access": self.property_access}


@dataclass(frozen=True)
class InvitationSnapshot:
    role: str
    property_access: dict | None = None
    email: str | None = None
    token_id: str | None = None

    def to_dict(self) -> dict:
        d = {"role": self.role, "property_access": self.property_access}
        if self.email is not None:
            d["email"] = self.email
        if self.token_id is not None:
            d["token_id"] = self.token_id
        return d


_INVITATION_ACTIONS = {AuditAction.INVITATION_SENT, AuditAction.INVITATION_ACCEPTED}


def snapshot_from_dict(action, data: dict | None):
    """Rebuild the typed snapshot stored for *action* (None stays None)."""
    if data is None:
        return None
    action = AuditAction(action)
    if action in _INVITATION_ACTIONS or "email" in data or "token_id" in data:
        return InvitationSnapshot(
            role=data.get("role"),
            property_access=data.get("property_access"),
            email=data.get("email"),
            token_id=data.get("token_id"),
        )
    return RoleChangeSnapshot(role=data.get("role"), property_access=data.get("property_access"))


def _serialise(snapshot):
    if snapshot is None:
        return None
    if isinstance(snapshot, dict):
        return dict(snapshot)
    return snapshot.to_dict()


# ── Writer ───────────────────────────────────────────────────────────────────

@dataclass
class AuditWriteResult:
    success: bool
    log_id: str | None = None
    error: str | None = None


@dataclass
class AuditChange:
    """One pending audit entry (used by the batch writer)."""

    action: AuditAction
    user_id: str | None
    portfolio_id: str
    old_value: object = None
    new_value: object = None
    changed_by: str | None = None


def log_permission_change(
    store,
    *,
    action,
    user_id: str | None,
    portfolio_id: str,
    old_value=None,
    new_value=None,
    changed_by: str | None = None,
) -> AuditWriteResult:
    """Append one audit row in its own transaction."""
    action = AuditAction(action)
    try:
        with store.transaction():
            entry = store.insert_audit_entry(
                user_id=str(user_id) if user_id is not None else None,
                portfolio_id=portfolio_id,
                action=action.value,
                old_value=_serialise(old_value),
                new_value=_serialise(new_value),
                changed_by=str(changed_by) if changed_by is not None else None,
            )
            log_id = entry.id
    except StorageFailure as exc:
        logger.error(
            "Audit write failed after committed change (recoverable inconsistency): "
            "action=%s user=%s portfolio=%s changed_by=%s error=%s",
            action.value, user_id, portfolio_id, changed_by, exc,
            extra={"portfolio_id": portfolio_id, "user_id": user_id, "action": action.value},
        )
        return AuditWriteResult(success=False, error=str(exc))

    logger.info(
        "Audit %s: user=%s portfolio=%s by=%s",
        action.value, user_id, portfolio_id, changed_by,
        extra={"portfolio_id": portfolio_id, "user_id": user_id, "action": action.value},
    )
    return AuditWriteResult(success=True, log_id=log_id)


def log_permission_change_batch(store, changes: list[AuditChange]) -> list[AuditWriteResult]:
    """Write several entries in order; one failure does not stop the rest."""
    return [
        log_permission_change(
            store,
            action=c.action,
            user_id=c.user_id,
            portfolio_id=c.portfolio_id,
            old_value=c.old_value,
            new_value=c.new_value,
            changed_by=c.changed_by,
        )
        for c in changes
    ]


# ── Helpers for common transitions ───────────────────────────────────────────

def log_role_change(
    store,
    *,
    user_id: str,
    portfolio_id: str,
    old_role: str,
    new_role: str,
    changed_by: str,
    old_property_access=None,
    new_property_access=None,
) -> AuditWriteResult:
    return log_permission_change(
        store,
        action=AuditAction.ROLE_CHANGE,
        user_id=user_id,
        portfolio_id=portfolio_id,
        old_value=RoleChangeSnapshot(role=old_role, property_access=old_property_access),
        new_value=RoleChangeSnapshot(role=new_role, property_access=new_property_access),
        changed_by=changed_by,
    )


def log_invitation_sent(
    store,
    *,
    portfolio_id: str,
    email: str,
    role: str,
    invited_by: str,
    token_id: str,
    property_access=None,
    existing_user_id: str | None = None,
) -> AuditWriteResult:
    return log_permission_change(
        store,
        action=AuditAction.INVITATION_SENT,
        user_id=existing_user_id,
        portfolio_id=portfolio_id,
        old_value=None,
        new_value=InvitationSnapshot(
            role=role, property_access=property_access, email=email, token_id=token_id,
        ),
        changed_by=invited_by,
    )


def log_invitation_accepted(
    store,
    *,
    user_id: str,
    portfolio_id: str,
    role: str,
    token_id: str,
    property_access=None,
) -> AuditWriteResult:
    return log_permission_change(
        store,
        action=AuditAction.INVITATION_ACCEPTED,
        user_id=user_id,
        portfolio_id=portfolio_id,
        old_value=None,
        new_value=InvitationSnapshot(role=role, property_access=property_access, token_id=token_id),
        changed_by=user_id,
    )


def log_access_revoked(
    store,
    *,
    user_id: str | None,
    portfolio_id: str,
    previous_role: str,
    changed_by: str,
    property_access=None,
    email: str | None = None,
    token_id: str | None = None,
) -> AuditWriteResult:
    if email is not None or token_id is not None:
        old_value = InvitationSnapshot(
            role=previous_role, property_access=property_access, email=email, token_id=token_id,
        )
    else:
        old_value = RoleChangeSnapshot(role=previous_role, property_access=property_access)
    return log_permission_change(
        store,
        action=AuditAction.ACCESS_REVOKED,
        user_id=user_id,
        portfolio_id=portfolio_id,
        old_value=old_value,
        new_value=None,
        changed_by=changed_by,
    )


def list_audit_entries(store, portfolio_id: str, *, user_id=None, action=None, page=1, per_page=50) -> dict:
    """Paginated audit listing for one portfolio, newest first."""
    page = max(1, page)
    per_page = min(200, max(1, per_page))
    if action is not None:
        action = AuditAction(action).value
    rows, total = store.list_audit_entries(
        portfolio_id,
        user_id=user_id,
        action=action,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return {
        "audit_logs": [r.to_dict() for r in rows],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }
