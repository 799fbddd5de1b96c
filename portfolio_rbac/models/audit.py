"""
Permission audit model.

Models:
    - PermissionAuditLog: immutable, append-only record of membership
      state transitions (invitation sent/accepted, role change, revocation).
"""

from datetime import datetime, timezone
from enum import Enum

from portfolio_rbac.models import db
from portfolio_rbac.models.portfolio import _uuid


class AuditAction(str, Enum):
    INVITATION_SENT = "invitation_sent"
    INVITATION_ACCEPTED = "invitation_accepted"
    ROLE_CHANGE = "role_change"
    ACCESS_REVOKED = "access_revoked"


AUDIT_ACTIONS = {a.value for a in AuditAction}


class PermissionAuditLog(db.Model):
    """
    One row per membership state transition.

    ``old_value`` / ``new_value`` hold serialised snapshots (see
    ``services.audit_service``); either may be null (grant / revocation).
    Rows are never updated or deleted.
    """

    __tablename__ = "permission_audit_logs"
    __table_args__ = (
        db.Index("idx_perm_audit_portfolio_ts", "portfolio_id", "created_at"),
        db.Index("idx_perm_audit_user", "user_id"),
        db.Index("idx_perm_audit_action", "action"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(64), nullable=True)  # subject; null for invitations to unknown users
    portfolio_id = db.Column(db.String(36), nullable=False)
    action = db.Column(
        db.String(40), nullable=False,
        comment="invitation_sent | invitation_accepted | role_change | access_revoked",
    )
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    changed_by = db.Column(db.String(64), nullable=True)  # null = system-initiated
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "portfolio_id": self.portfolio_id,
            "action": self.action,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by": self.changed_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PermissionAuditLog {self.id}: {self.action} on {self.user_id}@{self.portfolio_id}>"
