"""
Portfolio domain models: portfolios, properties, memberships, invitations.

Models:
    - Portfolio: tenant container grouping properties and members.
    - Property: a property owned by exactly one portfolio.
    - PortfolioMember: the (user, portfolio) binding with role + overrides.
    - PortfolioInvitation: pending invitation token for a future member.

User accounts live outside this package; ``user_id`` columns hold the
external identity string.
"""

import uuid
from datetime import datetime, timezone

from portfolio_rbac.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════
# 1. PORTFOLIOS
# ═══════════════════════════════════════════════════════════════
class Portfolio(db.Model):
    __tablename__ = "portfolios"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    created_by = db.Column(db.String(64), nullable=False)  # follows ownership transfer
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    properties = db.relationship(
        "Property", back_populates="portfolio", lazy="dynamic", cascade="all, delete-orphan",
    )
    members = db.relationship(
        "PortfolioMember", back_populates="portfolio", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Portfolio {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. PROPERTIES
# ═══════════════════════════════════════════════════════════════
class Property(db.Model):
    __tablename__ = "properties"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    portfolio_id = db.Column(
        db.String(36), db.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    portfolio = db.relationship("Portfolio", back_populates="properties")

    def to_dict(self):
        return {
            "id": self.id,
            "portfolio_id": self.portfolio_id,
            "name": self.name,
            "created_at": _iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════
# 3. MEMBERSHIPS
# ═══════════════════════════════════════════════════════════════
class PortfolioMember(db.Model):
    """
    One row per (user, portfolio).

    ``property_access`` semantics:
        None → no override, every property with role defaults
        {}   → no property access at all
        {id: ["view", "edit"]} → exactly the listed properties/actions
    """

    __tablename__ = "portfolio_members"
    __table_args__ = (
        db.UniqueConstraint("user_id", "portfolio_id", name="uq_portfolio_member_user"),
        db.Index("ix_portfolio_members_portfolio_role", "portfolio_id", "role"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    portfolio_id = db.Column(
        db.String(36), db.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(20), nullable=False, default="viewer")  # owner | admin | member | viewer
    property_access = db.Column(db.JSON, nullable=True)
    invited_by = db.Column(db.String(64))
    invited_at = db.Column(db.DateTime(timezone=True))
    accepted_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    portfolio = db.relationship("Portfolio", back_populates="members")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "portfolio_id": self.portfolio_id,
            "role": self.role,
            "property_access": self.property_access,
            "invited_by": self.invited_by,
            "invited_at": _iso(self.invited_at),
            "accepted_at": _iso(self.accepted_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<PortfolioMember {self.user_id}@{self.portfolio_id}: {self.role}>"


# ═══════════════════════════════════════════════════════════════
# 4. INVITATIONS
# ═══════════════════════════════════════════════════════════════
INVITATION_STATUSES = {"pending", "accepted", "revoked", "expired"}


class PortfolioInvitation(db.Model):
    __tablename__ = "portfolio_invitations"
    __table_args__ = (
        db.Index("ix_portfolio_invitations_portfolio_email", "portfolio_id", "email"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    portfolio_id = db.Column(
        db.String(36), db.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    email = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False)  # admin | member | viewer
    property_access = db.Column(db.JSON, nullable=True)
    token = db.Column(db.String(128), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    invited_by = db.Column(db.String(64), nullable=False)
    accepted_by = db.Column(db.String(64))
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def is_expired(self, now=None) -> bool:
        now = now or _utcnow()
        expires_at = self.expires_at
        # SQLite hands back naive datetimes
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now

    def to_dict(self, include_token=False):
        d = {
            "id": self.id,
            "portfolio_id": self.portfolio_id,
            "email": self.email,
            "role": self.role,
            "property_access": self.property_access,
            "status": self.status,
            "invited_by": self.invited_by,
            "accepted_by": self.accepted_by,
            "expires_at": _iso(self.expires_at),
            "created_at": _iso(self.created_at),
        }
        if include_token:
            d["token"] = self.token
        return d
