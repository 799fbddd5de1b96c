"""
Permission Store: the storage collaborator behind the authorization core.

Every service in this package receives a ``PermissionStore`` explicitly;
nothing reads ``db.session`` directly. The store:

  - performs simple key-based reads (membership by user+portfolio,
    property → portfolio, ...) and always re-reads from the database
    (``populate_existing``) so a role change is visible to the very next
    decision,
  - flushes writes so callers keep transaction control,
  - offers ``transaction()`` as the all-or-nothing boundary for multi-row
    mutations (ownership transfer, invitation acceptance),
  - re-raises any SQLAlchemy error as ``StorageFailure``.

Usage:
    store = PermissionStore(db.session)
    with store.transaction():
        store.update_membership(old_owner.id, role="admin")
        store.update_membership(new_owner.id, role="owner")
"""

import functools
import logging
from contextlib import contextmanager

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from portfolio_rbac.core.exceptions import StorageFailure
from portfolio_rbac.models.audit import PermissionAuditLog
from portfolio_rbac.models.portfolio import (
    Portfolio,
    PortfolioInvitation,
    PortfolioMember,
    Property,
)

logger = logging.getLogger(__name__)


def _storage_call(operation: str):
    """Wrap a store method so driver/ORM errors surface as StorageFailure."""
    def decorator(f):
        @functools.wraps(f)
        def wrapped(self, *args, **kwargs):
            try:
                return f(self, *args, **kwargs)
            except SQLAlchemyError as exc:
                logger.error("Storage operation '%s' failed: %s", operation, exc)
                raise StorageFailure(operation, str(exc)) from exc
        return wrapped
    return decorator


class PermissionStore:
    """SQLAlchemy-backed storage for portfolios, memberships and audit rows."""

    def __init__(self, session):
        self.session = session

    # ── Transaction boundary ─────────────────────────────────────────────

    @contextmanager
    def transaction(self):
        """Commit everything written inside the block, or nothing."""
        try:
            yield self
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Transaction rolled back: %s", exc)
            raise StorageFailure("commit", str(exc)) from exc
        except Exception:
            self.session.rollback()
            raise

    # ── Portfolios & properties ──────────────────────────────────────────

    @_storage_call("get_portfolio")
    def get_portfolio(self, portfolio_id: str) -> Portfolio | None:
        return self.session.get(Portfolio, portfolio_id, populate_existing=True)

    @_storage_call("insert_portfolio")
    def insert_portfolio(self, **fields) -> Portfolio:
        portfolio = Portfolio(**fields)
        self.session.add(portfolio)
        self.session.flush()
        return portfolio

    @_storage_call("update_portfolio")
    def update_portfolio(self, portfolio_id: str, **fields) -> Portfolio | None:
        portfolio = self.session.get(Portfolio, portfolio_id, populate_existing=True)
        if portfolio is None:
            return None
        for key, value in fields.items():
            setattr(portfolio, key, value)
        self.session.flush()
        return portfolio

    @_storage_call("get_property_portfolio_id")
    def get_property_portfolio_id(self, property_id: str) -> str | None:
        return self.session.execute(
            select(Property.portfolio_id).where(Property.id == str(property_id))
        ).scalar_one_or_none()

    @_storage_call("get_portfolio_property_ids")
    def get_portfolio_property_ids(self, portfolio_id: str) -> list[str]:
        return list(self.session.execute(
            select(Property.id).where(Property.portfolio_id == portfolio_id)
        ).scalars())

    @_storage_call("insert_property")
    def insert_property(self, **fields) -> Property:
        prop = Property(**fields)
        self.session.add(prop)
        self.session.flush()
        return prop

    @_storage_call("get_portfolio_properties")
    def get_portfolio_properties(self, portfolio_id: str) -> list[Property]:
        return list(self.session.execute(
            select(Property)
            .where(Property.portfolio_id == portfolio_id)
            .order_by(Property.created_at)
        ).scalars())

    # ── Memberships ──────────────────────────────────────────────────────

    @_storage_call("get_membership")
    def get_membership(self, user_id: str, portfolio_id: str) -> PortfolioMember | None:
        return self.session.execute(
            select(PortfolioMember)
            .where(PortfolioMember.user_id == str(user_id))
            .where(PortfolioMember.portfolio_id == portfolio_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @_storage_call("get_membership_by_id")
    def get_membership_by_id(self, member_id: str) -> PortfolioMember | None:
        return self.session.get(PortfolioMember, member_id, populate_existing=True)

    @_storage_call("get_memberships_for_portfolio")
    def get_memberships_for_portfolio(self, portfolio_id: str) -> list[PortfolioMember]:
        return list(self.session.execute(
            select(PortfolioMember)
            .where(PortfolioMember.portfolio_id == portfolio_id)
            .order_by(PortfolioMember.created_at)
            .execution_options(populate_existing=True)
        ).scalars())

    @_storage_call("count_owners")
    def count_owners(self, portfolio_id: str) -> int:
        return self.session.execute(
            select(func.count(PortfolioMember.id))
            .where(PortfolioMember.portfolio_id == portfolio_id)
            .where(PortfolioMember.role == "owner")
        ).scalar_one()

    @_storage_call("insert_membership")
    def insert_membership(self, **fields) -> PortfolioMember:
        member = PortfolioMember(**fields)
        self.session.add(member)
        self.session.flush()
        return member

    @_storage_call("update_membership")
    def update_membership(self, member_id: str, **fields) -> PortfolioMember | None:
        """Apply *fields* to the membership; None when it no longer exists."""
        member = self.session.get(PortfolioMember, member_id, populate_existing=True)
        if member is None:
            return None
        for key, value in fields.items():
            setattr(member, key, value)
        self.session.flush()
        return member

    @_storage_call("delete_membership")
    def delete_membership(self, member_id: str) -> bool:
        member = self.session.get(PortfolioMember, member_id, populate_existing=True)
        if member is None:
            return False
        self.session.delete(member)
        self.session.flush()
        return True

    # ── Invitations ──────────────────────────────────────────────────────

    @_storage_call("insert_invitation")
    def insert_invitation(self, **fields) -> PortfolioInvitation:
        invitation = PortfolioInvitation(**fields)
        self.session.add(invitation)
        self.session.flush()
        return invitation

    @_storage_call("get_invitation")
    def get_invitation(self, invitation_id: str) -> PortfolioInvitation | None:
        return self.session.get(PortfolioInvitation, invitation_id, populate_existing=True)

    @_storage_call("get_invitation_by_token")
    def get_invitation_by_token(self, token: str) -> PortfolioInvitation | None:
        return self.session.execute(
            select(PortfolioInvitation)
            .where(PortfolioInvitation.token == token)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @_storage_call("get_pending_invitation")
    def get_pending_invitation(self, portfolio_id: str, email: str) -> PortfolioInvitation | None:
        return self.session.execute(
            select(PortfolioInvitation)
            .where(PortfolioInvitation.portfolio_id == portfolio_id)
            .where(PortfolioInvitation.email == email)
            .where(PortfolioInvitation.status == "pending")
            .execution_options(populate_existing=True)
        ).scalars().first()

    @_storage_call("get_pending_invitations")
    def get_pending_invitations(self, portfolio_id: str) -> list[PortfolioInvitation]:
        return list(self.session.execute(
            select(PortfolioInvitation)
            .where(PortfolioInvitation.portfolio_id == portfolio_id)
            .where(PortfolioInvitation.status == "pending")
            .order_by(PortfolioInvitation.created_at.desc())
        ).scalars())

    @_storage_call("update_invitation")
    def update_invitation(self, invitation_id: str, **fields) -> PortfolioInvitation | None:
        invitation = self.session.get(PortfolioInvitation, invitation_id, populate_existing=True)
        if invitation is None:
            return None
        for key, value in fields.items():
            setattr(invitation, key, value)
        self.session.flush()
        return invitation

    # ── Audit ────────────────────────────────────────────────────────────

    @_storage_call("insert_audit_entry")
    def insert_audit_entry(self, **fields) -> PermissionAuditLog:
        entry = PermissionAuditLog(**fields)
        self.session.add(entry)
        self.session.flush()
        return entry

    @_storage_call("list_audit_entries")
    def list_audit_entries(
        self,
        portfolio_id: str,
        *,
        user_id: str | None = None,
        action: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[PermissionAuditLog], int]:
        q = select(PermissionAuditLog).where(PermissionAuditLog.portfolio_id == portfolio_id)
        if user_id:
            q = q.where(PermissionAuditLog.user_id == str(user_id))
        if action:
            q = q.where(PermissionAuditLog.action == action)
        total = self.session.execute(
            select(func.count()).select_from(q.subquery())
        ).scalar_one()
        rows = self.session.execute(
            q.order_by(PermissionAuditLog.created_at.desc()).limit(limit).offset(offset)
        ).scalars()
        return list(rows), total
