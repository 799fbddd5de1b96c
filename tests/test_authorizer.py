"""PortfolioActionAuthorizer: allow/deny decisions and permission views."""

import logging

import pytest

from conftest import ADMIN, MEMBER, OUTSIDER, OWNER, VIEWER
from portfolio_rbac.core.exceptions import ValidationError
from portfolio_rbac.models import db
from portfolio_rbac.models.portfolio import PortfolioMember
from portfolio_rbac.services.authorizer import (
    DenyCode,
    NotVisible,
    PortfolioActionAuthorizer,
    PortfolioPermissions,
)
from portfolio_rbac.services.permission_context import NotMember
from portfolio_rbac.services.permission_evaluator import PortfolioAction, PropertyPermissions
from portfolio_rbac.services.property_access import PropertyAction
from portfolio_rbac.services.role_hierarchy import Role


@pytest.fixture()
def authorizer(store):
    return PortfolioActionAuthorizer(store)


def _member(mid):
    return db.session.get(PortfolioMember, mid)


def _set_access(mid, access):
    m = _member(mid)
    m.property_access = access
    db.session.commit()


# ── Portfolio-level thresholds ───────────────────────────────────────────


class TestPortfolioActions:
    def test_non_member_denied(self, authorizer, portfolio):
        d = authorizer.authorize(OUTSIDER, portfolio["portfolio_id"], PortfolioAction.VIEW_PORTFOLIO)
        assert not d
        assert d.code is DenyCode.NOT_MEMBER

    def test_viewer_can_view(self, authorizer, portfolio):
        assert authorizer.authorize(VIEWER, portfolio["portfolio_id"], PortfolioAction.VIEW_PORTFOLIO)
        assert authorizer.authorize(VIEWER, portfolio["portfolio_id"], "view_members")

    def test_viewer_cannot_invite(self, authorizer, portfolio):
        d = authorizer.authorize(VIEWER, portfolio["portfolio_id"], PortfolioAction.INVITE_MEMBERS)
        assert d.allowed is False
        assert d.code is DenyCode.INSUFFICIENT_ROLE
        assert "admin" in d.reason

    def test_admin_cannot_delete_portfolio(self, authorizer, portfolio):
        d = authorizer.authorize(ADMIN, portfolio["portfolio_id"], PortfolioAction.DELETE_PORTFOLIO)
        assert d.code is DenyCode.INSUFFICIENT_ROLE

    def test_owner_can_manage_billing(self, authorizer, portfolio):
        assert authorizer.authorize(OWNER, portfolio["portfolio_id"], PortfolioAction.MANAGE_BILLING)

    def test_decision_to_dict(self, authorizer, portfolio):
        d = authorizer.authorize(MEMBER, portfolio["portfolio_id"], PortfolioAction.EDIT_PORTFOLIO)
        assert d.to_dict() == {"allowed": False, "reason": d.reason, "code": "insufficient_role"}
        ok = authorizer.authorize(MEMBER, portfolio["portfolio_id"], PortfolioAction.ADD_PROPERTIES)
        assert ok.to_dict() == {"allowed": True}

    def test_denial_logged_at_info(self, authorizer, portfolio, caplog):
        caplog.set_level(logging.INFO, logger="portfolio_rbac")
        authorizer.authorize(VIEWER, portfolio["portfolio_id"], PortfolioAction.REMOVE_MEMBERS)
        denied = [r for r in caplog.records if "PERMS_DENIED" in r.getMessage()]
        assert denied and denied[0].levelno == logging.INFO
        assert denied[0].portfolio_id == portfolio["portfolio_id"]


# ── Member management rules ──────────────────────────────────────────────


class TestMemberTargets:
    @pytest.mark.parametrize("actor", [OWNER, ADMIN, MEMBER, VIEWER])
    def test_owner_target_always_denied(self, authorizer, portfolio, actor):
        target = _member(portfolio["owner_mid"])
        d = authorizer.authorize(actor, portfolio["portfolio_id"], PortfolioAction.REMOVE_MEMBERS, target=target)
        assert d.allowed is False

    def test_owner_target_reason(self, authorizer, portfolio):
        target = _member(portfolio["owner_mid"])
        d = authorizer.authorize(ADMIN, portfolio["portfolio_id"], PortfolioAction.CHANGE_MEMBER_ROLES,
                                 target=target, new_role="viewer")
        assert d.code is DenyCode.OWNER_PROTECTION

    def test_self_target_denied(self, authorizer, portfolio):
        target = _member(portfolio["admin_mid"])
        d = authorizer.authorize(ADMIN, portfolio["portfolio_id"], PortfolioAction.REMOVE_MEMBERS, target=target)
        assert d.code is DenyCode.SELF_MODIFICATION

    def test_admin_cannot_manage_peer_admin(self, authorizer, portfolio, make_member):
        peer = make_member(portfolio["portfolio_id"], "user-admin-2", "admin")
        d = authorizer.authorize(ADMIN, portfolio["portfolio_id"], PortfolioAction.REMOVE_MEMBERS, target=peer)
        assert d.code is DenyCode.INSUFFICIENT_PRIVILEGES

    def test_admin_can_remove_member(self, authorizer, portfolio):
        target = _member(portfolio["member_mid"])
        assert authorizer.authorize(ADMIN, portfolio["portfolio_id"], PortfolioAction.REMOVE_MEMBERS, target=target)

    def test_admin_cannot_assign_admin(self, authorizer, portfolio):
        target = _member(portfolio["member_mid"])
        d = authorizer.authorize(ADMIN, portfolio["portfolio_id"], PortfolioAction.CHANGE_MEMBER_ROLES,
                                 target=target, new_role=Role.ADMIN)
        assert d.allowed is False
        assert d.code is DenyCode.INSUFFICIENT_ROLE

    @pytest.mark.parametrize("new_role", ["viewer", None])
    def test_admin_cannot_change_roles_or_access(self, authorizer, portfolio, new_role):
        target = _member(portfolio["member_mid"])
        d = authorizer.authorize(ADMIN, portfolio["portfolio_id"], PortfolioAction.CHANGE_MEMBER_ROLES,
                                 target=target, new_role=new_role)
        assert d.code is DenyCode.INSUFFICIENT_ROLE

    def test_owner_can_demote_member(self, authorizer, portfolio):
        target = _member(portfolio["member_mid"])
        assert authorizer.authorize(OWNER, portfolio["portfolio_id"], PortfolioAction.CHANGE_MEMBER_ROLES,
                                    target=target, new_role="viewer")

    def test_owner_can_promote_to_admin(self, authorizer, portfolio):
        target = _member(portfolio["viewer_mid"])
        assert authorizer.authorize(OWNER, portfolio["portfolio_id"], PortfolioAction.CHANGE_MEMBER_ROLES,
                                    target=target, new_role="admin")

    def test_owner_cannot_assign_owner(self, authorizer, portfolio):
        target = _member(portfolio["admin_mid"])
        d = authorizer.authorize(OWNER, portfolio["portfolio_id"], PortfolioAction.CHANGE_MEMBER_ROLES,
                                 target=target, new_role="owner")
        assert d.code is DenyCode.ROLE_ESCALATION

    def test_target_from_other_portfolio(self, authorizer, portfolio, other_portfolio):
        foreign = PortfolioMember.query.filter_by(portfolio_id=other_portfolio["portfolio_id"]).first()
        d = authorizer.authorize(OWNER, portfolio["portfolio_id"], PortfolioAction.REMOVE_MEMBERS, target=foreign)
        assert d.code is DenyCode.MEMBER_NOT_FOUND

    @pytest.mark.parametrize("actor,role,allowed", [
        (OWNER, "admin", True),
        (OWNER, "owner", False),
        (ADMIN, "member", True),
        (ADMIN, "admin", False),
    ])
    def test_invite_role_must_be_assignable(self, authorizer, portfolio, actor, role, allowed):
        d = authorizer.authorize(actor, portfolio["portfolio_id"], PortfolioAction.INVITE_MEMBERS, new_role=role)
        assert d.allowed is allowed


# ── Property-level decisions ─────────────────────────────────────────────


class TestPropertyActions:
    def test_member_default_actions(self, authorizer, portfolio):
        pid, x = portfolio["portfolio_id"], portfolio["prop_x"]
        assert authorizer.authorize(MEMBER, pid, PropertyAction.EDIT, x)
        d = authorizer.authorize(MEMBER, pid, PropertyAction.DELETE, x)
        assert d.code is DenyCode.PROPERTY_ACTION_DENIED

    def test_unlisted_property_not_visible(self, authorizer, portfolio):
        _set_access(portfolio["member_mid"], {portfolio["prop_x"]: ["view"]})
        d = authorizer.authorize(MEMBER, portfolio["portfolio_id"], "view", portfolio["prop_y"])
        assert d.code is DenyCode.PROPERTY_NOT_VISIBLE

    def test_property_outside_portfolio(self, authorizer, portfolio, other_portfolio):
        d = authorizer.authorize(OWNER, portfolio["portfolio_id"], "view", other_portfolio["prop_z"])
        assert d.code is DenyCode.PROPERTY_NOT_VISIBLE

    def test_explicit_grant_above_role_default(self, authorizer, portfolio):
        _set_access(portfolio["viewer_mid"], {portfolio["prop_x"]: ["view", "edit"]})
        assert authorizer.authorize(VIEWER, portfolio["portfolio_id"], "edit", portfolio["prop_x"])

    def test_empty_override_blocks_everything(self, authorizer, portfolio):
        _set_access(portfolio["admin_mid"], {})
        d = authorizer.authorize(ADMIN, portfolio["portfolio_id"], "view", portfolio["prop_x"])
        assert d.allowed is False

    def test_portfolio_action_with_property_id_is_role_gated(self, authorizer, portfolio):
        pid, x = portfolio["portfolio_id"], portfolio["prop_x"]
        assert authorizer.authorize(ADMIN, pid, PortfolioAction.VIEW_PORTFOLIO, x)
        assert authorizer.authorize(ADMIN, pid, "edit_portfolio", x)
        d = authorizer.authorize(MEMBER, pid, PortfolioAction.EDIT_PORTFOLIO, x)
        assert d.code is DenyCode.INSUFFICIENT_ROLE

    def test_property_action_without_property_id(self, authorizer, portfolio):
        with pytest.raises(ValidationError):
            authorizer.authorize(MEMBER, portfolio["portfolio_id"], PropertyAction.VIEW)

    def test_unknown_action(self, authorizer, portfolio):
        with pytest.raises(ValidationError):
            authorizer.authorize(MEMBER, portfolio["portfolio_id"], "teleport", portfolio["prop_x"])


# ── Leave & transfer ─────────────────────────────────────────────────────


class TestLeaveAndTransfer:
    def test_owner_cannot_leave(self, authorizer, portfolio):
        d = authorizer.authorize_leave(OWNER, portfolio["portfolio_id"])
        assert d.code is DenyCode.OWNER_CANNOT_LEAVE

    def test_member_can_leave(self, authorizer, portfolio):
        assert authorizer.authorize_leave(MEMBER, portfolio["portfolio_id"])

    def test_outsider_cannot_leave(self, authorizer, portfolio):
        assert authorizer.authorize_leave(OUTSIDER, portfolio["portfolio_id"]).code is DenyCode.NOT_MEMBER

    def test_only_owner_transfers(self, authorizer, portfolio):
        d = authorizer.authorize_ownership_transfer(ADMIN, portfolio["portfolio_id"], MEMBER)
        assert d.code is DenyCode.ONLY_OWNER_CAN_TRANSFER

    @pytest.mark.parametrize("target", [OWNER, OUTSIDER])
    def test_transfer_target_must_be_other_member(self, authorizer, portfolio, target):
        d = authorizer.authorize_ownership_transfer(OWNER, portfolio["portfolio_id"], target)
        assert d.code is DenyCode.TRANSFER_TARGET_INVALID

    def test_transfer_allowed(self, authorizer, portfolio):
        assert authorizer.authorize_ownership_transfer(OWNER, portfolio["portfolio_id"], VIEWER)


# ── Permission views ─────────────────────────────────────────────────────


class TestComputePermissions:
    def test_non_member(self, authorizer, portfolio):
        assert isinstance(authorizer.compute_portfolio_permissions(OUTSIDER, portfolio["portfolio_id"]), NotMember)
        assert isinstance(
            authorizer.compute_property_permissions(OUTSIDER, portfolio["portfolio_id"], portfolio["prop_x"]),
            NotMember,
        )

    def test_portfolio_permissions(self, authorizer, portfolio):
        result = authorizer.compute_portfolio_permissions(MEMBER, portfolio["portfolio_id"])
        assert isinstance(result, PortfolioPermissions)
        assert result.role is Role.MEMBER
        assert result.allowed_actions == (
            PortfolioAction.VIEW_PORTFOLIO,
            PortfolioAction.VIEW_MEMBERS,
            PortfolioAction.ADD_PROPERTIES,
        )
        assert result.to_dict()["allowed_actions"] == ["view_portfolio", "view_members", "add_properties"]

    def test_admin_null_override_all_capabilities(self, authorizer, portfolio):
        result = authorizer.compute_property_permissions(ADMIN, portfolio["portfolio_id"], portfolio["prop_x"])
        assert isinstance(result, PropertyPermissions)
        assert result.can_view and result.can_edit and result.can_manage and result.can_delete

    def test_viewer_override(self, authorizer, portfolio):
        _set_access(portfolio["viewer_mid"], {portfolio["prop_x"]: ["view", "edit"]})
        x = authorizer.compute_property_permissions(VIEWER, portfolio["portfolio_id"], portfolio["prop_x"])
        assert x.can_edit is True
        y = authorizer.compute_property_permissions(VIEWER, portfolio["portfolio_id"], portfolio["prop_y"])
        assert isinstance(y, NotVisible)

    def test_foreign_property_not_visible(self, authorizer, portfolio, other_portfolio):
        result = authorizer.compute_property_permissions(OWNER, portfolio["portfolio_id"], other_portfolio["prop_z"])
        assert isinstance(result, NotVisible)
