"""GET /api/v1/permissions endpoints."""

from conftest import ADMIN, MEMBER, OUTSIDER, VIEWER
from portfolio_rbac.models import db
from portfolio_rbac.models.portfolio import PortfolioMember


def _url(portfolio, prop=None):
    base = f"/api/v1/permissions/{portfolio['portfolio_id']}"
    return f"{base}/property/{prop}" if prop else base


def test_requires_bearer_token(client, portfolio):
    res = client.get(_url(portfolio))
    assert res.status_code == 401
    assert res.get_json()["code"] == "ERR_UNAUTHORIZED"


def test_invalid_token_rejected(client, portfolio):
    res = client.get(_url(portfolio), headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401


def test_member_summary(client, portfolio, auth_header):
    res = client.get(_url(portfolio), headers=auth_header(MEMBER))
    assert res.status_code == 200
    data = res.get_json()
    assert data["role"] == "member"
    assert data["allowed_actions"] == ["view_portfolio", "view_members", "add_properties"]
    assert data["permissions"]["assignable_roles"] == ["viewer"]
    assert data["permissions"]["accessible_property_ids"] is None


def test_override_summary_lists_live_properties(client, portfolio, auth_header):
    m = db.session.get(PortfolioMember, portfolio["viewer_mid"])
    m.property_access = {portfolio["prop_x"]: ["view"], "deleted-property": ["view"]}
    db.session.commit()
    res = client.get(_url(portfolio), headers=auth_header(VIEWER))
    assert res.get_json()["permissions"]["accessible_property_ids"] == [portfolio["prop_x"]]


def test_non_member_forbidden(client, portfolio, auth_header):
    res = client.get(_url(portfolio), headers=auth_header(OUTSIDER))
    assert res.status_code == 403
    assert res.get_json()["details"]["code"] == "not_member"


def test_admin_property_permissions(client, portfolio, auth_header):
    res = client.get(_url(portfolio, portfolio["prop_x"]), headers=auth_header(ADMIN))
    assert res.status_code == 200
    data = res.get_json()
    assert data["can_view"] and data["can_edit"] and data["can_manage"] and data["can_delete"]
    assert data["permissions"] == ["view", "edit", "manage", "delete"]


def test_viewer_property_override(client, portfolio, auth_header):
    m = db.session.get(PortfolioMember, portfolio["viewer_mid"])
    m.property_access = {portfolio["prop_x"]: ["view", "edit"]}
    db.session.commit()

    x = client.get(_url(portfolio, portfolio["prop_x"]), headers=auth_header(VIEWER))
    assert x.status_code == 200
    assert x.get_json()["can_edit"] is True

    y = client.get(_url(portfolio, portfolio["prop_y"]), headers=auth_header(VIEWER))
    assert y.status_code == 404


def test_property_from_other_portfolio_is_404(client, portfolio, other_portfolio, auth_header):
    res = client.get(_url(portfolio, other_portfolio["prop_z"]), headers=auth_header(ADMIN))
    assert res.status_code == 404


def test_role_change_visible_to_next_request(client, portfolio, auth_header):
    first = client.get(_url(portfolio), headers=auth_header(MEMBER)).get_json()
    m = db.session.get(PortfolioMember, portfolio["member_mid"])
    m.role = "admin"
    db.session.commit()
    second = client.get(_url(portfolio), headers=auth_header(MEMBER)).get_json()
    assert first["role"] == "member"
    assert second["role"] == "admin"
